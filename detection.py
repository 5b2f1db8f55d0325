from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from rapidfuzz.distance import Levenshtein

from config import get_settings
from models import ObligationDefinition, Transaction
from patterns import DayOfMonthPattern, EndOfMonth, Fixed
from periods import add_months

CANDIDATE_INTERVALS = (1, 2, 3, 6, 12)


@dataclass(frozen=True)
class DetectionCriteria:
    lookback_years: int = 3
    minimum_occurrences: int = 2
    date_tolerance_days: int = 3
    amount_variation_tolerance: float = 0.2
    title_similarity_threshold: float = 0.80
    interval_match_ratio: float = 0.70

    @classmethod
    def from_settings(cls, **overrides) -> "DetectionCriteria":
        settings = get_settings()
        values = {
            "title_similarity_threshold": settings.title_similarity,
            "interval_match_ratio": settings.interval_match_ratio,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class Suggestion:
    name: str
    amount: Decimal
    recurrence_months: int
    start_date: date
    category_id: Optional[int]
    day_pattern: DayOfMonthPattern
    match_keywords: list[str]
    related_transactions: list[Transaction] = field(repr=False)
    is_amount_stable: bool
    amount_range: Optional[tuple[Decimal, Decimal]]
    confidence_score: float

    @property
    def occurrence_count(self) -> int:
        return len(self.related_transactions)

    @property
    def last_occurrence_date(self) -> Optional[date]:
        if not self.related_transactions:
            return None
        return max(t.date for t in self.related_transactions)

    @property
    def pattern_description(self) -> str:
        if self.recurrence_months == 1:
            interval = "monthly"
        elif self.recurrence_months == 12:
            interval = "yearly"
        else:
            interval = f"every {self.recurrence_months} months"
        if isinstance(self.day_pattern, Fixed):
            return f"{interval} around day {self.day_pattern.day}"
        if isinstance(self.day_pattern, EndOfMonth):
            return f"{interval} at month end"
        return interval


def normalize_title(title: str) -> str:
    return (title or "").strip().lower()


def title_similarity(first: str, second: str) -> float:
    a = normalize_title(first)
    b = normalize_title(second)
    if a == b:
        return 1.0
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    return 1.0 - Levenshtein.distance(a, b) / longest


class DetectionService:
    """Proposes obligations from repeating transactions.

    Works on plain lists and never touches the session, so callers decide which
    transactions and definitions to feed in.
    """

    def __init__(self, criteria: Optional[DetectionCriteria] = None) -> None:
        self.criteria = criteria or DetectionCriteria()

    def detect(
        self,
        transactions: Sequence[Transaction],
        existing: Sequence[ObligationDefinition] = (),
    ) -> list[Suggestion]:
        suggestions = []
        for group in self._group(transactions):
            suggestion = self._suggest(group)
            if suggestion is not None:
                suggestions.append(suggestion)
        suggestions = [
            s
            for s in suggestions
            if not any(self._similar(s.name, d.name) for d in existing)
        ]
        suggestions.sort(key=lambda s: s.confidence_score, reverse=True)
        return suggestions

    def _similar(self, first: str, second: str) -> bool:
        return title_similarity(first, second) >= self.criteria.title_similarity_threshold

    def _group(self, transactions: Sequence[Transaction]) -> list[list[Transaction]]:
        groups: list[list[Transaction]] = []
        taken: set[int] = set()
        for index, txn in enumerate(transactions):
            if index in taken:
                continue
            taken.add(index)
            group = [txn]
            for other_index in range(index + 1, len(transactions)):
                if other_index in taken:
                    continue
                other = transactions[other_index]
                if self._similar(txn.title, other.title):
                    group.append(other)
                    taken.add(other_index)
            if len(group) >= self.criteria.minimum_occurrences:
                groups.append(group)
        return groups

    def _suggest(self, group: list[Transaction]) -> Optional[Suggestion]:
        if len(group) < self.criteria.minimum_occurrences:
            return None
        ordered = sorted(group, key=lambda t: t.date)
        recurrence = self._recurrence(ordered)
        if recurrence is None:
            return None

        amounts = [t.absolute_amount for t in ordered]
        average = sum(amounts, Decimal("0")) / len(amounts)
        stable, amount_range = self._stability(amounts)
        return Suggestion(
            name=ordered[0].title,
            amount=average,
            recurrence_months=recurrence,
            start_date=ordered[0].date,
            category_id=self._category(ordered),
            day_pattern=self._day_pattern(ordered),
            match_keywords=self._keywords(ordered[0].title),
            related_transactions=ordered,
            is_amount_stable=stable,
            amount_range=amount_range,
            confidence_score=self._confidence(len(ordered), stable, recurrence),
        )

    def _recurrence(self, ordered: list[Transaction]) -> Optional[int]:
        if len(ordered) < 2:
            return None
        for interval in CANDIDATE_INTERVALS:
            if self._is_recurring(ordered, interval):
                return interval
        return None

    def _is_recurring(self, ordered: list[Transaction], interval: int) -> bool:
        matches = 0
        for previous, current in zip(ordered, ordered[1:]):
            expected = add_months(previous.date, interval)
            if abs((current.date - expected).days) <= self.criteria.date_tolerance_days:
                matches += 1
        return matches >= (len(ordered) - 1) * self.criteria.interval_match_ratio

    @staticmethod
    def _day_pattern(ordered: list[Transaction]) -> DayOfMonthPattern:
        days = [t.date.day for t in ordered]
        if all(day >= 25 for day in days):
            return EndOfMonth()
        # Counter keeps first-seen order on ties.
        most_common = Counter(days).most_common(1)
        return Fixed(day=most_common[0][0] if most_common else 1)

    def _stability(
        self, amounts: list[Decimal]
    ) -> tuple[bool, Optional[tuple[Decimal, Decimal]]]:
        if not amounts:
            return False, None
        low, high = min(amounts), max(amounts)
        average = sum(amounts, Decimal("0")) / len(amounts)
        variation = float((high - low) / average) if average > 0 else 0.0
        return variation <= self.criteria.amount_variation_tolerance, (low, high)

    @staticmethod
    def _category(ordered: list[Transaction]) -> Optional[int]:
        ids = [t.category_id for t in ordered if t.category_id is not None]
        if not ids:
            return None
        return Counter(ids).most_common(1)[0][0]

    @staticmethod
    def _keywords(title: str) -> list[str]:
        normalized = normalize_title(title)
        words = normalized.split()
        return words or [normalized]

    @staticmethod
    def _confidence(count: int, stable: bool, recurrence: int) -> float:
        score = min(count / 12.0, 0.5)
        if stable:
            score += 0.3
        score += 0.2 if recurrence == 1 else 0.1
        return min(score, 1.0)
