from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from detection import DetectionCriteria, DetectionService, title_similarity
from models import ObligationDefinition, Transaction
from patterns import EndOfMonth, Fixed
from services import SuggestionService


def _txn(title: str, when: date, amount: str = "-15.99", category_id=None) -> Transaction:
    return Transaction(
        title=title, amount=Decimal(amount), date=when, category_id=category_id
    )


def _netflix() -> list[Transaction]:
    return [_txn("Netflix", date(2024, month, 15)) for month in range(1, 13)]


def test_title_similarity_tolerates_typos() -> None:
    assert title_similarity("Netflix", "netflix ") == 1.0
    assert title_similarity("Netflix", "Netflx") > 0.8
    assert title_similarity("Netflix", "Spotify") < 0.5


def test_monthly_subscription_is_detected() -> None:
    suggestions = DetectionService().detect(_netflix())

    assert len(suggestions) == 1
    suggestion = suggestions[0]
    assert suggestion.recurrence_months == 1
    assert suggestion.confidence_score > 0.9
    assert suggestion.day_pattern == Fixed(day=15)
    assert suggestion.amount == Decimal("15.99")
    assert suggestion.is_amount_stable
    assert suggestion.match_keywords == ["netflix"]
    assert suggestion.occurrence_count == 12
    assert suggestion.last_occurrence_date == date(2024, 12, 15)
    assert suggestion.pattern_description == "monthly around day 15"


def test_quarterly_interval_and_confidence() -> None:
    txns = [
        _txn("Water bill", date(2024, 1, 10), "-90"),
        _txn("Water bill", date(2024, 4, 10), "-90"),
        _txn("Water bill", date(2024, 7, 11), "-92"),
        _txn("Water bill", date(2024, 10, 10), "-90"),
    ]
    suggestion = DetectionService().detect(txns)[0]

    assert suggestion.recurrence_months == 3
    assert abs(suggestion.confidence_score - (4 / 12 + 0.3 + 0.1)) < 1e-9


def test_month_end_payments_get_end_of_month_pattern() -> None:
    txns = [
        _txn("Gym", date(2025, 1, 31), "-30"),
        _txn("Gym", date(2025, 2, 28), "-30"),
        _txn("Gym", date(2025, 3, 31), "-30"),
        _txn("Gym", date(2025, 4, 30), "-30"),
    ]
    suggestion = DetectionService().detect(txns)[0]
    assert suggestion.day_pattern == EndOfMonth()


def test_unstable_amounts_are_flagged() -> None:
    txns = [
        _txn("Electricity", date(2025, 1, 5), "-50"),
        _txn("Electricity", date(2025, 2, 5), "-90"),
        _txn("Electricity", date(2025, 3, 5), "-60"),
    ]
    suggestion = DetectionService().detect(txns)[0]
    assert not suggestion.is_amount_stable
    assert suggestion.amount_range == (Decimal("50"), Decimal("90"))


def test_irregular_or_single_transactions_are_ignored() -> None:
    assert DetectionService().detect([_txn("Coffee", date(2025, 1, 3))]) == []
    scattered = [
        _txn("Hardware store", date(2025, 1, 3)),
        _txn("Hardware store", date(2025, 1, 9)),
        _txn("Hardware store", date(2025, 5, 20)),
    ]
    assert DetectionService().detect(scattered) == []


def test_existing_definitions_suppress_suggestions() -> None:
    existing = [
        ObligationDefinition(
            name="netflix",
            amount=Decimal("15.99"),
            recurrence_interval_months=1,
            first_occurrence_date=date(2024, 1, 15),
        )
    ]
    assert DetectionService().detect(_netflix(), existing) == []


def test_minimum_occurrences_is_configurable() -> None:
    txns = _netflix()[:3]
    criteria = DetectionCriteria(minimum_occurrences=4)
    assert DetectionService(criteria).detect(txns) == []
    assert len(DetectionService().detect(txns)) == 1


def test_suggestion_service_reads_lookback_window() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(_netflix())
        session.add_all(
            [
                _txn("Magazine", date(2019, 1, 1), "-5"),
                _txn("Magazine", date(2019, 2, 1), "-5"),
                _txn("Magazine", date(2019, 3, 1), "-5"),
            ]
        )
        session.commit()

        service = SuggestionService(session, clock=lambda: date(2025, 1, 1))
        names = [s.name for s in service.detect_suggestions(DetectionCriteria())]
        assert names == ["Netflix"]
