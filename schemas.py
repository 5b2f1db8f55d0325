import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from detection import Suggestion
from models import DateAdjustmentPolicy, OccurrenceStatus, SavingStrategy
from patterns import DayOfMonthPattern, describe


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal
    date: date
    category_id: Optional[int] = None


class CustomHolidayIn(BaseModel):
    date: date
    name: str = Field(..., min_length=1, max_length=120)
    is_recurring: bool = False


# Business rules (positive amount, interval, custom saving amount) are checked by
# ObligationDefinition.validate so every violation is reported at once.
class DefinitionIn(BaseModel):
    name: str = ""
    notes: str = ""
    amount: Decimal
    recurrence_interval_months: int
    first_occurrence_date: date
    end_date: Optional[date] = None
    lead_time_months: int = 0
    category_id: Optional[int] = None
    saving_strategy: SavingStrategy = SavingStrategy.evenly_distributed
    custom_monthly_saving_amount: Optional[Decimal] = None
    date_adjustment_policy: DateAdjustmentPolicy = DateAdjustmentPolicy.none
    day_pattern: Optional[DayOfMonthPattern] = None


class OccurrenceCompletionIn(BaseModel):
    actual_date: date
    actual_amount: Decimal
    transaction_id: Optional[int] = None


class OccurrenceUpdateIn(BaseModel):
    status: OccurrenceStatus
    actual_date: Optional[dt.date] = None
    actual_amount: Optional[Decimal] = None
    transaction_id: Optional[int] = None


class SavingsGoalIn(BaseModel):
    name: str = ""
    monthly_saving_amount: Decimal
    start_date: date
    target_amount: Optional[Decimal] = None
    target_date: Optional[dt.date] = None
    category_id: Optional[int] = None
    is_active: bool = True


class WithdrawalIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    withdrawn_on: date
    note: Optional[str] = Field(default=None, max_length=200)


class SynchronizationSummary(BaseModel):
    created_count: int
    updated_count: int
    removed_count: int
    synced_at: datetime


class OccurrenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    definition_id: int
    scheduled_date: date
    expected_amount: Decimal
    status: OccurrenceStatus
    actual_date: Optional[dt.date] = None
    actual_amount: Optional[Decimal] = None
    transaction_id: Optional[int] = None


class DefinitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    notes: str
    amount: Decimal
    recurrence_interval_months: int
    recurrence_description: str
    first_occurrence_date: date
    end_date: Optional[dt.date] = None
    lead_time_months: int
    category_id: Optional[int] = None
    saving_strategy: SavingStrategy
    custom_monthly_saving_amount: Optional[Decimal] = None
    monthly_saving_amount: Decimal
    date_adjustment_policy: DateAdjustmentPolicy
    day_pattern: Optional[DayOfMonthPattern] = None
    occurrences: list[OccurrenceOut] = Field(default_factory=list)


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    definition_id: int
    total_saved_amount: Decimal
    total_paid_amount: Decimal
    balance: Decimal
    is_insufficient: bool
    last_updated_year: int
    last_updated_month: int


class SuggestionOut(BaseModel):
    name: str
    amount: Decimal
    recurrence_months: int
    start_date: date
    last_occurrence_date: Optional[dt.date] = None
    category_id: Optional[int] = None
    day_pattern: DayOfMonthPattern
    day_pattern_label: str
    pattern_description: str
    match_keywords: list[str]
    occurrence_count: int
    is_amount_stable: bool
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    confidence_score: float

    @classmethod
    def from_suggestion(cls, suggestion: Suggestion) -> "SuggestionOut":
        low, high = suggestion.amount_range or (None, None)
        return cls(
            name=suggestion.name,
            amount=suggestion.amount,
            recurrence_months=suggestion.recurrence_months,
            start_date=suggestion.start_date,
            last_occurrence_date=suggestion.last_occurrence_date,
            category_id=suggestion.category_id,
            day_pattern=suggestion.day_pattern,
            day_pattern_label=describe(suggestion.day_pattern),
            pattern_description=suggestion.pattern_description,
            match_keywords=suggestion.match_keywords,
            occurrence_count=suggestion.occurrence_count,
            is_amount_stable=suggestion.is_amount_stable,
            amount_min=low,
            amount_max=high,
            confidence_score=suggestion.confidence_score,
        )
