"""
Recurrence patterns for availability windows.

A pattern is a tagged variant keyed by ``type``; each variant carries only the
fields meaningful for it. The range policy is a second tagged variant keyed
by ``range_type``. Patterns are stored as JSON on ResourceAvailability and
parsed back with parse_recurrence_pattern().

Example:
    {"type": "weekly", "interval": 1, "days_of_week": ["monday", "wednesday"],
     "range": {"range_type": "number_of_occurrences", "number_of_occurrences": 10}}
"""

from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator


DayOfWeek = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
WeekOfMonth = Literal["first", "second", "third", "fourth", "last"]

# Python's date.weekday(): 0=Monday, 6=Sunday
WEEKDAY_INDEX: Dict[str, int] = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

WEEK_OF_MONTH_INDEX: Dict[str, int] = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "last": -1,
}


# ===== Range policies =====

class NoEndRange(BaseModel):
    """Occurrences continue indefinitely."""
    model_config = ConfigDict(extra="forbid")

    range_type: Literal["no_end"] = "no_end"


class EndDateRange(BaseModel):
    """Occurrences stop after end_date (inclusive)."""
    model_config = ConfigDict(extra="forbid")

    range_type: Literal["end_date"] = "end_date"
    end_date: date


class NumberedRange(BaseModel):
    """Exactly number_of_occurrences occurrences, counted from the first one."""
    model_config = ConfigDict(extra="forbid")

    range_type: Literal["number_of_occurrences"] = "number_of_occurrences"
    number_of_occurrences: int = Field(..., ge=1)


RecurrenceRange = Annotated[
    Union[NoEndRange, EndDateRange, NumberedRange],
    Field(discriminator="range_type"),
]


# ===== Patterns =====

class _PatternBase(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    interval: int = Field(1, ge=1)
    """Repeat every N days/weeks/months/years."""

    range: RecurrenceRange = Field(default_factory=NoEndRange)


class DailyRecurrence(_PatternBase):
    """Every `interval` days."""
    type: Literal["daily"] = "daily"


class WeeklyRecurrence(_PatternBase):
    """On the listed weekdays of every `interval`-th week."""
    type: Literal["weekly"] = "weekly"
    days_of_week: List[DayOfWeek] = Field(
        ..., min_length=1, validation_alias=AliasChoices("days_of_week", "days")
    )
    first_day_of_week: DayOfWeek = "monday"
    """Day the week starts on; decides which days share a week when interval > 1."""


class _DayInMonthMixin(BaseModel):
    """Either an absolute day_of_month or an nth weekday (week_of_month + day_of_week)."""

    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    week_of_month: Optional[WeekOfMonth] = None
    day_of_week: Optional[DayOfWeek] = None

    @model_validator(mode="after")
    def _check_day_selector(self):
        has_absolute = self.day_of_month is not None
        has_relative = self.week_of_month is not None or self.day_of_week is not None
        if has_absolute and has_relative:
            raise ValueError("use either day_of_month or week_of_month/day_of_week, not both")
        if not has_absolute and not has_relative:
            raise ValueError("day_of_month or week_of_month/day_of_week is required")
        if has_relative and (self.week_of_month is None or self.day_of_week is None):
            raise ValueError("week_of_month and day_of_week must be given together")
        return self


class MonthlyRecurrence(_DayInMonthMixin, _PatternBase):
    """On a day of every `interval`-th month. Months lacking the day are skipped."""
    type: Literal["monthly"] = "monthly"


class YearlyRecurrence(_DayInMonthMixin, _PatternBase):
    """On a day of `month` every `interval`-th year."""
    type: Literal["yearly"] = "yearly"
    month: int = Field(..., ge=1, le=12)


RecurrencePattern = Annotated[
    Union[DailyRecurrence, WeeklyRecurrence, MonthlyRecurrence, YearlyRecurrence],
    Field(discriminator="type"),
]

_pattern_adapter: TypeAdapter[Any] = TypeAdapter(RecurrencePattern)


def parse_recurrence_pattern(data: Dict[str, Any]) -> Union[DailyRecurrence, WeeklyRecurrence, MonthlyRecurrence, YearlyRecurrence]:
    """
    Parse a stored or submitted recurrence pattern.

    Args:
        data: JSON-compatible pattern dict

    Returns:
        The concrete pattern variant

    Raises:
        pydantic.ValidationError: If the pattern is malformed
    """
    return _pattern_adapter.validate_python(data)


def dump_recurrence_pattern(pattern: BaseModel) -> Dict[str, Any]:
    """Serialize a pattern for JSON storage (dates become ISO strings)."""
    return pattern.model_dump(mode="json")
