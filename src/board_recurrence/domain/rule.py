from abc import ABC, abstractmethod
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from board_recurrence.errors import RuleValidationError

WEEKDAY_ABBREVIATIONS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
WEEK_OF_MONTH_NAMES = ("first", "second", "third", "fourth", "last")

# week_of_month value meaning "the last such weekday of the month"
LAST_WEEK_OF_MONTH = 5

Weekday = Annotated[int, Field(ge=0, le=6, description="Weekday index, 0=Sunday..6=Saturday")]


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PatternType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY_BY_DAY = "monthly_by_day"
    MONTHLY_BY_WEEK = "monthly_by_week"
    YEARLY = "yearly"


class EndType(str, Enum):
    NEVER = "never"
    DATE = "date"
    COUNT = "count"


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _every(unit: str, interval: int) -> str:
    if interval == 1:
        return f"Every {unit}"
    return f"Every {interval} {unit}s"


class BasePattern(BaseModel, ABC):
    """
    Base class for the frequency-specific part of a recurrence rule.
    """
    model_config = ConfigDict(frozen=True)

    frequency: ClassVar[Frequency]

    @abstractmethod
    def format_pattern(self, interval: int) -> str:
        pass


class DailyPattern(BasePattern):
    """
    Repeats every N days.
    """
    type: Literal[PatternType.DAILY] = PatternType.DAILY
    frequency: ClassVar[Frequency] = Frequency.DAILY

    def format_pattern(self, interval: int) -> str:
        return _every("day", interval)


class WeeklyPattern(BasePattern):
    """
    Repeats on the given weekdays, every N weeks.
    """
    type: Literal[PatternType.WEEKLY] = PatternType.WEEKLY
    frequency: ClassVar[Frequency] = Frequency.WEEKLY
    days_of_week: Tuple[Weekday, ...] = Field(..., min_length=1, description="Weekdays the series fires on, sorted and unique")

    @field_validator("days_of_week")
    def normalize_days(cls, v: Tuple[int, ...]) -> Tuple[int, ...]:
        return tuple(sorted(set(v)))

    def format_pattern(self, interval: int) -> str:
        days = ", ".join(WEEKDAY_ABBREVIATIONS[d] for d in self.days_of_week)
        return f"{_every('week', interval)} on {days}"


class MonthlyByDayPattern(BasePattern):
    """
    Repeats on a fixed day of the month, clamped to the month's last day.
    """
    type: Literal[PatternType.MONTHLY_BY_DAY] = PatternType.MONTHLY_BY_DAY
    frequency: ClassVar[Frequency] = Frequency.MONTHLY
    day_of_month: int = Field(..., ge=1, le=31, description="Day of the month, 1-31")

    def format_pattern(self, interval: int) -> str:
        return f"{_every('month', interval)} on the {ordinal(self.day_of_month)}"


class MonthlyByWeekPattern(BasePattern):
    """
    Repeats on the Nth weekday of the month (e.g. the second Tuesday).
    """
    type: Literal[PatternType.MONTHLY_BY_WEEK] = PatternType.MONTHLY_BY_WEEK
    frequency: ClassVar[Frequency] = Frequency.MONTHLY
    week_of_month: int = Field(..., ge=1, le=LAST_WEEK_OF_MONTH, description="1-4, or 5 for the last such weekday")
    day_of_week: Weekday

    def format_pattern(self, interval: int) -> str:
        week = WEEK_OF_MONTH_NAMES[self.week_of_month - 1]
        return f"{_every('month', interval)} on the {week} {WEEKDAY_NAMES[self.day_of_week]}"


class YearlyPattern(BasePattern):
    """
    Repeats on the same month and day every N years.
    """
    type: Literal[PatternType.YEARLY] = PatternType.YEARLY
    frequency: ClassVar[Frequency] = Frequency.YEARLY

    def format_pattern(self, interval: int) -> str:
        return _every("year", interval)


Pattern = Annotated[
    Union[DailyPattern, WeeklyPattern, MonthlyByDayPattern, MonthlyByWeekPattern, YearlyPattern],
    Field(discriminator="type"),
]


class NeverEnds(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal[EndType.NEVER] = EndType.NEVER


class EndsOnDate(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal[EndType.DATE] = EndType.DATE
    end_date: date = Field(..., description="Last date an occurrence may fall on")


class EndsAfterCount(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal[EndType.COUNT] = EndType.COUNT
    end_count: int = Field(..., ge=1, description="Number of occurrences the series fires in total")


EndCondition = Annotated[Union[NeverEnds, EndsOnDate, EndsAfterCount], Field(discriminator="type")]


class RecurrenceRule(BaseModel):
    """
    Immutable description of how a template task repeats.

    The frequency-specific fields live on `pattern`, a tagged union, so code that
    branches on frequency works on one concrete pattern type at a time. The flat
    properties expose the same data in the shape the task board stores it.
    """
    model_config = ConfigDict(frozen=True)

    pattern: Pattern = Field(..., description="Frequency and its frequency-specific fields")
    interval: int = Field(default=1, ge=1, description="Repeat every N units of the frequency")
    end: EndCondition = Field(default_factory=NeverEnds, description="When the series stops")

    @property
    def frequency(self) -> Frequency:
        return self.pattern.frequency

    @property
    def days_of_week(self) -> Optional[Tuple[int, ...]]:
        if isinstance(self.pattern, WeeklyPattern):
            return self.pattern.days_of_week
        if isinstance(self.pattern, MonthlyByWeekPattern):
            return (self.pattern.day_of_week,)
        return None

    @property
    def day_of_month(self) -> Optional[int]:
        if isinstance(self.pattern, MonthlyByDayPattern):
            return self.pattern.day_of_month
        return None

    @property
    def week_of_month(self) -> Optional[int]:
        if isinstance(self.pattern, MonthlyByWeekPattern):
            return self.pattern.week_of_month
        return None

    @property
    def end_type(self) -> EndType:
        return self.end.type

    @property
    def end_date(self) -> Optional[date]:
        if isinstance(self.end, EndsOnDate):
            return self.end.end_date
        return None

    @property
    def end_count(self) -> Optional[int]:
        if isinstance(self.end, EndsAfterCount):
            return self.end.end_count
        return None

    def to_fields(self) -> Dict[str, Any]:
        """
        Return the rule as flat fields, the inverse of `build`.
        """
        days = self.days_of_week
        return {
            "frequency": self.frequency,
            "interval": self.interval,
            "days_of_week": list(days) if days is not None else None,
            "day_of_month": self.day_of_month,
            "week_of_month": self.week_of_month,
            "end_type": self.end_type,
            "end_date": self.end_date,
            "end_count": self.end_count,
        }

    def with_changes(self, **changes: Any) -> "RecurrenceRule":
        """
        Build a new rule from this one's fields with some of them replaced.

        Raises:
            RuleValidationError: If a field name is unknown or the result breaks an invariant.
        """
        fields = self.to_fields()
        unknown = set(changes) - set(fields)
        if unknown:
            raise RuleValidationError(f"Unknown recurrence rule fields: {', '.join(sorted(unknown))}")
        fields.update(changes)
        return RecurrenceRule.build(**fields)

    @classmethod
    def build(
        cls,
        frequency: Union[Frequency, str],
        interval: int = 1,
        days_of_week: Optional[Sequence[int]] = None,
        day_of_month: Optional[int] = None,
        week_of_month: Optional[int] = None,
        end_type: Union[EndType, str] = EndType.NEVER,
        end_date: Optional[date] = None,
        end_count: Optional[int] = None,
    ) -> "RecurrenceRule":
        """
        Build a rule from the flat fields a task editor works with.

        Args:
            frequency: daily, weekly, monthly or yearly.
            interval: Repeat every N units, at least 1.
            days_of_week: Weekdays (0=Sunday) for weekly rules, or the single
                anchor weekday for monthly rules that use week_of_month.
            day_of_month: 1-31 for monthly rules on a fixed day.
            week_of_month: 1-5 (5 means last) for monthly rules on a weekday.
            end_type: never, date or count.
            end_date: Required when end_type is date.
            end_count: Required when end_type is count.

        Raises:
            RuleValidationError: If the fields break any rule invariant.
        """
        try:
            frequency = Frequency(frequency)
        except ValueError:
            raise RuleValidationError(f"Unsupported frequency: {frequency!r}")
        try:
            end_type = EndType(end_type)
        except ValueError:
            raise RuleValidationError(f"Unsupported end type: {end_type!r}")

        data = {
            "pattern": cls._pattern_fields(frequency, days_of_week, day_of_month, week_of_month),
            "interval": interval,
            "end": cls._end_fields(end_type, end_date, end_count),
        }
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise RuleValidationError(f"Invalid recurrence rule: {e}") from e

    @staticmethod
    def _pattern_fields(
        frequency: Frequency,
        days_of_week: Optional[Sequence[int]],
        day_of_month: Optional[int],
        week_of_month: Optional[int],
    ) -> Dict[str, Any]:
        if frequency == Frequency.WEEKLY:
            if day_of_month is not None or week_of_month is not None:
                raise RuleValidationError("Weekly rules cannot set day_of_month or week_of_month")
            if not days_of_week:
                raise RuleValidationError("Weekly rules need at least one day of the week")
            return {"type": PatternType.WEEKLY, "days_of_week": list(days_of_week)}

        if frequency == Frequency.MONTHLY:
            if (day_of_month is None) == (week_of_month is None):
                raise RuleValidationError("Monthly rules need exactly one of day_of_month or week_of_month")
            if day_of_month is not None:
                if days_of_week:
                    raise RuleValidationError("Monthly rules on a day of the month cannot set days_of_week")
                return {"type": PatternType.MONTHLY_BY_DAY, "day_of_month": day_of_month}
            if not days_of_week or len(days_of_week) != 1:
                raise RuleValidationError("Monthly rules on a week of the month need exactly one day of the week")
            return {
                "type": PatternType.MONTHLY_BY_WEEK,
                "week_of_month": week_of_month,
                "day_of_week": days_of_week[0],
            }

        if days_of_week or day_of_month is not None or week_of_month is not None:
            raise RuleValidationError(f"{frequency.value.capitalize()} rules take no day fields")
        if frequency == Frequency.DAILY:
            return {"type": PatternType.DAILY}
        return {"type": PatternType.YEARLY}

    @staticmethod
    def _end_fields(end_type: EndType, end_date: Optional[date], end_count: Optional[int]) -> Dict[str, Any]:
        if end_type == EndType.DATE:
            if end_date is None or end_count is not None:
                raise RuleValidationError("Rules ending on a date need end_date and no end_count")
            if isinstance(end_date, datetime):
                end_date = end_date.date()
            return {"type": EndType.DATE, "end_date": end_date}
        if end_type == EndType.COUNT:
            if end_count is None or end_date is not None:
                raise RuleValidationError("Rules ending after a count need end_count and no end_date")
            return {"type": EndType.COUNT, "end_count": end_count}
        if end_date is not None or end_count is not None:
            raise RuleValidationError("Rules that never end cannot set end_date or end_count")
        return {"type": EndType.NEVER}
