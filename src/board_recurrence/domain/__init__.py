from .rule import (
    RecurrenceRule,
    Frequency,
    EndType,
    PatternType,
    DailyPattern,
    WeeklyPattern,
    MonthlyByDayPattern,
    MonthlyByWeekPattern,
    YearlyPattern,
    NeverEnds,
    EndsOnDate,
    EndsAfterCount,
)
from .task import TaskRecord, GeneratedInstanceSpec, FireResult, SeriesState, TerminationReason

__all__ = [
    "RecurrenceRule", "Frequency", "EndType", "PatternType",
    "DailyPattern", "WeeklyPattern", "MonthlyByDayPattern", "MonthlyByWeekPattern", "YearlyPattern",
    "NeverEnds", "EndsOnDate", "EndsAfterCount",
    "TaskRecord", "GeneratedInstanceSpec", "FireResult", "SeriesState", "TerminationReason",
]
