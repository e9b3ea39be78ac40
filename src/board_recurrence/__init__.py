"""
Recurrence Scheduling Engine

This package computes when repeating tasks on a task board fall due and
materializes one task per occurrence.

Core Concepts:

Recurrence Rule:
    An immutable value describing how a task repeats: a frequency pattern
    (daily, weekly, monthly by day or by week, yearly), an interval, and an end
    condition (never, on a date, after a number of occurrences). It is stored
    on the task row as a compact JSON string.

Template:
    A task with is_recurring set and a stored rule. Only templates fire.

Instance:
    A concrete task produced by one firing of a template, linked back to it
    through parent_recurring_id. An instance never recurs itself.

Relationships:
    - A template fires many times; each firing creates exactly one instance
      and advances the template's last_recurrence and recurrence_count.
"""

from .codec import parse, stringify, create_default
from .calculator import next_occurrence
from .controller import SeriesController, plan_firing
from .describer import describe
from .domain import RecurrenceRule, Frequency, EndType, TaskRecord, GeneratedInstanceSpec, FireResult
from .errors import RecurrenceError, RuleValidationError, TemplateNotFoundError, RecursionNotAllowedError

__all__ = [
    "parse", "stringify", "create_default", "next_occurrence",
    "SeriesController", "plan_firing", "describe",
    "RecurrenceRule", "Frequency", "EndType", "TaskRecord", "GeneratedInstanceSpec", "FireResult",
    "RecurrenceError", "RuleValidationError", "TemplateNotFoundError", "RecursionNotAllowedError",
]
