"""
Conversion between RecurrenceRule values and the string stored on a task row.

The stored form is a compact JSON object using the board's camelCase keys::

    {"frequency":"weekly","interval":2,"daysOfWeek":[1,3],"endType":"never"}

Reading is forgiving: unknown keys and keys that do not apply to the rule's
frequency are ignored, and anything that cannot be turned into a valid rule
comes back as None so callers treat the task as not recurring.
"""
import json
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from board_recurrence.dates import DateLike, as_date, sunday_weekday
from board_recurrence.domain.rule import EndType, Frequency, RecurrenceRule

logger = logging.getLogger(__name__)


def _optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    return value


def _int_list(data: Dict[str, Any], key: str) -> Optional[List[int]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in value):
        raise ValueError(f"'{key}' must be a list of integers, got {value!r}")
    return value


def _parse_date(value: Any) -> date:
    if not isinstance(value, str):
        raise ValueError(f"'endDate' must be an ISO date string, got {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        return datetime.fromisoformat(value).date()


def _fields_from_json(data: Dict[str, Any]) -> Dict[str, Any]:
    frequency = Frequency(data.get("frequency"))
    interval = _optional_int(data, "interval")
    end_type = EndType(data.get("endType") or EndType.NEVER.value)

    fields: Dict[str, Any] = {
        "frequency": frequency,
        "interval": 1 if interval is None else interval,
        "end_type": end_type,
    }

    if frequency == Frequency.WEEKLY:
        fields["days_of_week"] = _int_list(data, "daysOfWeek")
    elif frequency == Frequency.MONTHLY:
        day_of_month = _optional_int(data, "dayOfMonth")
        week_of_month = _optional_int(data, "weekOfMonth")
        fields["day_of_month"] = day_of_month
        fields["week_of_month"] = week_of_month
        if week_of_month is not None and day_of_month is None:
            days = _int_list(data, "daysOfWeek")
            fields["days_of_week"] = days[:1] if days else None

    if end_type == EndType.DATE:
        fields["end_date"] = _parse_date(data.get("endDate"))
    elif end_type == EndType.COUNT:
        fields["end_count"] = _optional_int(data, "endCount")

    return fields


def parse(serialized: Optional[str]) -> Optional[RecurrenceRule]:
    """
    Parse a stored rule string.

    Returns:
        The rule, or None if the string is empty, malformed or describes an invalid rule.
    """
    if not serialized:
        return None
    try:
        data = json.loads(serialized)
    except (TypeError, ValueError):
        logger.debug("Stored recurrence rule is not JSON: %r", serialized)
        return None
    if not isinstance(data, dict):
        logger.debug("Stored recurrence rule is not a JSON object: %r", serialized)
        return None

    try:
        return RecurrenceRule.build(**_fields_from_json(data))
    except (TypeError, ValueError) as e:
        logger.debug("Stored recurrence rule %r is invalid: %s", serialized, e)
        return None


def stringify(rule: RecurrenceRule) -> str:
    data: Dict[str, Any] = {
        "frequency": rule.frequency.value,
        "interval": rule.interval,
    }
    if rule.days_of_week is not None:
        data["daysOfWeek"] = list(rule.days_of_week)
    if rule.day_of_month is not None:
        data["dayOfMonth"] = rule.day_of_month
    if rule.week_of_month is not None:
        data["weekOfMonth"] = rule.week_of_month
    data["endType"] = rule.end_type.value
    if rule.end_date is not None:
        data["endDate"] = rule.end_date.isoformat()
    if rule.end_count is not None:
        data["endCount"] = rule.end_count
    return json.dumps(data, separators=(",", ":"))


def create_default(
    anchor: Optional[DateLike],
    *,
    today: Optional[DateLike] = None,
    frequency: Union[Frequency, str] = Frequency.WEEKLY,
) -> RecurrenceRule:
    """
    Create the rule a task starts with when repetition is switched on.

    Weekly rules repeat on the anchor's weekday and monthly rules on the anchor's
    day of the month. `today` stands in for a missing anchor.

    Raises:
        ValueError: If neither anchor nor today is given.
    """
    reference = anchor if anchor is not None else today
    if reference is None:
        raise ValueError("create_default needs an anchor date or an explicit today")
    reference = as_date(reference)

    frequency = Frequency(frequency)
    if frequency == Frequency.WEEKLY:
        return RecurrenceRule.build(frequency, days_of_week=[sunday_weekday(reference)])
    if frequency == Frequency.MONTHLY:
        return RecurrenceRule.build(frequency, day_of_month=reference.day)
    return RecurrenceRule.build(frequency)
