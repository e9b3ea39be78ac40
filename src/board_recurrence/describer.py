from typing import Optional, Union

from board_recurrence import codec
from board_recurrence.domain.rule import EndsAfterCount, EndsOnDate, RecurrenceRule

NOT_RECURRING_TEXT = "Does not repeat"


def describe(rule: Optional[Union[RecurrenceRule, str]]) -> str:
    """
    Render a rule as text, e.g. "Every 2 weeks on Mon, Wed" or
    "Every month on the last Friday, 6 times".

    Accepts a rule or its stored string; anything that is not a valid rule is
    described as not repeating.
    """
    if isinstance(rule, str):
        rule = codec.parse(rule)
    if rule is None:
        return NOT_RECURRING_TEXT

    text = rule.pattern.format_pattern(rule.interval)
    end = rule.end
    if isinstance(end, EndsOnDate):
        text += f" until {end.end_date:%b} {end.end_date.day}, {end.end_date.year}"
    elif isinstance(end, EndsAfterCount):
        text += f", {end.end_count} time" if end.end_count == 1 else f", {end.end_count} times"
    return text
