"""Date arithmetic for recurring assignments."""

from __future__ import annotations

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from ...models.domain import RecurrencePattern

# relativedelta clamps month steps to the last day (Jan 31 -> Feb 28/29).
_STEP_BY_PATTERN = {
    RecurrencePattern.WEEKLY: relativedelta(weeks=1),
    RecurrencePattern.BIWEEKLY: relativedelta(weeks=2),
    RecurrencePattern.MONTHLY: relativedelta(months=1),
}


def next_occurrence(value: date, pattern: RecurrencePattern) -> date:
    step = _STEP_BY_PATTERN.get(pattern)
    if step is None:
        raise ValueError(f"Unsupported recurrence pattern: {pattern}")
    return value + step


def week_start(value: date) -> date:
    """Monday of the week containing ``value``."""
    return value - timedelta(days=value.weekday())
