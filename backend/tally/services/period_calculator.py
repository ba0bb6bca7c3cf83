"""Period arithmetic for recurrence schedules and installment plans.

Pure functions over ``datetime.date`` (Gregorian calendar, UTC day
boundaries). Month-based frequencies clamp the day to the last day of the
target month, so Jan 31 + 1 month is Feb 28 (or Feb 29 in a leap year).
"""

from datetime import date, timedelta
from typing import Iterator, Optional, Tuple

from dateutil.relativedelta import relativedelta

from tally.exceptions import ValidationError
from tally.models.recurrence import Frequency

DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.BIMONTHLY: 2,
    Frequency.QUARTERLY: 3,
    Frequency.SEMIANNUALLY: 6,
    Frequency.YEARLY: 12,
}


def _validate(frequency: Frequency, interval: int) -> None:
    if interval is None or interval <= 0:
        raise ValidationError("interval must be a positive integer", {"interval": interval})
    if frequency not in DAY_STEPS and frequency not in MONTH_STEPS:
        raise ValidationError(f"Unsupported frequency: {frequency}")


def _shift(frequency: Frequency, anchor: date, steps: int) -> date:
    if frequency in DAY_STEPS:
        return anchor + timedelta(days=DAY_STEPS[frequency] * steps)
    # relativedelta clamps the day to the end of the resulting month
    return anchor + relativedelta(months=MONTH_STEPS[frequency] * steps)


def next_date(frequency: Frequency, interval: int, from_date: date) -> date:
    """Return the date one period (frequency x interval) after from_date."""
    _validate(frequency, interval)
    return _shift(frequency, from_date, interval)


def occurrence_date(frequency: Frequency, interval: int, anchor: date, index: int) -> date:
    """
    Return the index-th occurrence of a schedule anchored at anchor.

    Index 0 is the anchor itself. Each occurrence is computed directly from
    the anchor, so a schedule anchored on the 31st returns to the 31st after
    passing through a shorter month.
    """
    _validate(frequency, interval)
    if index < 0:
        raise ValidationError("occurrence index must not be negative", {"index": index})
    return _shift(frequency, anchor, interval * index)


def iter_occurrences(
    frequency: Frequency,
    interval: int,
    anchor: date,
    until: Optional[date] = None,
    start_index: int = 0,
) -> Iterator[Tuple[int, date]]:
    """Yield (index, date) pairs from start_index while date <= until (forever if until is None)."""
    _validate(frequency, interval)
    index = start_index
    while True:
        current = _shift(frequency, anchor, interval * index)
        if until is not None and current > until:
            return
        yield index, current
        index += 1
