"""
Reminder recurrence engine.

Turns a medication schedule (start, optional end, frequency) into the list of
absolute reminder timestamps. Open-ended schedules are capped so a medication
without an end date never produces an unbounded list.
"""

from datetime import datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from app.features.medications.models import ReminderFrequency
from app.shared.exceptions import ValidationException


# Fixed clock times for the multi-dose frequencies
DOSE_TIMES: Dict[ReminderFrequency, Tuple[time, ...]] = {
    ReminderFrequency.TWICE_DAILY: (time(9, 0), time(21, 0)),
    ReminderFrequency.THREE_TIMES_DAILY: (time(8, 0), time(14, 0), time(20, 0)),
    ReminderFrequency.FOUR_TIMES_DAILY: (time(8, 0), time(12, 0), time(16, 0), time(20, 0)),
}

# Maximum occurrences generated when there is no end date
OPEN_ENDED_CAPS: Dict[ReminderFrequency, int] = {
    ReminderFrequency.DAILY: 90,
    ReminderFrequency.TWICE_DAILY: 180,
    ReminderFrequency.THREE_TIMES_DAILY: 270,
    ReminderFrequency.FOUR_TIMES_DAILY: 360,
    ReminderFrequency.WEEKLY: 52,
    ReminderFrequency.MONTHLY: 12,
}

_STEPS = {
    ReminderFrequency.DAILY: relativedelta(days=1),
    ReminderFrequency.WEEKLY: relativedelta(weeks=1),
    ReminderFrequency.MONTHLY: relativedelta(months=1),
}


def _anchor(start: datetime, first_dose_time: Optional[datetime]) -> datetime:
    if first_dose_time is None:
        return start
    return start.replace(
        hour=first_dose_time.hour,
        minute=first_dose_time.minute,
        second=0,
        microsecond=0,
    )


def _stepped(anchor: datetime, step: relativedelta, end: Optional[datetime], cap: int) -> List[datetime]:
    # Each occurrence is computed from the anchor, so month ends clamp
    # (Jan 31 -> Feb 29 -> Mar 31) instead of drifting.
    times = []
    index = 0
    while True:
        current = anchor + step * index
        if end is not None and current > end:
            break
        times.append(current)
        index += 1
        if end is None and len(times) >= cap:
            break
    return times


def _multi_daily(
    start: datetime,
    clock_times: Tuple[time, ...],
    end: Optional[datetime],
    cap: int,
) -> List[datetime]:
    times = []
    day = start.date()
    while end is None or day <= end.date():
        for clock in clock_times:
            dose = datetime.combine(day, clock)
            if end is not None and dose > end:
                return times
            times.append(dose)
        if end is None and len(times) >= cap:
            break
        day += timedelta(days=1)
    return times


def generate(
    start: datetime,
    end: Optional[datetime],
    frequency: ReminderFrequency,
    first_dose_time: Optional[datetime] = None,
) -> List[datetime]:
    """
    Generate reminder timestamps for a schedule.

    Args:
        start: Schedule start; its calendar date anchors every timestamp
        end: Inclusive upper bound, or None for an open-ended schedule
        frequency: Recurrence rule
        first_dose_time: Overrides hour/minute for start-anchored frequencies

    Returns:
        Timestamps in ascending order

    Raises:
        ValidationException: If the frequency is unknown or end precedes start
    """
    try:
        frequency = ReminderFrequency(frequency)
    except ValueError:
        raise ValidationException(f"Unknown reminder frequency: {frequency}")

    if end is not None and end < start:
        raise ValidationException("end_date must not be before start_date")

    if frequency == ReminderFrequency.AS_NEEDED:
        return []

    if frequency == ReminderFrequency.ONCE:
        return [_anchor(start, first_dose_time)]

    cap = OPEN_ENDED_CAPS[frequency]

    if frequency in DOSE_TIMES:
        return _multi_daily(start, DOSE_TIMES[frequency], end, cap)

    return _stepped(_anchor(start, first_dose_time), _STEPS[frequency], end, cap)
