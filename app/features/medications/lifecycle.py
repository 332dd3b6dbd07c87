"""Reminder state transitions and next-reminder bookkeeping."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from app.features.medications.models import Reminder, ReminderStatus


def effective_time(reminder: Reminder) -> datetime:
    """When the reminder is next available: the snooze expiry if snoozed."""
    if reminder.status == ReminderStatus.SNOOZED and reminder.snooze_until:
        return reminder.snooze_until
    return reminder.time


def compute_next_reminder(reminders: Iterable[Reminder], now: datetime) -> Optional[datetime]:
    """Earliest effective time strictly after ``now`` among non-terminal reminders."""
    upcoming = [
        effective_time(r)
        for r in reminders
        if not r.status.is_terminal and effective_time(r) > now
    ]
    return min(upcoming) if upcoming else None


def is_due(reminder: Reminder, now: datetime, window: timedelta) -> bool:
    """
    Whether a sweep at ``now`` should dispatch this reminder.

    Active reminders are due inside the look-ahead window [now, now + window].
    Snoozed reminders only become due once the snooze has elapsed, and stay
    due for one window length after that.
    """
    if reminder.status == ReminderStatus.ACTIVE:
        return now <= reminder.time <= now + window
    if reminder.status == ReminderStatus.SNOOZED and reminder.snooze_until:
        return now - window <= reminder.snooze_until <= now
    return False


def build_reminders(times: Iterable[datetime]) -> List[Reminder]:
    return [Reminder(time=t, status=ReminderStatus.ACTIVE) for t in times]


def apply_transition(
    reminder: Reminder,
    status: ReminderStatus,
    now: datetime,
    snooze_minutes: Optional[int] = None,
) -> bool:
    """
    Move a reminder to ``status`` in place.

    Returns False without touching the reminder when it is already terminal.
    """
    if reminder.status.is_terminal:
        return False

    if status == ReminderStatus.SNOOZED:
        reminder.snooze_until = now + timedelta(minutes=snooze_minutes or 0)
    elif status == ReminderStatus.ACTIVE:
        reminder.snooze_until = None

    reminder.status = status
    return True
