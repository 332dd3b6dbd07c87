"""Process-local record of reminders already dispatched."""

from datetime import datetime, timedelta
from typing import Dict, Tuple


class DedupLedger:
    """
    Set of (medication_id, reminder_id) pairs already sent, keyed to the
    reminder's due time so old entries can be pruned.

    Not persisted: after a restart reminders still inside the window are
    sent again.
    """

    def __init__(self, retention: timedelta = timedelta(hours=1)):
        self.retention = retention
        self._entries: Dict[Tuple[str, str], datetime] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def contains(self, medication_id: str, reminder_id: str) -> bool:
        return (medication_id, reminder_id) in self._entries

    def mark(self, medication_id: str, reminder_id: str, due: datetime) -> None:
        self._entries[(medication_id, reminder_id)] = due

    def discard(self, medication_id: str, reminder_id: str) -> None:
        self._entries.pop((medication_id, reminder_id), None)

    def prune(self, now: datetime) -> int:
        """Drop entries due before ``now - retention``. Returns how many were dropped."""
        cutoff = now - self.retention
        stale = [key for key, due in self._entries.items() if due < cutoff]
        for key in stale:
            del self._entries[key]
        return len(stale)
