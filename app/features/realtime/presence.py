# Realtime Feature - Presence Registry

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set


@dataclass
class PresenceEntry:
    """One live connection of an authenticated user."""
    user_id: str
    role: str
    sid: str
    name: Optional[str] = None


class PresenceRegistry:
    """
    Tracks which users currently hold a live connection.

    A user may be connected from several devices at once; each connection is
    registered under its own session id. Owned by the event loop thread, so
    no locking is done here.
    """

    def __init__(self):
        self._by_sid: Dict[str, PresenceEntry] = {}
        self._by_user: Dict[str, Set[str]] = {}

    def register(self, user_id: str, role: str, sid: str, name: Optional[str] = None) -> PresenceEntry:
        """Register a connection. Re-registering a sid replaces its previous entry."""
        self.unregister(sid)

        entry = PresenceEntry(user_id=user_id, role=role, sid=sid, name=name)
        self._by_sid[sid] = entry
        self._by_user.setdefault(user_id, set()).add(sid)
        return entry

    def unregister(self, sid: str) -> Optional[PresenceEntry]:
        entry = self._by_sid.pop(sid, None)
        if entry is None:
            return None

        sids = self._by_user.get(entry.user_id)
        if sids is not None:
            sids.discard(sid)
            if not sids:
                del self._by_user[entry.user_id]
        return entry

    def is_online(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    def user_of(self, sid: str) -> Optional[PresenceEntry]:
        return self._by_sid.get(sid)

    def connections_of(self, user_id: str) -> List[str]:
        return sorted(self._by_user.get(user_id, ()))

    def online_users_of_role(self, role: str) -> List[str]:
        """Connection ids of every online user with ``role``."""
        return [sid for sid, entry in self._by_sid.items() if entry.role == role]

    def online_status(self, user_ids: Iterable[str]) -> Dict[str, bool]:
        return {user_id: self.is_online(user_id) for user_id in user_ids}

    def __len__(self) -> int:
        return len(self._by_sid)
