"""
Event delivery bus.

Connections subscribe to named topics; publishing an event delivers it once to
every connection subscribed at that moment. Nothing is queued or retried, so
a connection that is not subscribed when an event is published never sees it.

Authorization is the caller's job: check that a user may join a topic before
calling ``subscribe``.
"""

from typing import Any, Dict, Optional, Protocol, Set

from app.core.logging import logger
from app.shared.exceptions import UpstreamUnavailableException


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_topic(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class Transport(Protocol):
    """Sends a single event to a single live connection."""

    async def send(self, sid: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class SocketIOTransport:
    """Transport over a python-socketio ``AsyncServer``."""

    def __init__(self, sio):
        self.sio = sio

    async def send(self, sid: str, event: str, payload: Dict[str, Any]) -> None:
        await self.sio.emit(event, payload, to=sid)


class EventBus:
    """Topic-based publish/subscribe over live connections."""

    def __init__(self, transport: Transport):
        self.transport = transport
        self._topics: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    def subscribe(self, sid: str, topic: str) -> None:
        self._topics.setdefault(topic, set()).add(sid)
        self._memberships.setdefault(sid, set()).add(topic)

    def unsubscribe(self, sid: str, topic: str) -> None:
        members = self._topics.get(topic)
        if members is not None:
            members.discard(sid)
            if not members:
                del self._topics[topic]

        topics = self._memberships.get(sid)
        if topics is not None:
            topics.discard(topic)
            if not topics:
                del self._memberships[sid]

    def drop_connection(self, sid: str) -> None:
        """Remove a connection from every topic it joined."""
        for topic in list(self._memberships.get(sid, ())):
            self.unsubscribe(sid, topic)

    def subscribers(self, topic: str) -> Set[str]:
        return set(self._topics.get(topic, ()))

    def topics_of(self, sid: str) -> Set[str]:
        return set(self._memberships.get(sid, ()))

    async def send(self, sid: str, event: str, payload: Dict[str, Any]) -> bool:
        """Deliver directly to one connection. Returns False if the transport failed."""
        try:
            await self.transport.send(sid, event, payload)
            return True
        except Exception as e:
            logger.warning(f"Failed to deliver '{event}' to {sid}: {e}")
            return False

    async def publish(
        self,
        topic: str,
        event: str,
        payload: Dict[str, Any],
        skip_sid: Optional[str] = None,
    ) -> int:
        """
        Deliver ``event`` to every current subscriber of ``topic``.

        Returns:
            Number of connections the event reached

        Raises:
            UpstreamUnavailableException: If there were recipients and the
                transport failed for all of them
        """
        recipients = [sid for sid in self.subscribers(topic) if sid != skip_sid]
        if not recipients:
            logger.debug(f"No subscribers on {topic} for '{event}'")
            return 0

        delivered = 0
        for sid in recipients:
            if await self.send(sid, event, payload):
                delivered += 1

        if delivered == 0:
            raise UpstreamUnavailableException(f"Could not deliver '{event}' on {topic}")

        logger.debug(f"Published '{event}' on {topic} to {delivered}/{len(recipients)} connections")
        return delivered
