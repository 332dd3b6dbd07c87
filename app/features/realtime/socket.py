# Realtime Feature - Socket.IO Server

import socketio
from typing import Optional, Dict, Any
from fastapi import HTTPException
from app.core.logging import logger
from app.features.auth.dependencies import resolve_token
from app.features.auth.models import UserRole
from app.features.auth.store import UserStore
from app.features.medications.scheduler import ReminderScheduler
from app.features.messages.service import ChatService
from app.features.realtime.bus import EventBus, conversation_topic, user_topic
from app.features.realtime.events import ReminderErrorEvent
from app.features.realtime.presence import PresenceEntry, PresenceRegistry
from app.shared.exceptions import UpstreamUnavailableException


# Create Socket.IO server with ASGI support
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",  # In production, restrict this
    logger=False,
    engineio_logger=False,
)

# Create ASGI app for Socket.IO
socket_app = socketio.ASGIApp(sio)


def _conversation_id(data: Any) -> Optional[str]:
    """Clients send either the bare id or {"conversation_id": ...}."""
    if isinstance(data, str):
        return data or None
    if isinstance(data, dict):
        return data.get("conversation_id") or data.get("conversationId")
    return None


class RealtimeGateway:
    """
    Binds Socket.IO events to the presence registry, the event bus, the
    reminder scheduler and the chat service.
    """

    EVENTS = (
        "connect",
        "disconnect",
        "join_conversation",
        "leave_conversation",
        "typing",
        "reminder_response",
        "patient_popup_request",
        "patient_popup_cancel",
        "pharmacist_popup_response",
    )

    def __init__(
        self,
        sio: socketio.AsyncServer,
        users: UserStore,
        presence: PresenceRegistry,
        bus: EventBus,
        scheduler: ReminderScheduler,
        chat: ChatService,
    ):
        self.sio = sio
        self.users = users
        self.presence = presence
        self.bus = bus
        self.scheduler = scheduler
        self.chat = chat

    def register(self) -> None:
        """Attach the handlers to the Socket.IO server."""
        for event in self.EVENTS:
            self.sio.on(event, getattr(self, f"on_{event}"))

    async def _error(self, sid: str, message: str) -> None:
        await self.bus.send(sid, "error", {"message": message})

    # ============== Connection ==============

    async def on_connect(self, sid, environ, auth=None):
        """Handle client connection."""
        token = auth.get("token") if isinstance(auth, dict) else None
        if not token:
            logger.warning("Socket connection attempted without token")
            return False

        try:
            user = await resolve_token(token, self.users)
        except Exception as e:
            logger.error(f"Socket authentication error: {e}")
            return False

        if not user:
            logger.warning(f"Socket authentication failed: {sid}")
            return False  # Reject connection

        self.presence.register(user.id, user.role.value, sid, name=user.name)
        self.bus.subscribe(sid, user_topic(user.id))

        logger.info(f"Socket connected: {sid} ({user.role.value}: {user.name})")

        await self.bus.send(sid, "connected", {
            "message": "Connected successfully",
            "user_type": user.role.value,
            "user_id": user.id,
        })

        return True

    async def on_disconnect(self, sid, reason=None):
        """Handle client disconnection."""
        entry = self.presence.unregister(sid)
        self.bus.drop_connection(sid)

        if entry:
            logger.info(f"Socket disconnected: {sid} ({entry.role}: {entry.name})")
        else:
            logger.info(f"Socket disconnected: {sid}")

    def _user(self, sid) -> Optional[PresenceEntry]:
        return self.presence.user_of(sid)

    # ============== Conversations ==============

    async def on_join_conversation(self, sid, data):
        """Join a conversation topic if the user takes part in it."""
        entry = self._user(sid)
        if not entry:
            await self._error(sid, "Not authenticated")
            return

        conversation_id = _conversation_id(data)
        if not conversation_id:
            await self._error(sid, "conversation_id required")
            return

        if not await self.chat.authorize_join(conversation_id, entry.user_id):
            logger.warning(f"User {entry.user_id} refused access to conversation {conversation_id}")
            await self._error(sid, "Not a participant in this conversation")
            return

        self.bus.subscribe(sid, conversation_topic(conversation_id))
        logger.info(f"User {entry.user_id} joined conversation {conversation_id}")

        await self.bus.send(sid, "joined", {
            "conversation_id": conversation_id,
            "message": "Joined conversation",
        })

    async def on_leave_conversation(self, sid, data):
        """Leave a conversation topic."""
        entry = self._user(sid)
        conversation_id = _conversation_id(data)
        if not entry or not conversation_id:
            return

        self.bus.unsubscribe(sid, conversation_topic(conversation_id))
        logger.info(f"User {entry.user_id} left conversation {conversation_id}")

    async def on_typing(self, sid, data):
        """Relay a typing indicator to the rest of the conversation."""
        entry = self._user(sid)
        conversation_id = _conversation_id(data)
        if not entry or not conversation_id:
            return

        topic = conversation_topic(conversation_id)
        if sid not in self.bus.subscribers(topic):
            return

        try:
            await self.bus.publish(topic, "user_typing", {
                "conversation_id": conversation_id,
                "user_id": entry.user_id,
                "user_type": entry.role,
                "is_typing": bool(data.get("is_typing", True)) if isinstance(data, dict) else True,
            }, skip_sid=sid)
        except UpstreamUnavailableException as e:
            logger.warning(f"Typing indicator for conversation {conversation_id} not delivered: {e.detail}")

    # ============== Reminders ==============

    async def on_reminder_response(self, sid, data):
        """
        Handle a patient's answer to a reminder.

        Args:
            data: {"medicationId", "reminderId", "action": taken|snooze|missed,
                   "snoozeMinutes"?}
        """
        entry = self._user(sid)
        if not entry:
            await self._error(sid, "Not authenticated")
            return

        data = data if isinstance(data, dict) else {}
        medication_id = data.get("medicationId")
        reminder_id = data.get("reminderId")

        try:
            update = await self.scheduler.handle_response(
                medication_id,
                reminder_id,
                data.get("action"),
                data.get("snoozeMinutes"),
                patient_id=entry.user_id,
            )
        except HTTPException as e:
            logger.warning(f"Reminder response rejected for {entry.user_id}: {e.detail}")
            await self.bus.send(sid, "reminder_error", ReminderErrorEvent(
                medication_id=medication_id,
                reminder_id=reminder_id,
                error=str(e.detail),
            ).to_payload())
            return
        except Exception as e:
            logger.error(f"Error handling reminder response: {e}")
            await self.bus.send(sid, "reminder_error", ReminderErrorEvent(
                medication_id=medication_id,
                reminder_id=reminder_id,
                error="Failed to process reminder response",
            ).to_payload())
            return

        await self.bus.send(sid, "reminder_update", update)

    # ============== Pharmacist popups ==============

    async def _to_pharmacists(self, event: str, payload: Dict[str, Any]) -> int:
        sent = 0
        for pharmacist_sid in self.presence.online_users_of_role(UserRole.PHARMACY.value):
            if await self.bus.send(pharmacist_sid, event, payload):
                sent += 1
        return sent

    async def on_patient_popup_request(self, sid, data):
        """Show a patient's request to every online pharmacist."""
        entry = self._user(sid)
        if not entry or entry.role != UserRole.PATIENT.value:
            return

        payload = dict(data) if isinstance(data, dict) else {}
        payload["patientId"] = entry.user_id

        sent = await self._to_pharmacists("show_popup", payload)
        logger.info(f"Popup from patient {entry.user_id} shown to {sent} pharmacists")

    async def on_patient_popup_cancel(self, sid, data=None):
        """Withdraw a patient's popup from every pharmacist."""
        entry = self._user(sid)
        if not entry or entry.role != UserRole.PATIENT.value:
            return

        await self._to_pharmacists("close_popup", {"patientId": entry.user_id})

    async def on_pharmacist_popup_response(self, sid, data):
        """Forward a pharmacist's answer to the patient and close the popup everywhere."""
        entry = self._user(sid)
        if not entry or entry.role != UserRole.PHARMACY.value:
            return

        data = data if isinstance(data, dict) else {}
        patient_id = data.get("patientId")
        if not patient_id:
            return

        response = {**data, "pharmacyId": entry.user_id}
        for patient_sid in self.presence.connections_of(patient_id):
            await self.bus.send(patient_sid, "popup_response", response)

        await self._to_pharmacists("close_popup", {
            "patientId": patient_id,
            "closedBy": entry.user_id,
        })
