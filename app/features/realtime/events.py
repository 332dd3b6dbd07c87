# Realtime Feature - Event payloads sent to connected clients

from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SocketEvent(BaseModel):
    """Base for wire events; fields go out camelCased."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MedicationReminderEvent(SocketEvent):
    """Payload of the medication_reminder event."""
    id: str
    medication_id: str
    medication_name: str
    generic_name: Optional[str] = None
    dosage: str
    time: datetime
    instructions: Optional[str] = None
    notes: Optional[str] = None
    is_test_reminder: Optional[bool] = None


class ReminderUpdateEvent(SocketEvent):
    """Payload of the reminder_update acknowledgement."""
    medication_id: str
    reminder_id: str
    status: str


class ReminderErrorEvent(SocketEvent):
    """Payload of the reminder_error event."""
    medication_id: Optional[str] = None
    reminder_id: Optional[str] = None
    error: str


class ChatMessagePayload(SocketEvent):
    """A chat message as sent over the socket."""
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    message: str
    read: bool
    created_at: datetime


class NewMessageEvent(SocketEvent):
    """Payload of new_message and new_message_notification."""
    conversation_id: str
    message: ChatMessagePayload


class MessagesReadEvent(SocketEvent):
    """Payload of the messages_read event."""
    conversation_id: str
    user_id: str
