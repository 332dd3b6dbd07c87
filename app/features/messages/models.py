# Messages Feature - Models

from typing import Optional, List
from datetime import datetime
from beanie import Document, Indexed
from pydantic import BaseModel, Field
from pymongo import IndexModel
from app.shared.models import TimestampMixin


class ConversationFields(TimestampMixin):
    """
    A chat thread between one patient and one pharmacy.
    There is at most one conversation per (patient, pharmacy) pair.
    """

    patient_id: str
    pharmacy_id: str

    # Message ids in send order
    message_ids: List[str] = Field(default_factory=list)

    # Last message preview for conversation list
    last_message: str = ""
    last_message_at: Optional[datetime] = None

    # Unread counts for each party; only the other side's messages count
    unread_patient: int = 0
    unread_pharmacy: int = 0

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.patient_id, self.pharmacy_id)

    def other_participant(self, user_id: str) -> str:
        return self.pharmacy_id if user_id == self.patient_id else self.patient_id


class Conversation(ConversationFields):
    id: Optional[str] = None


class ConversationDocument(Document, ConversationFields):
    """Conversation document model."""

    patient_id: Indexed(str)
    pharmacy_id: Indexed(str)

    class Settings:
        name = "chat_conversations"
        use_state_management = True
        indexes = [
            # One conversation per patient/pharmacy pair
            IndexModel([("patient_id", 1), ("pharmacy_id", 1)], unique=True),
            [("patient_id", 1), ("last_message_at", -1)],
            [("pharmacy_id", 1), ("last_message_at", -1)],
        ]


class MessageFields(BaseModel):
    """A single chat message. Only ``read`` changes after creation."""

    conversation_id: str
    sender_id: str
    receiver_id: str
    message: str
    read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChatMessage(MessageFields):
    id: Optional[str] = None


class MessageDocument(Document, MessageFields):
    """Message document model."""

    conversation_id: Indexed(str)

    class Settings:
        name = "chat_messages"
        use_state_management = True
        indexes = [
            [("conversation_id", 1), ("created_at", -1)],
            # Unread lookups for mark-as-read
            [("conversation_id", 1), ("receiver_id", 1), ("read", 1)],
        ]

    class Config:
        json_schema_extra = {
            "example": {
                "conversation_id": "65a1f0c2e4b0a1b2c3d4e5f6",
                "sender_id": "65a1f0c2e4b0a1b2c3d4e5a1",
                "receiver_id": "65a1f0c2e4b0a1b2c3d4e5b2",
                "message": "Is my refill ready?",
                "read": False,
            }
        }
