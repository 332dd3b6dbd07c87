# Messages Feature - Schemas

from typing import Optional, List, Dict
from datetime import datetime
from pydantic import BaseModel, Field


# ============== Message Schemas ==============

class MessageCreate(BaseModel):
    """Request schema for sending a message."""
    message: str = Field(..., min_length=1, max_length=5000)


class MessageResponse(BaseModel):
    """Response schema for a message."""
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    message: str
    read: bool = False
    created_at: datetime


class SentMessageResponse(MessageResponse):
    """Response schema for a sent message."""
    receiver_online: bool = False


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class MessageListResponse(BaseModel):
    """Response schema for a page of messages, oldest first."""
    messages: List[MessageResponse]
    pagination: Pagination


# ============== Conversation Schemas ==============

class ConversationResponse(BaseModel):
    """Response schema for a conversation."""
    id: str
    patient_id: str
    pharmacy_id: str
    patient_name: Optional[str] = None  # Populated from user data
    pharmacy_name: Optional[str] = None  # Populated from user data
    last_message: str = ""
    last_message_at: Optional[datetime] = None
    unread_count: int = 0  # Unread count for the requesting party
    created_at: datetime
    updated_at: datetime


# ============== Presence Schemas ==============

class OnlineStatusRequest(BaseModel):
    """Request schema for checking who is online."""
    user_ids: List[str] = Field(..., max_length=200)


class OnlineStatusResponse(BaseModel):
    """Response schema mapping user IDs to online status."""
    online_status: Dict[str, bool]


# ============== Generic Response ==============

class MessageStatusResponse(BaseModel):
    """Generic status response."""
    message: str
    success: bool = True
