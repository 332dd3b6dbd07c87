# Messages Feature - Router

from fastapi import APIRouter, Depends, Query, status
from typing import List
from app.dependencies import get_chat_service
from app.features.auth.dependencies import get_current_patient, get_chat_participant
from app.features.auth.models import User
from app.features.messages.schemas import (
    ConversationResponse,
    MessageCreate,
    MessageListResponse,
    MessageStatusResponse,
    OnlineStatusRequest,
    OnlineStatusResponse,
    SentMessageResponse,
)
from app.features.messages.service import ChatService


router = APIRouter(prefix="/chat", tags=["Chat"])


@router.get("/conversation/pharmacy/{pharmacy_id}", response_model=ConversationResponse)
async def get_or_create_conversation(
    pharmacy_id: str,
    current_patient: User = Depends(get_current_patient),
    service: ChatService = Depends(get_chat_service)
):
    """
    Start a conversation with a pharmacy, or get the existing one.

    Requires patient authentication.
    """
    conversation = await service.get_or_create(current_patient.id, pharmacy_id)

    return ConversationResponse(
        id=conversation.id,
        patient_id=conversation.patient_id,
        pharmacy_id=conversation.pharmacy_id,
        patient_name=current_patient.name,
        last_message=conversation.last_message,
        last_message_at=conversation.last_message_at,
        unread_count=conversation.unread_patient,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


@router.get("/conversations", response_model=List[ConversationResponse])
async def get_conversations(
    current_user: User = Depends(get_chat_participant),
    service: ChatService = Depends(get_chat_service)
):
    """Get all conversations of the current patient or verified pharmacy."""
    return await service.list_conversations(current_user)


@router.get("/conversation/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_chat_participant),
    service: ChatService = Depends(get_chat_service)
):
    """Get messages in a conversation, newest page first."""
    return await service.get_messages(conversation_id, current_user.id, page=page, limit=limit)


@router.post(
    "/conversation/{conversation_id}/message",
    response_model=SentMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    request: MessageCreate,
    current_user: User = Depends(get_chat_participant),
    service: ChatService = Depends(get_chat_service)
):
    """Send a message in a conversation."""
    message, receiver_online = await service.send_message(
        conversation_id=conversation_id,
        sender_id=current_user.id,
        text=request.message,
    )

    return SentMessageResponse(**message.model_dump(), receiver_online=receiver_online)


@router.put("/conversation/{conversation_id}/read", response_model=MessageStatusResponse)
async def mark_messages_read(
    conversation_id: str,
    current_user: User = Depends(get_chat_participant),
    service: ChatService = Depends(get_chat_service)
):
    """Mark all messages addressed to the current user as read."""
    count = await service.mark_read(conversation_id, current_user.id)

    return MessageStatusResponse(message=f"Marked {count} messages as read")


@router.post("/status", response_model=OnlineStatusResponse)
async def get_online_status(
    request: OnlineStatusRequest,
    current_user: User = Depends(get_chat_participant),
    service: ChatService = Depends(get_chat_service)
):
    """Check which of the given users currently have a live connection."""
    return OnlineStatusResponse(online_status=service.online_status(request.user_ids))
