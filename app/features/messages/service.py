# Messages Feature - Service

import math
from typing import Optional, List, Tuple, Dict, Any
from datetime import datetime
from app.features.auth.models import User, UserRole
from app.features.auth.store import UserStore
from app.features.messages.models import ChatMessage, Conversation
from app.features.messages.schemas import (
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    Pagination,
)
from app.features.messages.store import ChatStore
from app.features.realtime.bus import EventBus, conversation_topic, user_topic
from app.features.realtime.events import (
    ChatMessagePayload,
    MessagesReadEvent,
    NewMessageEvent,
)
from app.features.realtime.presence import PresenceRegistry
from app.core.logging import logger
from app.shared.exceptions import (
    ForbiddenException,
    NotFoundException,
    UpstreamUnavailableException,
    ValidationException,
)


class ChatService:
    """Service class for patient/pharmacy chat."""

    def __init__(
        self,
        store: ChatStore,
        users: UserStore,
        presence: PresenceRegistry,
        bus: EventBus,
    ):
        self.store = store
        self.users = users
        self.presence = presence
        self.bus = bus

    async def _publish(self, topic: str, event: str, payload: Dict[str, Any]) -> None:
        # Live delivery is best effort; the message is already stored
        try:
            await self.bus.publish(topic, event, payload)
        except UpstreamUnavailableException as e:
            logger.warning(f"Realtime delivery of '{event}' on {topic} failed: {e.detail}")

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        """
        Get conversation by ID with access check.

        Raises:
            NotFoundException: If conversation not found
            ForbiddenException: If the user is not a participant
        """
        conversation = await self.store.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundException("Conversation not found")

        if not conversation.is_participant(user_id):
            raise ForbiddenException("You are not a participant in this conversation")

        return conversation

    async def authorize_join(self, conversation_id: str, user_id: str) -> bool:
        """Whether ``user_id`` may subscribe to the conversation's topic."""
        conversation = await self.store.get_conversation(conversation_id)
        return bool(conversation and conversation.is_participant(user_id))

    async def get_or_create(self, patient_id: str, pharmacy_id: str) -> Conversation:
        """
        Get existing conversation or create a new one.

        Args:
            patient_id: Initiating patient's user ID
            pharmacy_id: Pharmacy's user ID

        Raises:
            NotFoundException: If pharmacy_id is not a pharmacy account
        """
        pharmacy = await self.users.get(pharmacy_id)
        if not pharmacy or pharmacy.role != UserRole.PHARMACY:
            raise NotFoundException("Pharmacy not found")

        conversation = await self.store.find_conversation(patient_id, pharmacy_id)
        if conversation:
            return conversation

        conversation = await self.store.save_conversation(
            Conversation(patient_id=patient_id, pharmacy_id=pharmacy_id)
        )

        logger.info(f"Created new conversation between patient {patient_id} and pharmacy {pharmacy_id}")
        return conversation

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: str,
        now: Optional[datetime] = None
    ) -> Tuple[ChatMessage, bool]:
        """
        Send a message in a conversation.

        Args:
            conversation_id: Conversation ID
            sender_id: Sending participant's user ID
            text: Message content

        Returns:
            Tuple of (created message, whether the receiver is online)

        Raises:
            NotFoundException: If conversation not found
            ForbiddenException: If the sender is not a participant
            ValidationException: If the message is empty
        """
        conversation = await self.get_conversation(conversation_id, sender_id)

        if not text or not text.strip():
            raise ValidationException("Message is required")

        receiver_id = conversation.other_participant(sender_id)

        message = ChatMessage(
            conversation_id=conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            message=text,
            created_at=now or datetime.utcnow(),
        )
        message = await self.store.add_message(message)

        conversation.message_ids.append(message.id)
        conversation.last_message = text
        conversation.last_message_at = message.created_at

        # Increment unread count for the other party
        if sender_id == conversation.patient_id:
            conversation.unread_pharmacy += 1
        else:
            conversation.unread_patient += 1

        await self.store.save_conversation(conversation)

        logger.info(f"Message sent in conversation {conversation_id} by {sender_id}")

        payload = NewMessageEvent(
            conversation_id=conversation_id,
            message=ChatMessagePayload(**message.model_dump()),
        ).to_payload()

        await self._publish(conversation_topic(conversation_id), "new_message", payload)
        await self._publish(user_topic(receiver_id), "new_message_notification", payload)

        return message, self.presence.is_online(receiver_id)

    async def mark_read(self, conversation_id: str, user_id: str) -> int:
        """
        Mark every message addressed to ``user_id`` as read and reset their
        unread counter.

        Returns:
            Number of messages marked as read
        """
        conversation = await self.get_conversation(conversation_id, user_id)

        count = await self.store.mark_read(conversation_id, user_id)

        if user_id == conversation.patient_id:
            conversation.unread_patient = 0
        else:
            conversation.unread_pharmacy = 0

        await self.store.save_conversation(conversation)

        logger.info(f"Marked {count} messages as read in conversation {conversation_id}")

        await self._publish(
            conversation_topic(conversation_id),
            "messages_read",
            MessagesReadEvent(conversation_id=conversation_id, user_id=user_id).to_payload(),
        )

        return count

    async def list_conversations(self, user: User) -> List[ConversationResponse]:
        """
        Get all conversations for a patient or pharmacy.

        Raises:
            ForbiddenException: For any other role
        """
        if user.role not in (UserRole.PATIENT, UserRole.PHARMACY):
            raise ForbiddenException("Only patients and pharmacies can access conversations")

        conversations = await self.store.list_conversations(user.id)

        # Enrich with the other party's display name
        result = []
        for conv in conversations:
            if user.role == UserRole.PATIENT:
                other = await self.users.get(conv.pharmacy_id)
                names = {
                    "patient_name": user.name,
                    "pharmacy_name": (other.pharmacy_name or other.name) if other else None,
                }
                unread = conv.unread_patient
            else:
                other = await self.users.get(conv.patient_id)
                names = {
                    "patient_name": other.name if other else None,
                    "pharmacy_name": user.pharmacy_name or user.name,
                }
                unread = conv.unread_pharmacy

            result.append(ConversationResponse(
                id=conv.id,
                patient_id=conv.patient_id,
                pharmacy_id=conv.pharmacy_id,
                last_message=conv.last_message,
                last_message_at=conv.last_message_at,
                unread_count=unread,
                created_at=conv.created_at,
                updated_at=conv.updated_at,
                **names,
            ))

        return result

    async def get_messages(
        self,
        conversation_id: str,
        user_id: str,
        page: int = 1,
        limit: int = 20
    ) -> MessageListResponse:
        """
        Get a page of messages, newest page first, each page in chronological order.
        """
        conversation = await self.get_conversation(conversation_id, user_id)

        messages = await self.store.get_messages(conversation_id, skip=(page - 1) * limit, limit=limit)
        messages.reverse()

        total = len(conversation.message_ids)

        return MessageListResponse(
            messages=[MessageResponse(**msg.model_dump()) for msg in messages],
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    def online_status(self, user_ids: List[str]) -> Dict[str, bool]:
        return self.presence.online_status(user_ids)
