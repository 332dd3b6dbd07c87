# Messages Feature - Storage

from abc import ABC, abstractmethod
from typing import List, Optional
from beanie import PydanticObjectId
from bson import ObjectId
from bson.errors import InvalidId
from app.features.messages.models import (
    ChatMessage,
    Conversation,
    ConversationDocument,
    MessageDocument,
)
from app.shared.models import document_to_dict


class ChatStore(ABC):
    """Persistence for conversations and their messages."""

    @abstractmethod
    async def find_conversation(self, patient_id: str, pharmacy_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> Conversation:
        ...

    @abstractmethod
    async def list_conversations(self, user_id: str) -> List[Conversation]:
        """Conversations the user takes part in, most recent activity first."""

    @abstractmethod
    async def add_message(self, message: ChatMessage) -> ChatMessage:
        ...

    @abstractmethod
    async def get_messages(self, conversation_id: str, skip: int, limit: int) -> List[ChatMessage]:
        """A page of messages, newest first."""

    @abstractmethod
    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        """Flag unread messages addressed to ``receiver_id`` as read. Returns the count."""


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class BeanieChatStore(ChatStore):
    """MongoDB-backed chat storage."""

    async def find_conversation(self, patient_id: str, pharmacy_id: str) -> Optional[Conversation]:
        document = await ConversationDocument.find_one(
            ConversationDocument.patient_id == patient_id,
            ConversationDocument.pharmacy_id == pharmacy_id
        )
        return Conversation.model_validate(document_to_dict(document)) if document else None

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        object_id = _object_id(conversation_id)
        if object_id is None:
            return None
        document = await ConversationDocument.get(object_id)
        return Conversation.model_validate(document_to_dict(document)) if document else None

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        document = ConversationDocument(**conversation.model_dump(exclude={"id"}))
        if conversation.id:
            document.id = PydanticObjectId(conversation.id)
        document.update_timestamp()
        await document.save()

        conversation.id = str(document.id)
        conversation.updated_at = document.updated_at
        return conversation

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        documents = await ConversationDocument.find(
            {"$or": [{"patient_id": user_id}, {"pharmacy_id": user_id}]}
        ).sort([("last_message_at", -1), ("created_at", -1)]).to_list()
        return [Conversation.model_validate(document_to_dict(doc)) for doc in documents]

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        document = MessageDocument(**message.model_dump(exclude={"id"}))
        await document.insert()
        message.id = str(document.id)
        return message

    async def get_messages(self, conversation_id: str, skip: int, limit: int) -> List[ChatMessage]:
        documents = await MessageDocument.find(
            MessageDocument.conversation_id == conversation_id
        ).sort([("created_at", -1)]).skip(skip).limit(limit).to_list()
        return [ChatMessage.model_validate(document_to_dict(doc)) for doc in documents]

    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        result = await MessageDocument.find(
            MessageDocument.conversation_id == conversation_id,
            MessageDocument.receiver_id == receiver_id,
            MessageDocument.read == False
        ).update_many({"$set": {"read": True}})
        return result.modified_count if result else 0
