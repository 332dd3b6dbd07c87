from abc import ABC, abstractmethod
from typing import Optional
from bson import ObjectId
from bson.errors import InvalidId
from app.features.auth.models import User, UserDocument
from app.shared.models import document_to_dict


class UserStore(ABC):
    """Read access to user accounts."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[User]:
        ...


class BeanieUserStore(UserStore):
    """MongoDB-backed user lookups."""

    async def get(self, user_id: str) -> Optional[User]:
        try:
            document = await UserDocument.get(ObjectId(user_id))
        except (InvalidId, TypeError):
            return None

        if not document:
            return None
        return User.model_validate(document_to_dict(document))
