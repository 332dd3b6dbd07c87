from beanie import Document
from enum import Enum
from typing import Optional
from app.shared.models import TimestampMixin


class UserRole(str, Enum):
    """Account types on the platform."""
    PATIENT = "patient"
    PHARMACY = "pharmacy"
    ADMIN = "admin"


class UserFields(TimestampMixin):
    """Fields shared by the service model and the stored document."""

    name: str
    email: Optional[str] = None
    role: UserRole = UserRole.PATIENT
    is_active: bool = True

    # Pharmacy accounts must be verified by an admin before chatting
    is_verified: bool = False
    pharmacy_name: Optional[str] = None

    @property
    def is_verified_pharmacy(self) -> bool:
        return self.role == UserRole.PHARMACY and self.is_verified


class User(UserFields):
    """An authenticated account as seen by the services."""

    id: str


class UserDocument(Document, UserFields):
    """User document model. Accounts are created by the auth service."""

    class Settings:
        name = "users"
        use_state_management = True

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Green Cross Pharmacy",
                "email": "pharmacy@example.com",
                "role": "pharmacy",
                "is_verified": True,
                "pharmacy_name": "Green Cross",
            }
        }
