# Medications Feature - Models

from enum import Enum
from typing import Optional, List
from datetime import datetime
from beanie import Document, Indexed
from bson import ObjectId
from pydantic import BaseModel, Field
from app.shared.models import TimestampMixin


class ReminderFrequency(str, Enum):
    """How often a medication's reminders repeat."""
    ONCE = "once"
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    THREE_TIMES_DAILY = "three_times_daily"
    FOUR_TIMES_DAILY = "four_times_daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    AS_NEEDED = "as_needed"


class ReminderStatus(str, Enum):
    """Lifecycle state of a single reminder."""
    ACTIVE = "active"
    SNOOZED = "snoozed"
    COMPLETED = "completed"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self in (ReminderStatus.COMPLETED, ReminderStatus.MISSED)


def new_reminder_id() -> str:
    return str(ObjectId())


class Reminder(BaseModel):
    """
    A single scheduled dose notification, embedded in its medication.
    Reminders are never removed, only transitioned.
    """

    id: str = Field(default_factory=new_reminder_id)
    time: datetime
    status: ReminderStatus = ReminderStatus.ACTIVE
    snooze_until: Optional[datetime] = None
    notes: Optional[str] = None


class MedicationFields(TimestampMixin):
    """Fields shared by the service model and the stored document."""

    patient_id: str
    drug_id: str
    brand_name: str
    generic_name: Optional[str] = None
    dosage: str
    frequency: ReminderFrequency
    start_date: datetime
    end_date: Optional[datetime] = None
    instructions: str = ""
    notes: Optional[str] = None
    active: bool = True

    reminders: List[Reminder] = Field(default_factory=list)

    # Cache of the earliest upcoming non-terminal reminder, derived
    next_reminder: Optional[datetime] = None

    def find_reminder(self, reminder_id: str) -> Optional[Reminder]:
        return next((r for r in self.reminders if r.id == reminder_id), None)


class Medication(MedicationFields):
    """A patient's medication as handled by the services."""

    id: Optional[str] = None


class MedicationDocument(Document, MedicationFields):
    """MongoDB document for a patient medication."""

    patient_id: Indexed(str)

    class Settings:
        name = "patient_medications"
        use_state_management = True
        indexes = [
            [("active", 1), ("next_reminder", 1)],
            [("active", 1), ("reminders.status", 1), ("reminders.time", 1)],
        ]

    class Config:
        json_schema_extra = {
            "example": {
                "patient_id": "65a1f0c2e4b0a1b2c3d4e5f6",
                "drug_id": "0069-0105",
                "brand_name": "Lipitor",
                "generic_name": "atorvastatin",
                "dosage": "20mg",
                "frequency": "daily",
                "start_date": "2024-01-01T08:00:00",
                "instructions": "Take with water",
            }
        }
