# Medications Feature - Schemas

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, model_validator
from app.features.medications.models import (
    Medication,
    Reminder,
    ReminderFrequency,
    ReminderStatus,
)


# ============== Medication Schemas ==============

class MedicationCreate(BaseModel):
    """Request schema for adding a medication."""
    drug_id: str = Field(..., min_length=1)
    brand_name: str = Field(..., min_length=1)
    generic_name: Optional[str] = None
    dosage: str = Field(..., min_length=1)
    frequency: ReminderFrequency
    start_date: datetime = Field(default_factory=datetime.utcnow)
    end_date: Optional[datetime] = None
    instructions: str = ""
    notes: Optional[str] = None
    first_dose_time: Optional[datetime] = Field(
        None, description="Only its hour and minute are used"
    )


class MedicationUpdate(BaseModel):
    """Request schema for updating a medication. Unset fields are left alone."""
    dosage: Optional[str] = None
    frequency: Optional[ReminderFrequency] = None
    end_date: Optional[datetime] = None
    instructions: Optional[str] = None
    active: Optional[bool] = None
    notes: Optional[str] = None
    regenerate_reminders: bool = False


class MedicationActionResponse(BaseModel):
    """Response schema wrapping a medication after a change."""
    message: str
    medication: Medication


class UpcomingReminders(BaseModel):
    """Reminders of one medication due in the requested horizon."""
    medication_id: str
    brand_name: str
    generic_name: Optional[str] = None
    dosage: str
    instructions: str = ""
    reminders: List[Reminder]


# ============== Reminder Schemas ==============

class ReminderStatusUpdate(BaseModel):
    """Request schema for changing a reminder's status or notes."""
    status: Optional[ReminderStatus] = None
    snooze_minutes: Optional[int] = Field(None, ge=1, le=24 * 60)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.status is None and self.notes is None:
            raise ValueError("status or notes is required")
        return self


class ReminderTriggerResponse(BaseModel):
    """Response schema for a manually triggered reminder."""
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
