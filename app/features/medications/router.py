# Medications Feature - Router

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from typing import Optional, List
from app.dependencies import get_medication_service, get_scheduler
from app.features.auth.dependencies import get_current_user, get_current_patient
from app.features.auth.models import User, UserRole
from app.features.medications.models import Medication
from app.features.medications.scheduler import ReminderScheduler
from app.features.medications.schemas import (
    MedicationCreate,
    MedicationUpdate,
    MedicationActionResponse,
    ReminderStatusUpdate,
    ReminderTriggerResponse,
    UpcomingReminders,
)
from app.features.medications.service import MedicationService
from app.shared.exceptions import ForbiddenException
from app.shared.schemas import BaseResponse


router = APIRouter(prefix="/medications", tags=["Medications"])


# ============== Patient Endpoints ==============

@router.post("", response_model=MedicationActionResponse, status_code=status.HTTP_201_CREATED)
async def add_medication(
    request: MedicationCreate,
    current_patient: User = Depends(get_current_patient),
    service: MedicationService = Depends(get_medication_service)
):
    """
    Add a medication and generate its reminders.

    Requires patient authentication.
    """
    medication = await service.add_medication(current_patient.id, request)
    return MedicationActionResponse(message="Medication added successfully", medication=medication)


@router.get("", response_model=List[Medication])
async def get_my_medications(
    active: Optional[bool] = None,
    upcoming: bool = False,
    current_patient: User = Depends(get_current_patient),
    service: MedicationService = Depends(get_medication_service)
):
    """
    Get the current patient's medications.

    Requires patient authentication.
    """
    return await service.list_medications(current_patient.id, active=active, upcoming=upcoming)


@router.get("/upcoming", response_model=List[UpcomingReminders])
async def get_upcoming_reminders(
    hours: int = Query(24, ge=1, le=24 * 14),
    current_patient: User = Depends(get_current_patient),
    service: MedicationService = Depends(get_medication_service)
):
    """
    Get reminders due in the next ``hours`` hours.

    Requires patient authentication.
    """
    return await service.get_upcoming(current_patient.id, hours=hours)


# ============== Pharmacy Endpoints ==============

@router.get("/patient/{patient_id}", response_model=List[Medication])
async def get_patient_medications(
    patient_id: str,
    active: Optional[bool] = None,
    upcoming: bool = False,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service)
):
    """
    Get a patient's medications.

    Requires pharmacy or admin authentication.
    """
    if current_user.role not in (UserRole.PHARMACY, UserRole.ADMIN):
        raise ForbiddenException("Unauthorized to view medications")

    return await service.list_medications(patient_id, active=active, upcoming=upcoming)


# ============== Shared Endpoints ==============

@router.get("/{medication_id}", response_model=Medication)
async def get_medication(
    medication_id: str,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service)
):
    """Get a single medication."""
    return await service.get_medication(medication_id, current_user)


@router.put("/{medication_id}", response_model=MedicationActionResponse)
async def update_medication(
    medication_id: str,
    request: MedicationUpdate,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service)
):
    """
    Update a medication.

    Set ``regenerate_reminders`` to replace future reminders with a new schedule.
    """
    medication = await service.update_medication(medication_id, current_user, request)
    return MedicationActionResponse(message="Medication updated successfully", medication=medication)


@router.delete("/{medication_id}", response_model=BaseResponse)
async def delete_medication(
    medication_id: str,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service)
):
    """Delete a medication. Patient owner or admin only."""
    await service.delete_medication(medication_id, current_user)
    return BaseResponse(message="Medication deleted successfully")


@router.patch("/{medication_id}/reminders/{reminder_id}", response_model=MedicationActionResponse)
async def update_reminder_status(
    medication_id: str,
    reminder_id: str,
    request: ReminderStatusUpdate,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service)
):
    """
    Mark a reminder completed or missed, snooze it, or attach notes.

    Updates to a completed or missed reminder's status are ignored.
    """
    medication = await service.update_reminder(medication_id, reminder_id, current_user, request)
    return MedicationActionResponse(message="Reminder updated successfully", medication=medication)


async def _trigger(
    medication_id: str,
    reminder_id: Optional[str],
    current_user: User,
    service: MedicationService,
    scheduler: ReminderScheduler,
):
    if current_user.role not in (UserRole.PATIENT, UserRole.ADMIN):
        raise ForbiddenException("Unauthorized to trigger test reminders")

    if current_user.role == UserRole.PATIENT:
        # Raises if missing or not theirs
        await service.get_medication(medication_id, current_user)

    result = await scheduler.trigger_test_reminder(medication_id, reminder_id)
    if not result["success"]:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=result)
    return ReminderTriggerResponse(**result)


@router.post("/{medication_id}/test-reminder", response_model=ReminderTriggerResponse)
async def trigger_test_reminder(
    medication_id: str,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service),
    scheduler: ReminderScheduler = Depends(get_scheduler)
):
    """Send an ad-hoc reminder for a medication right away."""
    return await _trigger(medication_id, None, current_user, service, scheduler)


@router.post("/{medication_id}/reminders/{reminder_id}/test", response_model=ReminderTriggerResponse)
async def trigger_specific_test_reminder(
    medication_id: str,
    reminder_id: str,
    current_user: User = Depends(get_current_user),
    service: MedicationService = Depends(get_medication_service),
    scheduler: ReminderScheduler = Depends(get_scheduler)
):
    """Send one specific reminder right away."""
    return await _trigger(medication_id, reminder_id, current_user, service, scheduler)
