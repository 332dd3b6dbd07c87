# Medications Feature - Service

from typing import Optional, List
from datetime import datetime, timedelta
from app.features.auth.models import User, UserRole
from app.features.medications import recurrence
from app.features.medications.lifecycle import build_reminders, compute_next_reminder
from app.features.medications.models import Medication, ReminderStatus
from app.features.medications.scheduler import ReminderScheduler
from app.features.medications.schemas import (
    MedicationCreate,
    MedicationUpdate,
    ReminderStatusUpdate,
    UpcomingReminders,
)
from app.features.medications.store import MedicationStore
from app.core.logging import logger
from app.shared.exceptions import NotFoundException, ForbiddenException


class MedicationService:
    """Service class for patient medication operations."""

    def __init__(self, store: MedicationStore, scheduler: ReminderScheduler):
        self.store = store
        self.scheduler = scheduler

    async def add_medication(
        self,
        patient_id: str,
        request: MedicationCreate,
        now: Optional[datetime] = None
    ) -> Medication:
        """
        Add a medication and generate its reminders.

        Args:
            patient_id: Owning patient's user ID
            request: Medication details
            now: Reference time for next_reminder

        Returns:
            Saved medication
        """
        now = now or datetime.utcnow()

        times = recurrence.generate(
            request.start_date,
            request.end_date,
            request.frequency,
            request.first_dose_time,
        )

        medication = Medication(
            patient_id=patient_id,
            drug_id=request.drug_id,
            brand_name=request.brand_name,
            generic_name=request.generic_name,
            dosage=request.dosage,
            frequency=request.frequency,
            start_date=request.start_date,
            end_date=request.end_date,
            instructions=request.instructions,
            notes=request.notes,
            active=True,
            reminders=build_reminders(times),
        )
        medication.next_reminder = compute_next_reminder(medication.reminders, now)

        medication = await self.store.save(medication)

        logger.info(
            f"Added medication {medication.id} for patient {patient_id} "
            f"with {len(medication.reminders)} reminders"
        )
        return medication

    async def get_medication(self, medication_id: str, user: User) -> Medication:
        """
        Get a medication with access check.

        Raises:
            NotFoundException: If medication not found
            ForbiddenException: If the user is neither owner, pharmacy nor admin
        """
        medication = await self.store.get(medication_id)
        if not medication:
            raise NotFoundException("Medication not found")

        if user.role == UserRole.PATIENT and medication.patient_id != user.id:
            raise ForbiddenException("Not authorized to access this medication")

        return medication

    async def list_medications(
        self,
        patient_id: str,
        active: Optional[bool] = None,
        upcoming: bool = False,
        now: Optional[datetime] = None
    ) -> List[Medication]:
        """List a patient's medications, soonest reminder first."""
        now = now or datetime.utcnow()
        return await self.store.find_for_patient(
            patient_id,
            active=active,
            upcoming_after=now if upcoming else None,
        )

    async def get_upcoming(
        self,
        patient_id: str,
        hours: int = 24,
        now: Optional[datetime] = None
    ) -> List[UpcomingReminders]:
        """Active reminders due within the next ``hours``, grouped by medication."""
        now = now or datetime.utcnow()
        end = now + timedelta(hours=hours)

        result = []
        for medication in await self.store.find_for_patient(patient_id, active=True):
            reminders = [
                r for r in medication.reminders
                if r.status == ReminderStatus.ACTIVE and now <= r.time <= end
            ]
            if not reminders:
                continue

            result.append(UpcomingReminders(
                medication_id=medication.id,
                brand_name=medication.brand_name,
                generic_name=medication.generic_name,
                dosage=medication.dosage,
                instructions=medication.instructions,
                reminders=sorted(reminders, key=lambda r: r.time),
            ))

        return result

    async def update_medication(
        self,
        medication_id: str,
        user: User,
        request: MedicationUpdate,
        now: Optional[datetime] = None
    ) -> Medication:
        """
        Update a medication, optionally regenerating its future reminders.

        Past reminders are kept as they are; future ones are replaced with a
        fresh schedule starting from now (or the start date, if later).
        """
        now = now or datetime.utcnow()
        medication = await self.get_medication(medication_id, user)

        fields = request.model_fields_set
        if request.dosage:
            medication.dosage = request.dosage
        if request.frequency:
            medication.frequency = request.frequency
        if "end_date" in fields:
            medication.end_date = request.end_date
        if request.instructions is not None:
            medication.instructions = request.instructions
        if request.active is not None:
            medication.active = request.active
        if request.notes is not None:
            medication.notes = request.notes

        if request.regenerate_reminders:
            start = max(now, medication.start_date)
            end = medication.end_date

            times = []
            if end is None or end >= start:
                times = [
                    t for t in recurrence.generate(start, end, medication.frequency)
                    if t > now
                ]

            kept = [r for r in medication.reminders if r.time <= now]
            medication.reminders = kept + build_reminders(times)
            medication.next_reminder = compute_next_reminder(medication.reminders, now)

            logger.info(
                f"Regenerated reminders for medication {medication_id}: "
                f"kept {len(kept)}, added {len(times)}"
            )

        return await self.store.save(medication)

    async def delete_medication(self, medication_id: str, user: User) -> None:
        """Delete a medication. Only its patient or an admin may do this."""
        medication = await self.store.get(medication_id)
        if not medication:
            raise NotFoundException("Medication not found")

        if user.role != UserRole.ADMIN and medication.patient_id != user.id:
            raise ForbiddenException("Not authorized to delete this medication")

        await self.store.delete(medication_id)
        logger.info(f"Deleted medication {medication_id}")

    async def update_reminder(
        self,
        medication_id: str,
        reminder_id: str,
        user: User,
        request: ReminderStatusUpdate
    ) -> Medication:
        """
        Apply a status change and/or notes to one reminder.

        Only the owning patient may update their reminders.
        """
        medication = await self.store.get(medication_id)
        if not medication:
            raise NotFoundException("Medication not found")

        if medication.patient_id != user.id:
            raise ForbiddenException("Not authorized to update this reminder")

        if request.status is not None:
            medication = await self.scheduler.transition(
                medication_id,
                reminder_id,
                request.status,
                request.snooze_minutes,
                patient_id=user.id,
            )

        if request.notes is not None:
            reminder = medication.find_reminder(reminder_id)
            if not reminder:
                raise NotFoundException("Reminder not found")
            reminder.notes = request.notes
            medication = await self.store.save(medication)

        return medication
