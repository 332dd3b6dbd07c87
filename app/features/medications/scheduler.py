# Medications Feature - Reminder Scheduler

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from app.core.logging import logger
from app.core.periodic import PeriodicTask
from app.features.medications.ledger import DedupLedger
from app.features.medications.lifecycle import (
    apply_transition,
    compute_next_reminder,
    effective_time,
    is_due,
)
from app.features.medications.models import Medication, Reminder, ReminderStatus
from app.features.medications.store import MedicationStore
from app.features.realtime.bus import EventBus, user_topic
from app.features.realtime.events import MedicationReminderEvent, ReminderUpdateEvent
from app.features.realtime.presence import PresenceRegistry
from app.shared.exceptions import (
    ForbiddenException,
    NotFoundException,
    UpstreamUnavailableException,
    ValidationException,
)


REMINDER_EVENT = "medication_reminder"

# Client actions on a delivered reminder
RESPONSE_ACTIONS = {
    "taken": ReminderStatus.COMPLETED,
    "snooze": ReminderStatus.SNOOZED,
    "missed": ReminderStatus.MISSED,
}


def build_reminder_event(
    medication: Medication,
    reminder: Optional[Reminder] = None,
    is_test: bool = False,
    now: Optional[datetime] = None,
) -> MedicationReminderEvent:
    """Payload for a reminder. Without a reminder, an ad-hoc one stamped ``now``."""
    return MedicationReminderEvent(
        id=reminder.id if reminder else "test-reminder",
        medication_id=medication.id,
        medication_name=medication.brand_name,
        generic_name=medication.generic_name,
        dosage=medication.dosage,
        time=reminder.time if reminder else (now or datetime.utcnow()),
        instructions=medication.instructions or None,
        notes=(reminder.notes if reminder else None) or medication.notes,
        is_test_reminder=True if is_test else None,
    )


class ReminderScheduler:
    """
    Periodically dispatches due medication reminders to online patients and
    owns the reminder state transitions.

    Reminders are delivered at least once per ledger retention period: a
    reminder whose patient is offline is not recorded in the ledger, so the
    next sweep tries it again while it is still due.
    """

    def __init__(
        self,
        store: MedicationStore,
        presence: PresenceRegistry,
        bus: EventBus,
        window: timedelta = timedelta(minutes=15),
        interval: float = 60,
        retention: timedelta = timedelta(hours=1),
        default_snooze_minutes: int = 15,
    ):
        self.store = store
        self.presence = presence
        self.bus = bus
        self.window = window
        self.default_snooze_minutes = default_snooze_minutes
        self.ledger = DedupLedger(retention)
        self._task = PeriodicTask("reminder-sweep", self.sweep, interval)

    # ============== Lifecycle ==============

    def start(self) -> None:
        self._task.start()

    def stop(self) -> None:
        self._task.stop()

    @property
    def running(self) -> bool:
        return self._task.running

    # ============== Sweep ==============

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Dispatch every due reminder not yet in the ledger.

        Args:
            now: Sweep time, defaults to the current UTC time

        Returns:
            Number of reminders dispatched
        """
        now = now or datetime.utcnow()

        pruned = self.ledger.prune(now)
        if pruned:
            logger.debug(f"Pruned {pruned} reminder ledger entries")

        try:
            medications = await self.store.find_due_within(now, now + self.window)
        except Exception as e:
            logger.error(f"Reminder sweep query failed: {e}")
            return 0

        if medications:
            logger.info(f"Found {len(medications)} medications with upcoming reminders")

        dispatched = 0
        for medication in medications:
            try:
                dispatched += await self._dispatch_due(medication, now)
            except Exception as e:
                logger.error(f"Error dispatching reminders for medication {medication.id}: {e}")
            # Let request handlers run between medications
            await asyncio.sleep(0)

        return dispatched

    async def _dispatch_due(self, medication: Medication, now: datetime) -> int:
        pending = [
            r for r in medication.reminders
            if is_due(r, now, self.window) and not self.ledger.contains(medication.id, r.id)
        ]
        if not pending:
            return 0

        patient_id = medication.patient_id
        if not self.presence.is_online(patient_id):
            logger.debug(
                f"Patient {patient_id} offline, {len(pending)} reminders for "
                f"medication {medication.id} left for the next sweep"
            )
            return 0

        sent = 0
        reactivated = False
        for reminder in pending:
            payload = build_reminder_event(medication, reminder).to_payload()
            try:
                delivered = await self.bus.publish(user_topic(patient_id), REMINDER_EVENT, payload)
            except UpstreamUnavailableException as e:
                # Left out of the ledger, so the next sweep retries it
                logger.warning(f"Reminder {reminder.id} for patient {patient_id} not delivered: {e.detail}")
                continue
            if not delivered:
                continue

            self.ledger.mark(medication.id, reminder.id, effective_time(reminder))
            sent += 1

            if reminder.status == ReminderStatus.SNOOZED:
                apply_transition(reminder, ReminderStatus.ACTIVE, now)
                reactivated = True

            logger.info(
                f"Sent reminder notification to patient {patient_id} for medication {medication.brand_name}"
            )

        if reactivated:
            medication.next_reminder = compute_next_reminder(medication.reminders, now)
            await self.store.save(medication)

        return sent

    # ============== Transitions ==============

    async def _transition(
        self,
        medication_id: str,
        reminder_id: str,
        status: ReminderStatus,
        snooze_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        patient_id: Optional[str] = None,
    ) -> Medication:
        now = now or datetime.utcnow()

        medication = await self.store.get(medication_id)
        if not medication:
            raise NotFoundException("Medication not found")

        if patient_id is not None and medication.patient_id != patient_id:
            raise ForbiddenException("Not authorized to update this reminder")

        reminder = medication.find_reminder(reminder_id)
        if not reminder:
            raise NotFoundException("Reminder not found")

        if not apply_transition(reminder, status, now, snooze_minutes):
            # Terminal reminders ignore further transitions
            logger.info(
                f"Reminder {reminder_id} is already {reminder.status.value}, "
                f"ignoring transition to {status.value}"
            )
            return medication

        medication.next_reminder = compute_next_reminder(medication.reminders, now)
        medication = await self.store.save(medication)

        if status == ReminderStatus.SNOOZED:
            # Let the sweep deliver it again once the snooze runs out
            self.ledger.discard(medication_id, reminder_id)

        logger.info(f"Reminder {reminder_id} of medication {medication_id} -> {status.value}")
        return medication

    async def mark_completed(
        self,
        medication_id: str,
        reminder_id: str,
        now: Optional[datetime] = None,
        patient_id: Optional[str] = None,
    ) -> Medication:
        return await self._transition(
            medication_id, reminder_id, ReminderStatus.COMPLETED, now=now, patient_id=patient_id
        )

    async def mark_missed(
        self,
        medication_id: str,
        reminder_id: str,
        now: Optional[datetime] = None,
        patient_id: Optional[str] = None,
    ) -> Medication:
        return await self._transition(
            medication_id, reminder_id, ReminderStatus.MISSED, now=now, patient_id=patient_id
        )

    async def snooze(
        self,
        medication_id: str,
        reminder_id: str,
        minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        patient_id: Optional[str] = None,
    ) -> Medication:
        minutes = self.default_snooze_minutes if minutes is None else minutes
        if minutes <= 0:
            raise ValidationException("Snooze minutes must be positive")
        return await self._transition(
            medication_id,
            reminder_id,
            ReminderStatus.SNOOZED,
            snooze_minutes=minutes,
            now=now,
            patient_id=patient_id,
        )

    async def transition(
        self,
        medication_id: str,
        reminder_id: str,
        status: ReminderStatus,
        snooze_minutes: Optional[int] = None,
        patient_id: Optional[str] = None,
    ) -> Medication:
        """
        Dispatch a requested status to the matching transition.

        When ``patient_id`` is given the medication must belong to that patient.
        """
        if status == ReminderStatus.COMPLETED:
            return await self.mark_completed(medication_id, reminder_id, patient_id=patient_id)
        if status == ReminderStatus.MISSED:
            return await self.mark_missed(medication_id, reminder_id, patient_id=patient_id)
        if status == ReminderStatus.SNOOZED:
            return await self.snooze(medication_id, reminder_id, snooze_minutes, patient_id=patient_id)
        raise ValidationException(f"Cannot set reminder status to '{status.value}'")

    async def handle_response(
        self,
        medication_id: str,
        reminder_id: str,
        action: str,
        snooze_minutes: Optional[int] = None,
        patient_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply a client's answer to a delivered reminder.

        Returns:
            The reminder_update payload echoing the resulting status
        """
        status = RESPONSE_ACTIONS.get(action)
        if status is None:
            raise ValidationException(f"Unknown reminder action: {action}")

        medication = await self.transition(
            medication_id, reminder_id, status, snooze_minutes, patient_id=patient_id
        )
        reminder = medication.find_reminder(reminder_id)

        return ReminderUpdateEvent(
            medication_id=medication_id,
            reminder_id=reminder_id,
            status=reminder.status.value,
        ).to_payload()

    # ============== Manual trigger ==============

    async def trigger_test_reminder(
        self,
        medication_id: str,
        reminder_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a reminder right away, ignoring the due window and the ledger.

        Returns:
            {"success", "message", "data"}; success is False when the patient
            is offline or nothing could be delivered
        """
        medication = await self.store.get(medication_id)
        if not medication:
            raise NotFoundException("Medication not found")

        reminder = None
        if reminder_id:
            reminder = medication.find_reminder(reminder_id)
            if not reminder:
                raise NotFoundException("Reminder not found")

        patient_id = medication.patient_id
        if not self.presence.is_online(patient_id):
            return {
                "success": False,
                "message": f"Patient {patient_id} is not online. Cannot send test reminder.",
            }

        payload = build_reminder_event(medication, reminder, is_test=True).to_payload()
        delivered = await self.bus.publish(user_topic(patient_id), REMINDER_EVENT, payload)
        if not delivered:
            return {
                "success": False,
                "message": f"No live connection reached patient {patient_id}",
            }

        return {
            "success": True,
            "message": f"Test reminder sent to patient {patient_id} for medication {medication.brand_name}",
            "data": payload,
        }
