"""Tests for the reminder sweep, transitions and manual triggers."""

import asyncio
import pytest
from datetime import datetime, timedelta

from app.features.medications.models import ReminderFrequency, ReminderStatus
from app.features.medications.schemas import MedicationCreate
from app.shared.exceptions import ForbiddenException, NotFoundException, ValidationException
from tests.conftest import NOW, connect, make_medication, sent_events


async def saved_medication(store, times, **fields):
    return await store.save(make_medication(reminder_times=times, **fields))


# ===========================================================================
# Sweep
# ===========================================================================

class TestSweepWindow:

    @pytest.mark.asyncio
    async def test_dispatches_only_reminders_inside_window(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        """+5 min is inside the 15 min window, +20 min is not."""
        medication = await saved_medication(
            medication_store, [NOW + timedelta(minutes=5), NOW + timedelta(minutes=20)]
        )
        connect(presence, bus, patient, "sid-1")

        dispatched = await scheduler.sweep(now=NOW)

        assert dispatched == 1
        events = sent_events(transport, "medication_reminder")
        assert len(events) == 1
        sid, _, payload = events[0]
        assert sid == "sid-1"
        assert payload["id"] == medication.reminders[0].id
        assert payload["medicationId"] == medication.id
        assert payload["medicationName"] == "Lipitor"
        assert payload["genericName"] == "atorvastatin"
        assert payload["dosage"] == "20mg"
        assert "isTestReminder" not in payload

    @pytest.mark.asyncio
    async def test_second_sweep_does_not_resend(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        connect(presence, bus, patient, "sid-1")

        assert await scheduler.sweep(now=NOW) == 1
        assert await scheduler.sweep(now=NOW + timedelta(minutes=1)) == 0
        assert len(sent_events(transport, "medication_reminder")) == 1

    @pytest.mark.asyncio
    async def test_every_device_of_the_patient_is_notified(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        connect(presence, bus, patient, "phone")
        connect(presence, bus, patient, "laptop")

        assert await scheduler.sweep(now=NOW) == 1
        sids = {sid for sid, _, _ in sent_events(transport, "medication_reminder")}
        assert sids == {"phone", "laptop"}

    @pytest.mark.asyncio
    async def test_inactive_medication_is_ignored(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        await saved_medication(medication_store, [NOW + timedelta(minutes=5)], active=False)
        connect(presence, bus, patient, "sid-1")

        assert await scheduler.sweep(now=NOW) == 0
        assert transport.send.await_count == 0


class TestSweepOffline:

    @pytest.mark.asyncio
    async def test_offline_patient_is_skipped_and_retried(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        await saved_medication(medication_store, [NOW + timedelta(minutes=10)])

        assert await scheduler.sweep(now=NOW) == 0
        assert transport.send.await_count == 0
        assert len(scheduler.ledger) == 0

        # Patient comes online before the reminder leaves the window
        connect(presence, bus, patient, "sid-1")
        assert await scheduler.sweep(now=NOW + timedelta(minutes=2)) == 1
        assert len(scheduler.ledger) == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_is_not_recorded(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        connect(presence, bus, patient, "sid-1")
        transport.send.side_effect = ConnectionError("socket closed")

        assert await scheduler.sweep(now=NOW) == 0
        assert len(scheduler.ledger) == 0

        transport.send.side_effect = None
        assert await scheduler.sweep(now=NOW + timedelta(minutes=1)) == 1

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_delivered_snooze_saved(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        """A later failed reminder must not undo the earlier one's reactivation."""
        medication = make_medication(
            reminder_times=[NOW - timedelta(minutes=5), NOW + timedelta(minutes=5)]
        )
        snoozed, upcoming = medication.reminders
        snoozed.status = ReminderStatus.SNOOZED
        snoozed.snooze_until = NOW - timedelta(minutes=2)
        medication = await medication_store.save(medication)
        connect(presence, bus, patient, "sid-1")
        transport.send.side_effect = [None, ConnectionError("socket closed")]

        assert await scheduler.sweep(now=NOW) == 1

        stored = await medication_store.get(medication.id)
        assert stored.find_reminder(snoozed.id).status == ReminderStatus.ACTIVE
        assert scheduler.ledger.contains(medication.id, snoozed.id)
        assert not scheduler.ledger.contains(medication.id, upcoming.id)

        transport.send.side_effect = None
        assert await scheduler.sweep(now=NOW + timedelta(minutes=1)) == 1
        assert scheduler.ledger.contains(medication.id, upcoming.id)


class TestSweepFailures:

    @pytest.mark.asyncio
    async def test_query_failure_ends_the_sweep_quietly(self, scheduler, medication_store):
        medication_store.fail_queries = True
        assert await scheduler.sweep(now=NOW) == 0

    @pytest.mark.asyncio
    async def test_ledger_is_pruned_each_sweep(self, scheduler):
        scheduler.ledger.mark("m1", "r1", NOW - timedelta(hours=2))
        await scheduler.sweep(now=NOW)
        assert len(scheduler.ledger) == 0


# ===========================================================================
# Transitions
# ===========================================================================

class TestTransitions:

    @pytest.mark.asyncio
    async def test_mark_completed_is_idempotent(self, scheduler, medication_store):
        medication = await saved_medication(
            medication_store, [NOW + timedelta(minutes=5), NOW + timedelta(hours=1)]
        )
        reminder_id = medication.reminders[0].id

        first = await scheduler.mark_completed(medication.id, reminder_id, now=NOW)
        saves = medication_store.saves
        second = await scheduler.mark_completed(medication.id, reminder_id, now=NOW)

        assert first.find_reminder(reminder_id).status == ReminderStatus.COMPLETED
        assert second.find_reminder(reminder_id).status == ReminderStatus.COMPLETED
        assert medication_store.saves == saves
        assert first.next_reminder == NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_completed_reminder_cannot_be_snoozed(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        reminder_id = medication.reminders[0].id

        await scheduler.mark_missed(medication.id, reminder_id, now=NOW)
        result = await scheduler.snooze(medication.id, reminder_id, 10, now=NOW)

        reminder = result.find_reminder(reminder_id)
        assert reminder.status == ReminderStatus.MISSED
        assert reminder.snooze_until is None
        assert result.next_reminder is None

    @pytest.mark.asyncio
    async def test_snooze_then_redeliver(
        self, scheduler, medication_store, presence, bus, transport, patient
    ):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        reminder_id = medication.reminders[0].id
        connect(presence, bus, patient, "sid-1")

        assert await scheduler.sweep(now=NOW) == 1

        snoozed = await scheduler.snooze(
            medication.id, reminder_id, 10, now=NOW + timedelta(minutes=5)
        )
        reminder = snoozed.find_reminder(reminder_id)
        assert reminder.status == ReminderStatus.SNOOZED
        assert reminder.snooze_until == NOW + timedelta(minutes=15)
        assert snoozed.next_reminder == NOW + timedelta(minutes=15)
        assert not scheduler.ledger.contains(medication.id, reminder_id)

        # Still snoozed
        assert await scheduler.sweep(now=NOW + timedelta(minutes=10)) == 0

        # Snooze elapsed
        assert await scheduler.sweep(now=NOW + timedelta(minutes=16)) == 1
        assert len(sent_events(transport, "medication_reminder")) == 2

        stored = await medication_store.get(medication.id)
        assert stored.find_reminder(reminder_id).status == ReminderStatus.ACTIVE
        assert stored.find_reminder(reminder_id).snooze_until is None

    @pytest.mark.asyncio
    async def test_snooze_uses_default_minutes(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        reminder_id = medication.reminders[0].id

        result = await scheduler.snooze(medication.id, reminder_id, now=NOW)
        assert result.find_reminder(reminder_id).snooze_until == NOW + timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_snooze_rejects_non_positive_minutes(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        with pytest.raises(ValidationException):
            await scheduler.snooze(medication.id, medication.reminders[0].id, 0, now=NOW)

    @pytest.mark.asyncio
    async def test_unknown_medication_and_reminder(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])

        with pytest.raises(NotFoundException):
            await scheduler.mark_completed("missing", "r1", now=NOW)
        with pytest.raises(NotFoundException):
            await scheduler.mark_completed(medication.id, "missing", now=NOW)

    @pytest.mark.asyncio
    async def test_other_patient_cannot_transition(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        with pytest.raises(ForbiddenException):
            await scheduler.mark_completed(
                medication.id, medication.reminders[0].id, now=NOW, patient_id="patient-2"
            )

    @pytest.mark.asyncio
    async def test_transition_rejects_active(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        with pytest.raises(ValidationException):
            await scheduler.transition(medication.id, medication.reminders[0].id, ReminderStatus.ACTIVE)


class TestHandleResponse:

    @pytest.mark.asyncio
    async def test_taken_completes_reminder(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        reminder_id = medication.reminders[0].id

        update = await scheduler.handle_response(medication.id, reminder_id, "taken", patient_id="patient-1")

        assert update == {
            "medicationId": medication.id,
            "reminderId": reminder_id,
            "status": "completed",
        }

    @pytest.mark.asyncio
    async def test_unknown_action(self, scheduler, medication_store):
        medication = await saved_medication(medication_store, [NOW + timedelta(minutes=5)])
        with pytest.raises(ValidationException):
            await scheduler.handle_response(medication.id, medication.reminders[0].id, "skipped")


# ===========================================================================
# Manual trigger
# ===========================================================================

class TestTriggerTestReminder:

    @pytest.mark.asyncio
    async def test_offline_patient(self, scheduler, medication_store, transport):
        medication = await saved_medication(medication_store, [NOW + timedelta(days=1)])

        result = await scheduler.trigger_test_reminder(medication.id)

        assert result["success"] is False
        assert "not online" in result["message"]
        assert transport.send.await_count == 0

    @pytest.mark.asyncio
    async def test_ad_hoc_reminder(self, scheduler, medication_store, presence, bus, transport, patient):
        medication = await saved_medication(medication_store, [NOW + timedelta(days=1)])
        connect(presence, bus, patient, "sid-1")

        result = await scheduler.trigger_test_reminder(medication.id)

        assert result["success"] is True
        assert result["data"]["id"] == "test-reminder"
        assert result["data"]["isTestReminder"] is True
        # Manual triggers bypass the ledger
        assert len(scheduler.ledger) == 0
        assert len(sent_events(transport, "medication_reminder")) == 1

    @pytest.mark.asyncio
    async def test_specific_reminder(self, scheduler, medication_store, presence, bus, patient):
        medication = await saved_medication(medication_store, [NOW + timedelta(days=1)])
        connect(presence, bus, patient, "sid-1")
        reminder_id = medication.reminders[0].id

        result = await scheduler.trigger_test_reminder(medication.id, reminder_id)

        assert result["data"]["id"] == reminder_id

        with pytest.raises(NotFoundException):
            await scheduler.trigger_test_reminder(medication.id, "missing")

    @pytest.mark.asyncio
    async def test_unknown_medication(self, scheduler):
        with pytest.raises(NotFoundException):
            await scheduler.trigger_test_reminder("missing")


# ===========================================================================
# Background loop
# ===========================================================================

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        assert not scheduler.running
        scheduler.start()
        assert scheduler.running
        scheduler.stop()
        await asyncio.sleep(0)
        assert not scheduler.running


class TestAddMedicationSchedule:

    @pytest.mark.asyncio
    async def test_open_ended_twice_daily(self, medication_service, patient):
        request = MedicationCreate(
            drug_id="0069-0105",
            brand_name="Lipitor",
            dosage="20mg",
            frequency=ReminderFrequency.TWICE_DAILY,
            start_date=datetime(2024, 1, 1),
        )

        medication = await medication_service.add_medication(
            patient.id, request, now=datetime(2024, 1, 1)
        )

        assert len(medication.reminders) == 180
        assert all(r.status == ReminderStatus.ACTIVE for r in medication.reminders)
        assert medication.next_reminder == datetime(2024, 1, 1, 9, 0)
