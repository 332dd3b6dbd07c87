"""Shared fixtures: in-memory stores and a recording transport."""

import pytest
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

from bson import ObjectId

from app.features.auth.models import User, UserRole
from app.features.auth.store import UserStore
from app.features.medications.lifecycle import build_reminders, compute_next_reminder, is_due
from app.features.medications.models import Medication, ReminderFrequency
from app.features.medications.scheduler import ReminderScheduler
from app.features.medications.service import MedicationService
from app.features.medications.store import MedicationStore
from app.features.messages.models import ChatMessage, Conversation
from app.features.messages.service import ChatService
from app.features.messages.store import ChatStore
from app.features.realtime.bus import EventBus, user_topic
from app.features.realtime.presence import PresenceRegistry


NOW = datetime(2024, 3, 1, 8, 0)


class InMemoryMedicationStore(MedicationStore):
    """Stores copies so callers cannot mutate saved state by accident."""

    def __init__(self):
        self.items: Dict[str, Medication] = {}
        self.saves = 0
        self.fail_queries = False

    async def find_due_within(self, start: datetime, end: datetime) -> List[Medication]:
        if self.fail_queries:
            raise RuntimeError("database unavailable")
        window = end - start
        return [
            m.model_copy(deep=True)
            for m in self.items.values()
            if m.active and any(is_due(r, start, window) for r in m.reminders)
        ]

    async def get(self, medication_id: str) -> Optional[Medication]:
        medication = self.items.get(medication_id)
        return medication.model_copy(deep=True) if medication else None

    async def save(self, medication: Medication) -> Medication:
        if not medication.id:
            medication.id = str(ObjectId())
        medication.update_timestamp()
        self.items[medication.id] = medication.model_copy(deep=True)
        self.saves += 1
        return medication

    async def delete(self, medication_id: str) -> bool:
        return self.items.pop(medication_id, None) is not None

    async def find_for_patient(
        self,
        patient_id: str,
        active: Optional[bool] = None,
        upcoming_after: Optional[datetime] = None,
    ) -> List[Medication]:
        result = [
            m.model_copy(deep=True) for m in self.items.values()
            if m.patient_id == patient_id
            and (active is None or m.active == active)
            and (upcoming_after is None or (m.next_reminder and m.next_reminder >= upcoming_after))
        ]
        return sorted(result, key=lambda m: m.next_reminder or datetime.max)


class InMemoryChatStore(ChatStore):

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[ChatMessage] = []

    async def find_conversation(self, patient_id: str, pharmacy_id: str) -> Optional[Conversation]:
        for conversation in self.conversations.values():
            if conversation.patient_id == patient_id and conversation.pharmacy_id == pharmacy_id:
                return conversation.model_copy(deep=True)
        return None

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        if not conversation.id:
            conversation.id = str(ObjectId())
        conversation.update_timestamp()
        self.conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        return [
            c.model_copy(deep=True) for c in self.conversations.values()
            if c.is_participant(user_id)
        ]

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        message.id = str(ObjectId())
        self.messages.append(message.model_copy(deep=True))
        return message

    async def get_messages(self, conversation_id: str, skip: int, limit: int) -> List[ChatMessage]:
        matching = [m for m in self.messages if m.conversation_id == conversation_id]
        matching.sort(key=lambda m: m.created_at, reverse=True)
        return [m.model_copy(deep=True) for m in matching[skip:skip + limit]]

    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        count = 0
        for message in self.messages:
            if message.conversation_id == conversation_id and message.receiver_id == receiver_id and not message.read:
                message.read = True
                count += 1
        return count


class InMemoryUserStore(UserStore):

    def __init__(self, users: Optional[List[User]] = None):
        self.users = {u.id: u for u in users or []}

    async def get(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)


def make_medication(
    patient_id: str = "patient-1",
    reminder_times: Optional[List[datetime]] = None,
    now: datetime = NOW,
    **fields,
) -> Medication:
    """Build an unsaved medication with reminders at ``reminder_times``."""
    reminders = build_reminders(reminder_times or [])
    medication = Medication(
        patient_id=patient_id,
        drug_id=fields.pop("drug_id", "0069-0105"),
        brand_name=fields.pop("brand_name", "Lipitor"),
        generic_name=fields.pop("generic_name", "atorvastatin"),
        dosage=fields.pop("dosage", "20mg"),
        frequency=fields.pop("frequency", ReminderFrequency.DAILY),
        start_date=fields.pop("start_date", now),
        reminders=reminders,
        **fields,
    )
    medication.next_reminder = compute_next_reminder(medication.reminders, now)
    return medication


# ============== Fixtures ==============

@pytest.fixture
def patient():
    return User(id="patient-1", name="Alice", role=UserRole.PATIENT)


@pytest.fixture
def other_patient():
    return User(id="patient-2", name="Bob", role=UserRole.PATIENT)


@pytest.fixture
def pharmacy():
    return User(
        id="pharmacy-1",
        name="Green Cross",
        role=UserRole.PHARMACY,
        is_verified=True,
        pharmacy_name="Green Cross Pharmacy",
    )


@pytest.fixture
def other_pharmacy():
    return User(
        id="pharmacy-2",
        name="Blue Cross",
        role=UserRole.PHARMACY,
        is_verified=True,
        pharmacy_name="Blue Cross Pharmacy",
    )


@pytest.fixture
def admin():
    return User(id="admin-1", name="Root", role=UserRole.ADMIN)


@pytest.fixture
def users(patient, other_patient, pharmacy, other_pharmacy, admin):
    return InMemoryUserStore([patient, other_patient, pharmacy, other_pharmacy, admin])


@pytest.fixture
def transport():
    """Records every send; set ``side_effect`` to simulate failures."""
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def bus(transport):
    return EventBus(transport)


@pytest.fixture
def medication_store():
    return InMemoryMedicationStore()


@pytest.fixture
def chat_store():
    return InMemoryChatStore()


@pytest.fixture
def scheduler(medication_store, presence, bus):
    return ReminderScheduler(
        medication_store,
        presence,
        bus,
        window=timedelta(minutes=15),
        interval=60,
        retention=timedelta(hours=1),
        default_snooze_minutes=15,
    )


@pytest.fixture
def medication_service(medication_store, scheduler):
    return MedicationService(medication_store, scheduler)


@pytest.fixture
def chat_service(chat_store, users, presence, bus):
    return ChatService(chat_store, users, presence, bus)


def connect(presence: PresenceRegistry, bus: EventBus, user: User, sid: str) -> None:
    """Register a live connection the way the socket handshake does."""
    presence.register(user.id, user.role.value, sid, name=user.name)
    bus.subscribe(sid, user_topic(user.id))


def sent_events(transport, event: Optional[str] = None):
    """(sid, event, payload) tuples the transport was asked to send."""
    calls = [c.args for c in transport.send.await_args_list]
    if event is not None:
        calls = [c for c in calls if c[1] == event]
    return calls
