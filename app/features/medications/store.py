# Medications Feature - Storage

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from beanie import PydanticObjectId
from bson import ObjectId
from bson.errors import InvalidId
from app.features.medications.models import (
    Medication,
    MedicationDocument,
    ReminderStatus,
)
from app.shared.models import document_to_dict


class MedicationStore(ABC):
    """Persistence for medications. Each save replaces the whole document."""

    @abstractmethod
    async def find_due_within(self, start: datetime, end: datetime) -> List[Medication]:
        """
        Active medications with at least one reminder a sweep over
        [start, end] might dispatch: an active reminder due in the range,
        or a snoozed one whose snooze expired within one range length
        before ``start``.
        """

    @abstractmethod
    async def get(self, medication_id: str) -> Optional[Medication]:
        ...

    @abstractmethod
    async def save(self, medication: Medication) -> Medication:
        ...

    @abstractmethod
    async def delete(self, medication_id: str) -> bool:
        ...

    @abstractmethod
    async def find_for_patient(
        self,
        patient_id: str,
        active: Optional[bool] = None,
        upcoming_after: Optional[datetime] = None,
    ) -> List[Medication]:
        """Medications of one patient, ordered by next reminder."""


def _to_medication(document: MedicationDocument) -> Medication:
    return Medication.model_validate(document_to_dict(document))


def _object_id(medication_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(medication_id)
    except (InvalidId, TypeError):
        return None


class BeanieMedicationStore(MedicationStore):
    """MongoDB-backed store using the Beanie ODM."""

    async def find_due_within(self, start: datetime, end: datetime) -> List[Medication]:
        lookback = start - (end - start)
        documents = await MedicationDocument.find({
            "active": True,
            "$or": [
                {"reminders": {"$elemMatch": {
                    "status": ReminderStatus.ACTIVE.value,
                    "time": {"$gte": start, "$lte": end},
                }}},
                {"reminders": {"$elemMatch": {
                    "status": ReminderStatus.SNOOZED.value,
                    "snooze_until": {"$gte": lookback, "$lte": start},
                }}},
            ],
        }).to_list()
        return [_to_medication(doc) for doc in documents]

    async def get(self, medication_id: str) -> Optional[Medication]:
        object_id = _object_id(medication_id)
        if object_id is None:
            return None
        document = await MedicationDocument.get(object_id)
        return _to_medication(document) if document else None

    async def save(self, medication: Medication) -> Medication:
        document = MedicationDocument(**medication.model_dump(exclude={"id"}))
        if medication.id:
            document.id = PydanticObjectId(medication.id)
        document.update_timestamp()
        await document.save()

        medication.id = str(document.id)
        medication.updated_at = document.updated_at
        return medication

    async def delete(self, medication_id: str) -> bool:
        object_id = _object_id(medication_id)
        if object_id is None:
            return False
        document = await MedicationDocument.get(object_id)
        if not document:
            return False
        await document.delete()
        return True

    async def find_for_patient(
        self,
        patient_id: str,
        active: Optional[bool] = None,
        upcoming_after: Optional[datetime] = None,
    ) -> List[Medication]:
        query = MedicationDocument.find(MedicationDocument.patient_id == patient_id)
        if active is not None:
            query = query.find(MedicationDocument.active == active)
        if upcoming_after is not None:
            query = query.find(MedicationDocument.next_reminder >= upcoming_after)

        documents = await query.sort([("next_reminder", 1)]).to_list()
        return [_to_medication(doc) for doc in documents]
