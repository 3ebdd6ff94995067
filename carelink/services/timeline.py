"""Patient history timeline.

Merges the patient's bookings, prescriptions, consultations and
referrals into one list, newest first. Providers need the access gate
to allow them; patients always see their own history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import AuthorizationError, ValidationError
from carelink.models.booking import Booking
from carelink.models.consultation import Consultation
from carelink.models.prescription import Prescription
from carelink.models.referral import Referral
from carelink.models.user import PROVIDER_ROLES, UserRole
from carelink.services.access import AccessGate, AccessPath
from carelink.services.identity import IdentityDirectory
from carelink.utils.time import ensure_utc
from carelink.workflow.actors import Actor


class TimelineEntryType(str, Enum):
    BOOKING = "booking"
    PRESCRIPTION = "prescription"
    CONSULTATION = "consultation"
    REFERRAL = "referral"


@dataclass(frozen=True)
class TimelineEntry:
    entry_type: str
    entity_id: str
    reference_number: Optional[str]
    status: str
    date: datetime
    summary: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PatientHistory:
    patient_id: str
    access_path: AccessPath
    entries: list[TimelineEntry]


class TimelineService:
    """Builds a patient's cross-entity history."""

    def __init__(self, session: AsyncSession, gate: Optional[AccessGate] = None) -> None:
        self.session = session
        self.gate = gate or AccessGate(session)
        self.identity = IdentityDirectory(session)

    async def get_patient_history(
        self,
        actor: Actor,
        patient_id: str,
        entry_type: Optional[str] = None,
    ) -> PatientHistory:
        if entry_type is not None:
            try:
                entry_type = TimelineEntryType(entry_type)
            except ValueError:
                raise ValidationError(f"Invalid history type: {entry_type}")

        patient = await self.identity.require_user(patient_id, UserRole.PATIENT, "Patient")

        if actor.id == patient.id:
            path = AccessPath.SELF
        elif actor.role in PROVIDER_ROLES:
            decision = await self.gate.evaluate(patient.id, actor.id)
            if not decision.allowed:
                raise AuthorizationError("You do not have access to this patient's records")
            path = decision.path
        else:
            raise AuthorizationError("You do not have access to this patient's records")

        wanted = [entry_type] if entry_type else list(TimelineEntryType)
        entries: list[TimelineEntry] = []
        for kind in wanted:
            if kind == TimelineEntryType.BOOKING:
                entries.extend(await self._bookings(patient.id, actor, path))
            elif kind == TimelineEntryType.PRESCRIPTION:
                entries.extend(await self._prescriptions(patient.id))
            elif kind == TimelineEntryType.CONSULTATION:
                entries.extend(await self._consultations(patient.id))
            else:
                entries.extend(await self._referrals(patient.id))

        entries.sort(key=lambda entry: entry.date, reverse=True)
        return PatientHistory(patient_id=patient.id, access_path=path, entries=entries)

    async def _bookings(
        self, patient_id: str, actor: Actor, path: AccessPath
    ) -> list[TimelineEntry]:
        query = select(Booking).where(Booking.patient_id == patient_id)
        if path != AccessPath.SELF:
            # Providers only see their own bookings with the patient
            query = query.where(Booking.provider_id == actor.id)
        result = await self.session.execute(query)
        return [
            TimelineEntry(
                entry_type=TimelineEntryType.BOOKING.value,
                entity_id=booking.id,
                reference_number=booking.reference_number,
                status=booking.status,
                date=ensure_utc(booking.scheduled_at or booking.created_at),
                summary={"booking_type": booking.booking_type, "provider_id": booking.provider_id},
            )
            for booking in result.scalars().all()
        ]

    async def _prescriptions(self, patient_id: str) -> list[TimelineEntry]:
        result = await self.session.execute(
            select(Prescription).where(Prescription.patient_id == patient_id)
        )
        return [
            TimelineEntry(
                entry_type=TimelineEntryType.PRESCRIPTION.value,
                entity_id=prescription.id,
                reference_number=prescription.reference_number,
                status=prescription.status,
                date=ensure_utc(prescription.created_at),
                summary={
                    "doctor": (prescription.doctor_snapshot or {}).get("name"),
                    "pharmacy": (prescription.pharmacy_snapshot or {}).get("name"),
                    "medicines": [m.get("name") for m in prescription.medicines or []],
                },
            )
            for prescription in result.scalars().all()
        ]

    async def _consultations(self, patient_id: str) -> list[TimelineEntry]:
        result = await self.session.execute(
            select(Consultation).where(Consultation.patient_id == patient_id)
        )
        return [
            TimelineEntry(
                entry_type=TimelineEntryType.CONSULTATION.value,
                entity_id=consultation.id,
                reference_number=consultation.reference_number,
                status=consultation.status,
                date=ensure_utc(consultation.scheduled_at),
                summary={
                    "doctor": (consultation.doctor_snapshot or {}).get("name"),
                    "mode": consultation.mode,
                    "diagnosis": consultation.diagnosis,
                },
            )
            for consultation in result.scalars().all()
        ]

    async def _referrals(self, patient_id: str) -> list[TimelineEntry]:
        result = await self.session.execute(
            select(Referral).where(Referral.patient_id == patient_id)
        )
        return [
            TimelineEntry(
                entry_type=TimelineEntryType.REFERRAL.value,
                entity_id=referral.id,
                reference_number=referral.reference_number,
                status=referral.status,
                date=ensure_utc(referral.created_at),
                summary={
                    "referral_type": referral.referral_type,
                    "source": (referral.source_snapshot or {}).get("name"),
                    "target": (referral.target_snapshot or {}).get("name"),
                    "priority": referral.priority,
                },
            )
            for referral in result.scalars().all()
        ]
