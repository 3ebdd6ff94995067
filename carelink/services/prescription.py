"""Prescription workflow service.

Doctors write prescriptions for a chosen pharmacy. The patient may move
a pending prescription to another pharmacy; the assigned pharmacy
fulfills it, directly or as a side effect of settlement.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.prescription import Prescription, PrescriptionStatus
from carelink.models.user import UserRole
from carelink.services.access import AccessGate
from carelink.services.audit import write_audit_event
from carelink.services.identity import BookingStore, IdentityDirectory
from carelink.workflow.actors import Actor
from carelink.workflow.identifiers import IdentifierKind, new_identifier
from carelink.workflow.lifecycles import PRESCRIPTION_ENGINE
from carelink.workflow.limits import SHORT_NOTES_MAX_LENGTH
from carelink.workflow.snapshots import snapshot_patient, snapshot_provider
from carelink.workflow.validation import normalize_medicines

logger = logging.getLogger(__name__)


async def fulfill_for_settlement(
    session: AsyncSession,
    prescription: Prescription,
    actor: Actor,
) -> bool:
    """Fulfill a prescription as part of a settlement unit of work.

    Only a PENDING prescription with a pharmacy is touched; anything else
    is left alone and logged. Returns True when the status changed.
    """
    if prescription.status != PrescriptionStatus.PENDING.value or not prescription.pharmacy_id:
        logger.warning(
            f"Settlement did not fulfill prescription {prescription.reference_number} "
            f"(status={prescription.status}, pharmacy={prescription.pharmacy_id})"
        )
        return False

    change = PRESCRIPTION_ENGINE.apply(prescription, PrescriptionStatus.FULFILLED, actor)
    await write_audit_event(
        session=session,
        actor=actor,
        action="prescription.fulfilled",
        entity_type="prescription",
        entity_id=prescription.id,
        metadata={
            "reference_number": prescription.reference_number,
            "via": "settlement",
            **change.as_metadata(),
        },
    )
    return True


class PrescriptionService:
    """Service for prescriptions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.identity = IdentityDirectory(session)
        self.bookings = BookingStore(session)
        self.gate = AccessGate(session)

    async def _get(self, reference_number: str) -> Prescription:
        result = await self.session.execute(
            select(Prescription).where(Prescription.reference_number == reference_number)
        )
        prescription = result.scalar_one_or_none()
        if not prescription:
            raise NotFoundError(f"Prescription not found: {reference_number}")
        return prescription

    async def get_prescription(self, actor: Actor, reference_number: str) -> Prescription:
        prescription = await self._get(reference_number)
        involved = (prescription.doctor_id, prescription.patient_id, prescription.pharmacy_id)
        if actor.id not in involved and not actor.has_role(UserRole.ADMIN):
            raise AuthorizationError("You do not have access to this prescription")
        return prescription

    async def create_prescription(
        self,
        actor: Actor,
        patient_id: str,
        pharmacy_id: Optional[str],
        medicines: list[dict[str, Any]],
        booking_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Prescription:
        """Write a prescription for a patient the doctor may access."""
        if not actor.has_role(UserRole.DOCTOR):
            raise AuthorizationError("Only doctors can create prescriptions")

        medicines = normalize_medicines(medicines)
        if not pharmacy_id:
            raise ValidationError("Pharmacy selection is required for creating a prescription")
        if notes is not None and len(notes) > SHORT_NOTES_MAX_LENGTH:
            raise ValidationError(f"Notes cannot exceed {SHORT_NOTES_MAX_LENGTH} characters")

        doctor = await self.identity.require_user(actor.id, UserRole.DOCTOR, "Doctor")
        patient = await self.identity.require_user(patient_id, UserRole.PATIENT, "Patient")
        pharmacy = await self.identity.require_user(pharmacy_id, UserRole.PHARMACY, "Pharmacy")

        if not await self.gate.can_access(patient.id, doctor.id):
            raise AuthorizationError("You do not have access to this patient's records")

        if booking_id:
            booking = await self.bookings.get_booking(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.provider_id != doctor.id or booking.patient_id != patient.id:
                raise ValidationError("Booking does not link this doctor and patient")

        prescription = Prescription(
            id=str(uuid.uuid4()),
            reference_number=new_identifier(IdentifierKind.PRESCRIPTION),
            doctor_id=doctor.id,
            patient_id=patient.id,
            pharmacy_id=pharmacy.id,
            booking_id=booking_id,
            medicines=medicines,
            status=PrescriptionStatus.PENDING.value,
            notes=notes,
            doctor_snapshot=snapshot_provider(doctor).to_dict(),
            patient_snapshot=snapshot_patient(patient).to_dict(),
            pharmacy_snapshot=snapshot_provider(pharmacy).to_dict(),
            created_by=actor.id,
        )

        async def _create(session: AsyncSession) -> None:
            session.add(prescription)
            await write_audit_event(
                session=session,
                actor=actor,
                action="prescription.created",
                entity_type="prescription",
                entity_id=prescription.id,
                metadata={
                    "reference_number": prescription.reference_number,
                    "medicine_count": len(medicines),
                },
            )

        await TransactionalUnitOfWork(self.session).run(_create)
        return prescription

    async def prebook(self, actor: Actor, reference_number: str, pharmacy_id: str) -> Prescription:
        """Move a pending prescription to another pharmacy."""
        prescription = await self._get(reference_number)
        if actor.id != prescription.patient_id:
            raise AuthorizationError("Only the patient can choose a pharmacy for this prescription")
        pharmacy = await self.identity.require_user(pharmacy_id, UserRole.PHARMACY, "Pharmacy")

        async def _assign(session: AsyncSession) -> None:
            current = await lock_current_status(session, prescription)
            if current != PrescriptionStatus.PENDING.value:
                raise InvalidTransitionError(
                    "Only pending prescriptions can be pre-booked", current_status=current
                )
            previous = prescription.pharmacy_id
            prescription.pharmacy_id = pharmacy.id
            prescription.pharmacy_snapshot = snapshot_provider(pharmacy).to_dict()
            prescription.updated_by = actor.id
            await write_audit_event(
                session=session,
                actor=actor,
                action="prescription.prebooked",
                entity_type="prescription",
                entity_id=prescription.id,
                metadata={
                    "reference_number": prescription.reference_number,
                    "previous_pharmacy_id": previous,
                    "pharmacy_id": pharmacy.id,
                },
            )

        await TransactionalUnitOfWork(self.session).run(_assign)
        return prescription

    async def fulfill(self, actor: Actor, reference_number: str) -> Prescription:
        prescription = await self._get(reference_number)
        if not prescription.pharmacy_id:
            raise ValidationError("This prescription does not have a pharmacy assigned")
        if actor.id != prescription.pharmacy_id:
            raise AuthorizationError("Only the assigned pharmacy can fulfill this prescription")
        return await self._transition(prescription, PrescriptionStatus.FULFILLED, actor)

    async def cancel(
        self,
        actor: Actor,
        reference_number: str,
        reason: Optional[str] = None,
    ) -> Prescription:
        prescription = await self._get(reference_number)
        if actor.id not in (prescription.doctor_id, prescription.patient_id):
            raise AuthorizationError(
                "Only the prescribing doctor or the patient can cancel this prescription"
            )
        return await self._transition(
            prescription, PrescriptionStatus.CANCELLED, actor, reason=reason
        )

    async def _transition(
        self,
        prescription: Prescription,
        target: PrescriptionStatus,
        actor: Actor,
        **params,
    ) -> Prescription:
        async def _apply(session: AsyncSession) -> None:
            await lock_current_status(session, prescription)
            change = PRESCRIPTION_ENGINE.apply(prescription, target, actor, **params)
            await write_audit_event(
                session=session,
                actor=actor,
                action=f"prescription.{target.value.lower()}",
                entity_type="prescription",
                entity_id=prescription.id,
                metadata={
                    "reference_number": prescription.reference_number,
                    **change.as_metadata(),
                },
            )

        await TransactionalUnitOfWork(self.session).run(_apply)
        return prescription
