"""Prescription endpoints."""

from fastapi import APIRouter, status

from carelink.api.deps import CurrentActor, DbSession
from carelink.models.prescription import Prescription
from carelink.schemas.prescription import (
    PrescriptionCancel,
    PrescriptionCreate,
    PrescriptionPrebook,
    PrescriptionRead,
)
from carelink.services.prescription import PrescriptionService

router = APIRouter()


@router.post("", response_model=PrescriptionRead, status_code=status.HTTP_201_CREATED)
async def create_prescription(
    body: PrescriptionCreate,
    actor: CurrentActor,
    session: DbSession,
) -> Prescription:
    """Write a prescription for a patient the doctor may access."""
    return await PrescriptionService(session).create_prescription(
        actor,
        patient_id=body.patient_id,
        pharmacy_id=body.pharmacy_id,
        medicines=[medicine.model_dump() for medicine in body.medicines],
        booking_id=body.booking_id,
        notes=body.notes,
    )


@router.get("/{reference_number}", response_model=PrescriptionRead)
async def get_prescription(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
) -> Prescription:
    return await PrescriptionService(session).get_prescription(actor, reference_number)


@router.post("/{reference_number}/prebook", response_model=PrescriptionRead)
async def prebook_prescription(
    reference_number: str,
    body: PrescriptionPrebook,
    actor: CurrentActor,
    session: DbSession,
) -> Prescription:
    """Move a pending prescription to another pharmacy."""
    return await PrescriptionService(session).prebook(actor, reference_number, body.pharmacy_id)


@router.post("/{reference_number}/fulfill", response_model=PrescriptionRead)
async def fulfill_prescription(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
) -> Prescription:
    return await PrescriptionService(session).fulfill(actor, reference_number)


@router.post("/{reference_number}/cancel", response_model=PrescriptionRead)
async def cancel_prescription(
    reference_number: str,
    body: PrescriptionCancel,
    actor: CurrentActor,
    session: DbSession,
) -> Prescription:
    return await PrescriptionService(session).cancel(actor, reference_number, reason=body.reason)
