"""Consent request endpoints."""

from fastapi import APIRouter, BackgroundTasks, status

from carelink.api.deps import CurrentActor, DbSession, Notifications
from carelink.models.consent import ConsentRequest
from carelink.schemas.consent import (
    AccessCheckRead,
    ConsentApprove,
    ConsentReject,
    ConsentRequestCreate,
    ConsentRequestRead,
)
from carelink.services.consent import ConsentService

router = APIRouter()


@router.post("", response_model=ConsentRequestRead, status_code=status.HTTP_201_CREATED)
async def request_consent(
    body: ConsentRequestCreate,
    actor: CurrentActor,
    session: DbSession,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> ConsentRequest:
    """Ask a patient for access to their records.

    Returns the existing grant when one is already active.
    """
    service = ConsentService(session, notifications=notifications)
    consent = await service.request_consent(actor, body.patient_id, body.purpose)
    background_tasks.add_task(notifications.flush)
    return consent


@router.get("/access/{patient_id}", response_model=AccessCheckRead)
async def check_access(
    patient_id: str,
    actor: CurrentActor,
    session: DbSession,
) -> AccessCheckRead:
    """Whether the calling provider may see this patient's records."""
    decision = await ConsentService(session).check_access(actor, patient_id)
    return AccessCheckRead(
        patient_id=patient_id,
        has_access=decision.allowed,
        access_path=decision.path.value,
        consent_reference=decision.consent_reference,
        booking_id=decision.booking_id,
    )


@router.get("/{reference_number}", response_model=ConsentRequestRead)
async def get_consent(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
) -> ConsentRequest:
    return await ConsentService(session).get_consent(actor, reference_number)


@router.post("/{reference_number}/approve", response_model=ConsentRequestRead)
async def approve_consent(
    reference_number: str,
    body: ConsentApprove,
    actor: CurrentActor,
    session: DbSession,
) -> ConsentRequest:
    return await ConsentService(session).approve(
        actor, reference_number, expires_at=body.expires_at, notes=body.notes
    )


@router.post("/{reference_number}/reject", response_model=ConsentRequestRead)
async def reject_consent(
    reference_number: str,
    body: ConsentReject,
    actor: CurrentActor,
    session: DbSession,
) -> ConsentRequest:
    return await ConsentService(session).reject(actor, reference_number, notes=body.notes)


@router.post("/{reference_number}/revoke", response_model=ConsentRequestRead)
async def revoke_consent(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
) -> ConsentRequest:
    return await ConsentService(session).revoke(actor, reference_number)
