"""Consultation endpoints."""

from fastapi import APIRouter, BackgroundTasks, status

from carelink.api.deps import CallIssuer, CurrentActor, DbSession, Notifications
from carelink.models.consultation import Consultation
from carelink.schemas.consultation import (
    CallCredentialsRead,
    ConsultationCancel,
    ConsultationComplete,
    ConsultationCreate,
    ConsultationCreated,
    ConsultationMessageCreate,
    ConsultationMessageRead,
    ConsultationNoShow,
    ConsultationNoteCreate,
    ConsultationRead,
)
from carelink.services.consultation import ConsultationService

router = APIRouter()


@router.post("", response_model=ConsultationCreated, status_code=status.HTTP_201_CREATED)
async def create_consultation(
    body: ConsultationCreate,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> ConsultationCreated:
    """Schedule a consultation.

    Video consultations come back with the doctor's call credentials.
    """
    service = ConsultationService(session, issuer=issuer, notifications=notifications)
    scheduled = await service.create_consultation(
        actor,
        patient_id=body.patient_id,
        mode=body.mode,
        scheduled_at=body.scheduled_at,
        booking_id=body.booking_id,
        notes=body.notes,
    )
    background_tasks.add_task(notifications.flush)
    return ConsultationCreated(
        consultation=ConsultationRead.model_validate(scheduled.consultation),
        call_credentials=(
            CallCredentialsRead(**scheduled.credentials.to_dict())
            if scheduled.credentials
            else None
        ),
    )


@router.get("/{reference_number}", response_model=ConsultationRead)
async def get_consultation(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
) -> Consultation:
    return await ConsultationService(session, issuer=issuer).get_consultation(
        actor, reference_number
    )


@router.post("/{reference_number}/start", response_model=ConsultationRead)
async def start_consultation(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Consultation:
    service = ConsultationService(session, issuer=issuer, notifications=notifications)
    consultation = await service.start(actor, reference_number)
    background_tasks.add_task(notifications.flush)
    return consultation


@router.post("/{reference_number}/complete", response_model=ConsultationRead)
async def complete_consultation(
    reference_number: str,
    body: ConsultationComplete,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Consultation:
    """Complete an in-progress consultation. Notes are required."""
    service = ConsultationService(session, issuer=issuer, notifications=notifications)
    consultation = await service.complete(
        actor,
        reference_number,
        notes=body.notes,
        diagnosis=body.diagnosis,
        follow_up_required=body.follow_up_required,
        follow_up_date=body.follow_up_date,
    )
    background_tasks.add_task(notifications.flush)
    return consultation


@router.post("/{reference_number}/cancel", response_model=ConsultationRead)
async def cancel_consultation(
    reference_number: str,
    body: ConsultationCancel,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Consultation:
    service = ConsultationService(session, issuer=issuer, notifications=notifications)
    consultation = await service.cancel(actor, reference_number, reason=body.reason)
    background_tasks.add_task(notifications.flush)
    return consultation


@router.post("/{reference_number}/no-show", response_model=ConsultationRead)
async def mark_no_show(
    reference_number: str,
    body: ConsultationNoShow,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Consultation:
    service = ConsultationService(session, issuer=issuer, notifications=notifications)
    consultation = await service.mark_no_show(actor, reference_number, notes=body.notes)
    background_tasks.add_task(notifications.flush)
    return consultation


@router.post("/{reference_number}/notes", response_model=ConsultationRead)
async def add_note(
    reference_number: str,
    body: ConsultationNoteCreate,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
) -> Consultation:
    return await ConsultationService(session, issuer=issuer).add_note(
        actor, reference_number, body.content
    )


@router.get("/{reference_number}/messages", response_model=list[ConsultationMessageRead])
async def get_messages(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
) -> list[dict]:
    return await ConsultationService(session, issuer=issuer).get_messages(actor, reference_number)


@router.post(
    "/{reference_number}/messages",
    response_model=ConsultationMessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    reference_number: str,
    body: ConsultationMessageCreate,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
) -> dict:
    return await ConsultationService(session, issuer=issuer).send_message(
        actor, reference_number, body.message
    )


@router.post("/{reference_number}/call-credentials", response_model=CallCredentialsRead)
async def issue_call_credentials(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
    issuer: CallIssuer,
) -> CallCredentialsRead:
    """Join credentials for a participant of an active video consultation."""
    credentials = await ConsultationService(session, issuer=issuer).issue_call_credentials(
        actor, reference_number
    )
    return CallCredentialsRead(**credentials.to_dict())
