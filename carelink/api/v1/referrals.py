"""Referral endpoints."""

from fastapi import APIRouter, BackgroundTasks, status

from carelink.api.deps import CurrentActor, DbSession, Notifications
from carelink.models.referral import Referral
from carelink.schemas.referral import ReferralAccept, ReferralCreate, ReferralRead, ReferralReason
from carelink.services.referral import ReferralService

router = APIRouter()


@router.post("", response_model=ReferralRead, status_code=status.HTTP_201_CREATED)
async def create_referral(
    body: ReferralCreate,
    actor: CurrentActor,
    session: DbSession,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Referral:
    """Refer a patient to another provider.

    The (source role, referral type, target role) combination must be
    one the referral matrix allows.
    """
    referral = await ReferralService(session, notifications).create_referral(
        actor,
        target_id=body.target_id,
        patient_id=body.patient_id,
        referral_type=body.referral_type,
        reason=body.reason,
        priority=body.priority,
        notes=body.notes,
    )
    background_tasks.add_task(notifications.flush)
    return referral


@router.get("/{reference_number}", response_model=ReferralRead)
async def get_referral(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
) -> Referral:
    return await ReferralService(session).get_referral(actor, reference_number)


@router.post("/{reference_number}/accept", response_model=ReferralRead)
async def accept_referral(
    reference_number: str,
    body: ReferralAccept,
    actor: CurrentActor,
    session: DbSession,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Referral:
    referral = await ReferralService(session, notifications).accept(
        actor, reference_number, notes=body.notes
    )
    background_tasks.add_task(notifications.flush)
    return referral


@router.post("/{reference_number}/reject", response_model=ReferralRead)
async def reject_referral(
    reference_number: str,
    body: ReferralReason,
    actor: CurrentActor,
    session: DbSession,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Referral:
    referral = await ReferralService(session, notifications).reject(
        actor, reference_number, reason=body.reason
    )
    background_tasks.add_task(notifications.flush)
    return referral


@router.post("/{reference_number}/complete", response_model=ReferralRead)
async def complete_referral(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Referral:
    referral = await ReferralService(session, notifications).complete(actor, reference_number)
    background_tasks.add_task(notifications.flush)
    return referral


@router.post("/{reference_number}/cancel", response_model=ReferralRead)
async def cancel_referral(
    reference_number: str,
    body: ReferralReason,
    actor: CurrentActor,
    session: DbSession,
    notifications: Notifications,
    background_tasks: BackgroundTasks,
) -> Referral:
    referral = await ReferralService(session, notifications).cancel(
        actor, reference_number, reason=body.reason
    )
    background_tasks.add_task(notifications.flush)
    return referral
