"""Referral workflow service.

Handles referral lifecycle: create/accept/reject/complete/cancel.
The source provider creates and may cancel; the target accepts,
rejects and completes. Notifications go out after each change commits.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.referral import Referral, ReferralPriority, ReferralStatus, ReferralType
from carelink.models.user import UserRole
from carelink.services.audit import write_audit_event
from carelink.services.identity import IdentityDirectory
from carelink.services.notifications import NotificationBus, NotificationEvent, notification_bus
from carelink.workflow.actors import Actor
from carelink.workflow.compatibility import ensure_referral_compatible
from carelink.workflow.identifiers import IdentifierKind, new_identifier
from carelink.workflow.lifecycles import REFERRAL_ENGINE
from carelink.workflow.limits import REASON_MAX_LENGTH, REASON_MIN_LENGTH
from carelink.workflow.snapshots import snapshot_patient, snapshot_provider

REFERRAL_SOURCE_ROLES = frozenset(
    {UserRole.HOSPITAL.value, UserRole.DOCTOR.value, UserRole.LAB.value}
)


def _parse_enum(enum_cls: type, value: object, label: str):
    try:
        return enum_cls(getattr(value, "value", value))
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


class ReferralService:
    """Service for provider-to-provider referrals."""

    def __init__(
        self,
        session: AsyncSession,
        notifications: Optional[NotificationBus] = None,
    ) -> None:
        self.session = session
        self.notifications = notifications or notification_bus
        self.identity = IdentityDirectory(session)

    async def _get(self, reference_number: str) -> Referral:
        result = await self.session.execute(
            select(Referral).where(Referral.reference_number == reference_number)
        )
        referral = result.scalar_one_or_none()
        if not referral:
            raise NotFoundError(f"Referral not found: {reference_number}")
        return referral

    async def get_referral(self, actor: Actor, reference_number: str) -> Referral:
        referral = await self._get(reference_number)
        involved = (referral.source_id, referral.target_id, referral.patient_id)
        if actor.id not in involved and not actor.has_role(UserRole.ADMIN):
            raise AuthorizationError("You do not have access to this referral")
        return referral

    async def create_referral(
        self,
        actor: Actor,
        target_id: str,
        patient_id: str,
        referral_type: str,
        reason: str,
        priority: str = ReferralPriority.MEDIUM.value,
        notes: Optional[str] = None,
    ) -> Referral:
        """Create a referral from the calling provider."""
        if actor.role not in REFERRAL_SOURCE_ROLES:
            raise AuthorizationError("Only hospitals, doctors and labs can create referrals")

        referral_type = _parse_enum(ReferralType, referral_type, "referral type")
        priority = _parse_enum(ReferralPriority, priority, "referral priority")
        reason = (reason or "").strip()
        if not REASON_MIN_LENGTH <= len(reason) <= REASON_MAX_LENGTH:
            raise ValidationError(
                f"Reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters"
            )

        source = await self.identity.require_user(actor.id, label="Source provider")
        target = await self.identity.require_user(target_id, label="Target provider")
        if target.id == source.id:
            raise ValidationError("Cannot create a referral to yourself")

        ensure_referral_compatible(source.role, referral_type, target.role)

        patient = await self.identity.require_user(patient_id, UserRole.PATIENT, "Patient")

        referral = Referral(
            id=str(uuid.uuid4()),
            reference_number=new_identifier(IdentifierKind.REFERRAL),
            source_id=source.id,
            target_id=target.id,
            patient_id=patient.id,
            referral_type=referral_type.value,
            priority=priority.value,
            status=ReferralStatus.PENDING.value,
            reason=reason,
            notes=notes,
            source_snapshot=snapshot_provider(source).to_dict(),
            target_snapshot=snapshot_provider(target).to_dict(),
            patient_snapshot=snapshot_patient(patient).to_dict(),
            created_by=actor.id,
        )

        uow = TransactionalUnitOfWork(self.session)

        async def _create(session: AsyncSession) -> None:
            session.add(referral)
            await write_audit_event(
                session=session,
                actor=actor,
                action="referral.created",
                entity_type="referral",
                entity_id=referral.id,
                metadata={
                    "reference_number": referral.reference_number,
                    "referral_type": referral.referral_type,
                    "priority": referral.priority,
                },
            )
            self._notify_after_commit(uow, referral, "referral.created", [target.email])

        await uow.run(_create)
        return referral

    async def accept(
        self,
        actor: Actor,
        reference_number: str,
        notes: Optional[str] = None,
    ) -> Referral:
        referral = await self._get(reference_number)
        self._require_target(actor, referral, "accept")
        return await self._transition(
            referral,
            ReferralStatus.ACCEPTED,
            actor,
            notify=[referral.source_id],
            notes=notes,
        )

    async def reject(
        self,
        actor: Actor,
        reference_number: str,
        reason: Optional[str] = None,
    ) -> Referral:
        referral = await self._get(reference_number)
        self._require_target(actor, referral, "reject")
        return await self._transition(
            referral,
            ReferralStatus.REJECTED,
            actor,
            notify=[referral.source_id],
            reason=reason,
        )

    async def complete(self, actor: Actor, reference_number: str) -> Referral:
        referral = await self._get(reference_number)
        self._require_target(actor, referral, "complete")
        return await self._transition(
            referral,
            ReferralStatus.COMPLETED,
            actor,
            notify=[referral.source_id, referral.patient_id],
        )

    async def cancel(
        self,
        actor: Actor,
        reference_number: str,
        reason: Optional[str] = None,
    ) -> Referral:
        referral = await self._get(reference_number)
        if actor.id != referral.source_id:
            raise AuthorizationError("Only the referring provider can cancel this referral")
        return await self._transition(
            referral,
            ReferralStatus.CANCELLED,
            actor,
            notify=[referral.target_id],
            reason=reason,
        )

    @staticmethod
    def _require_target(actor: Actor, referral: Referral, verb: str) -> None:
        if actor.id != referral.target_id:
            raise AuthorizationError(f"Only the referral target can {verb} this referral")

    async def _transition(
        self,
        referral: Referral,
        target: ReferralStatus,
        actor: Actor,
        notify: list[str],
        **params,
    ) -> Referral:
        recipients = [await self.identity.get_email(user_id) for user_id in notify]
        uow = TransactionalUnitOfWork(self.session)

        async def _apply(session: AsyncSession) -> None:
            await lock_current_status(session, referral)
            change = REFERRAL_ENGINE.apply(referral, target, actor, **params)
            await write_audit_event(
                session=session,
                actor=actor,
                action=f"referral.{target.value.lower()}",
                entity_type="referral",
                entity_id=referral.id,
                metadata={"reference_number": referral.reference_number, **change.as_metadata()},
            )
            self._notify_after_commit(
                uow, referral, f"referral.{target.value.lower()}", recipients, params.get("reason")
            )

        await uow.run(_apply)
        return referral

    def _notify_after_commit(
        self,
        uow: TransactionalUnitOfWork,
        referral: Referral,
        template: str,
        recipients: list[Optional[str]],
        reason: Optional[str] = None,
    ) -> None:
        context = {
            "reference_number": referral.reference_number,
            "patient_name": referral.patient_snapshot.get("name"),
            "source_name": referral.source_snapshot.get("name"),
            "target_name": referral.target_snapshot.get("name"),
            "priority": referral.priority,
            "reason": reason or "not given",
        }

        def _publish() -> None:
            for recipient in recipients:
                self.notifications.publish(
                    NotificationEvent(recipient=recipient, template=template, context=context)
                )

        uow.after_commit(_publish)
