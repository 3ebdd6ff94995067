"""Consent request workflow.

Providers request access; only the named patient may approve, reject
or revoke. An approved grant past its ``expires_at`` is persisted as
EXPIRED by whichever read finds it first: the access gate or a load
here.
"""

import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.consent import ConsentRequest, ConsentStatus
from carelink.models.user import UserRole
from carelink.services.access import AccessDecision, AccessGate
from carelink.services.audit import write_audit_event
from carelink.services.identity import IdentityDirectory
from carelink.services.notifications import NotificationBus, NotificationEvent, notification_bus
from carelink.utils.time import ensure_utc, utc_now
from carelink.workflow.actors import Actor
from carelink.workflow.identifiers import IdentifierKind, new_identifier
from carelink.workflow.lifecycles import CONSENT_ENGINE
from carelink.workflow.limits import PURPOSE_MAX_LENGTH, PURPOSE_MIN_LENGTH, SHORT_NOTES_MAX_LENGTH
from carelink.workflow.validation import CONSENT_REQUESTER_ROLES


class ConsentService:
    """Service for consent requests."""

    def __init__(
        self,
        session: AsyncSession,
        notifications: Optional[NotificationBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session = session
        self.notifications = notifications or notification_bus
        self.identity = IdentityDirectory(session)
        self.gate = AccessGate(session, clock=clock)
        self._clock = clock

    async def _get(self, reference_number: str) -> ConsentRequest:
        result = await self.session.execute(
            select(ConsentRequest).where(ConsentRequest.reference_number == reference_number)
        )
        consent = result.scalar_one_or_none()
        if not consent:
            raise NotFoundError(f"Consent request not found: {reference_number}")

        now = self._clock()
        if consent.is_expired(now):
            await self.gate.expire_consents([consent], now)
        return consent

    async def get_consent(self, actor: Actor, reference_number: str) -> ConsentRequest:
        consent = await self._get(reference_number)
        if actor.id not in (consent.patient_id, consent.requester_id) and not actor.has_role(
            UserRole.ADMIN
        ):
            raise AuthorizationError("You do not have access to this consent request")
        return consent

    async def request_consent(
        self,
        actor: Actor,
        patient_id: str,
        purpose: str,
    ) -> ConsentRequest:
        """Ask a patient for access to their records.

        Returns the existing grant if an active one already exists for
        this provider and patient.
        """
        if actor.role not in CONSENT_REQUESTER_ROLES:
            raise AuthorizationError("Only hospitals, doctors and labs can request consent")

        purpose = (purpose or "").strip()
        if not PURPOSE_MIN_LENGTH <= len(purpose) <= PURPOSE_MAX_LENGTH:
            raise ValidationError(
                f"Purpose must be between {PURPOSE_MIN_LENGTH} and {PURPOSE_MAX_LENGTH} characters"
            )

        patient = await self.identity.require_user(patient_id, UserRole.PATIENT, "Patient")
        requester = await self.identity.require_user(actor.id, label="Requester")

        existing = await self.gate.find_active_consent(patient.id, actor.id)
        if existing is not None:
            return existing

        consent = ConsentRequest(
            id=str(uuid.uuid4()),
            reference_number=new_identifier(IdentifierKind.CONSENT),
            patient_id=patient.id,
            requester_id=actor.id,
            requester_role=actor.role,
            purpose=purpose,
            status=ConsentStatus.PENDING.value,
            requested_at=self._clock(),
        )

        uow = TransactionalUnitOfWork(self.session)

        async def _create(session: AsyncSession) -> None:
            session.add(consent)
            await write_audit_event(
                session=session,
                actor=actor,
                action="consent.requested",
                entity_type="consent",
                entity_id=consent.id,
                metadata={"reference_number": consent.reference_number},
            )
            uow.after_commit(
                lambda: self.notifications.publish(
                    NotificationEvent(
                        recipient=patient.email,
                        template="consent.requested",
                        context={"requester_name": requester.name, "purpose": purpose},
                    )
                )
            )

        await uow.run(_create)
        return consent

    def _require_patient(self, actor: Actor, consent: ConsentRequest, verb: str) -> None:
        if actor.id != consent.patient_id:
            raise AuthorizationError(f"Unauthorized: Only the patient can {verb} consent")

    async def approve(
        self,
        actor: Actor,
        reference_number: str,
        expires_at: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> ConsentRequest:
        consent = await self._get(reference_number)
        self._require_patient(actor, consent, "approve")
        self._check_notes(notes)
        return await self._transition(
            consent,
            ConsentStatus.APPROVED,
            actor,
            "consent.approved",
            expires_at=ensure_utc(expires_at),
            notes=notes,
        )

    async def reject(
        self,
        actor: Actor,
        reference_number: str,
        notes: Optional[str] = None,
    ) -> ConsentRequest:
        consent = await self._get(reference_number)
        self._require_patient(actor, consent, "reject")
        self._check_notes(notes)
        return await self._transition(
            consent, ConsentStatus.REJECTED, actor, "consent.rejected", notes=notes
        )

    async def revoke(self, actor: Actor, reference_number: str) -> ConsentRequest:
        consent = await self._get(reference_number)
        self._require_patient(actor, consent, "revoke")
        return await self._transition(consent, ConsentStatus.REVOKED, actor, "consent.revoked")

    async def check_access(self, actor: Actor, patient_id: str) -> AccessDecision:
        """Evaluate the access gate for the calling provider."""
        if actor.role not in CONSENT_REQUESTER_ROLES and not actor.has_role(UserRole.PHARMACY):
            raise AuthorizationError("Only providers can check patient access")
        return await self.gate.evaluate(patient_id, actor.id)

    @staticmethod
    def _check_notes(notes: Optional[str]) -> None:
        if notes is not None and len(notes) > SHORT_NOTES_MAX_LENGTH:
            raise ValidationError(f"Notes cannot exceed {SHORT_NOTES_MAX_LENGTH} characters")

    async def _transition(
        self,
        consent: ConsentRequest,
        target: ConsentStatus,
        actor: Actor,
        action: str,
        **params,
    ) -> ConsentRequest:
        async def _apply(session: AsyncSession) -> None:
            await lock_current_status(session, consent)
            change = CONSENT_ENGINE.apply(consent, target, actor, **params)
            await write_audit_event(
                session=session,
                actor=actor,
                action=action,
                entity_type="consent",
                entity_id=consent.id,
                metadata={"reference_number": consent.reference_number, **change.as_metadata()},
            )

        await TransactionalUnitOfWork(self.session).run(_apply)
        return consent
