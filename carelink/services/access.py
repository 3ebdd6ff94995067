"""Access gate for patient records.

A provider may see a patient's records when either
  - the patient has approved a consent request from that provider and
    it has not expired, or
  - a CONFIRMED or COMPLETED booking links the two.

Evaluation fails closed: any lookup error denies access.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.db.unit_of_work import TransactionalUnitOfWork
from carelink.models.booking import BookingStatus
from carelink.models.consent import ConsentRequest, ConsentStatus
from carelink.services.audit import write_audit_event
from carelink.services.identity import BookingStore
from carelink.utils.time import utc_now
from carelink.workflow.actors import SYSTEM_ACTOR
from carelink.workflow.lifecycles import CONSENT_ENGINE


class AccessPath(str, Enum):
    """Why access was granted (or not)."""

    CONSENT = "consent"
    BOOKING = "booking"
    SELF = "self"
    NONE = "none"


@dataclass(frozen=True)
class AccessGateConfig:
    qualifying_booking_statuses: frozenset[str] = frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value}
    )


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    path: AccessPath
    consent_reference: Optional[str] = None
    booking_id: Optional[str] = None


DENIED = AccessDecision(allowed=False, path=AccessPath.NONE)

logger = logging.getLogger(__name__)


class AccessGate:
    """Decides whether a provider may access a patient's records."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[AccessGateConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session = session
        self.config = config or AccessGateConfig()
        self.bookings = BookingStore(session)
        self._clock = clock

    async def can_access(self, patient_id: Optional[str], requester_id: Optional[str]) -> bool:
        decision = await self.evaluate(patient_id, requester_id)
        return decision.allowed

    async def evaluate(
        self,
        patient_id: Optional[str],
        requester_id: Optional[str],
    ) -> AccessDecision:
        if not patient_id or not requester_id:
            return DENIED

        try:
            consent = await self.find_active_consent(patient_id, requester_id)
            if consent is not None:
                return AccessDecision(
                    allowed=True,
                    path=AccessPath.CONSENT,
                    consent_reference=consent.reference_number,
                )

            booking = await self.bookings.find_qualifying_booking(
                patient_id,
                requester_id,
                self.config.qualifying_booking_statuses,
            )
            if booking is not None:
                return AccessDecision(
                    allowed=True, path=AccessPath.BOOKING, booking_id=booking.id
                )
        except Exception:
            logger.exception(
                "Access evaluation failed, denying access",
                extra={"user_id": requester_id, "entity_id": patient_id},
            )
            return DENIED

        return DENIED

    async def find_active_consent(
        self,
        patient_id: str,
        requester_id: str,
    ) -> Optional[ConsentRequest]:
        """Latest approved, unexpired consent for the pair.

        Approved consents found past their expiry are downgraded to
        EXPIRED and persisted before returning; they never count as
        active in this evaluation.
        """
        result = await self.session.execute(
            select(ConsentRequest)
            .where(
                ConsentRequest.patient_id == patient_id,
                ConsentRequest.requester_id == requester_id,
                ConsentRequest.status == ConsentStatus.APPROVED.value,
            )
            .order_by(ConsentRequest.responded_at.desc())
        )
        now = self._clock()

        active = None
        expired = []
        for consent in result.scalars().all():
            if consent.is_expired(now):
                expired.append(consent)
            elif active is None:
                active = consent

        if expired:
            await self.expire_consents(expired, now)

        return active

    async def expire_consents(self, consents: list[ConsentRequest], now: datetime) -> None:
        """Persist EXPIRED for approved grants found past their expiry."""

        async def _apply(session: AsyncSession) -> None:
            for consent in consents:
                change = CONSENT_ENGINE.apply(
                    consent, ConsentStatus.EXPIRED, SYSTEM_ACTOR, at=now
                )
                await write_audit_event(
                    session=session,
                    actor=SYSTEM_ACTOR,
                    action="consent.expired",
                    entity_type="consent",
                    entity_id=consent.id,
                    metadata={
                        "reference_number": consent.reference_number,
                        **change.as_metadata(),
                    },
                )

        await TransactionalUnitOfWork(self.session).run(_apply)
        logger.info(f"Expired {len(consents)} consent grant(s) on read")
