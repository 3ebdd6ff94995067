"""Tests for the patient record access gate."""

from datetime import timedelta
from unittest.mock import AsyncMock

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.models.audit_event import AuditEvent
from carelink.models.booking import BookingStatus
from carelink.models.consent import ConsentStatus
from carelink.models.user import User
from carelink.services.access import DENIED, AccessGate, AccessPath
from carelink.services.consent import ConsentService
from carelink.utils.time import utc_now
from conftest import actor_for, create_booking

PURPOSE = "Review of previous cardiology results"


async def _approved_consent(session, notifications, patient, doctor, expires_at=None):
    service = ConsentService(session, notifications=notifications)
    consent = await service.request_consent(actor_for(doctor), patient.id, PURPOSE)
    return await service.approve(actor_for(patient), consent.reference_number, expires_at=expires_at)


async def test_no_relationship_denies(async_session: AsyncSession, patient: User, doctor: User) -> None:
    decision = await AccessGate(async_session).evaluate(patient.id, doctor.id)

    assert not decision.allowed
    assert decision.path == AccessPath.NONE


async def test_missing_ids_deny(async_session: AsyncSession, patient: User) -> None:
    gate = AccessGate(async_session)

    assert not await gate.can_access(patient.id, None)
    assert not await gate.can_access(None, patient.id)


async def test_confirmed_booking_grants_access(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    booking = await create_booking(async_session, patient, doctor, BookingStatus.COMPLETED)

    decision = await AccessGate(async_session).evaluate(patient.id, doctor.id)

    assert decision.allowed
    assert decision.path == AccessPath.BOOKING
    assert decision.booking_id == booking.id


async def test_cancelled_booking_does_not_grant_access(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    await create_booking(async_session, patient, doctor, BookingStatus.CANCELLED)

    assert not await AccessGate(async_session).can_access(patient.id, doctor.id)


async def test_booking_is_directional(
    async_session: AsyncSession, patient: User, doctor: User, other_doctor: User
) -> None:
    await create_booking(async_session, patient, doctor)

    assert not await AccessGate(async_session).can_access(patient.id, other_doctor.id)


async def test_approved_consent_grants_access(
    async_session: AsyncSession, notifications, patient: User, lab: User
) -> None:
    consent = await _approved_consent(async_session, notifications, patient, lab)

    decision = await AccessGate(async_session).evaluate(patient.id, lab.id)

    assert decision.allowed
    assert decision.path == AccessPath.CONSENT
    assert decision.consent_reference == consent.reference_number


async def test_expired_consent_is_downgraded_on_read(
    async_session: AsyncSession, notifications, patient: User, lab: User
) -> None:
    consent = await _approved_consent(
        async_session, notifications, patient, lab, expires_at=utc_now() + timedelta(hours=1)
    )

    later = AccessGate(async_session, clock=lambda: utc_now() + timedelta(hours=2))
    decision = await later.evaluate(patient.id, lab.id)

    assert not decision.allowed
    await async_session.refresh(consent)
    assert consent.status == ConsentStatus.EXPIRED.value

    actions = (await async_session.execute(select(AuditEvent.action))).scalars().all()
    assert "consent.expired" in actions


async def test_expired_consent_falls_back_to_booking(
    async_session: AsyncSession, notifications, patient: User, doctor: User
) -> None:
    await _approved_consent(
        async_session, notifications, patient, doctor, expires_at=utc_now() + timedelta(hours=1)
    )
    booking = await create_booking(async_session, patient, doctor)

    later = AccessGate(async_session, clock=lambda: utc_now() + timedelta(hours=2))
    decision = await later.evaluate(patient.id, doctor.id)

    assert decision.path == AccessPath.BOOKING
    assert decision.booking_id == booking.id


async def test_lookup_errors_fail_closed(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    gate = AccessGate(async_session)
    gate.bookings = AsyncMock()
    gate.bookings.find_qualifying_booking.side_effect = RuntimeError("database unavailable")

    decision = await gate.evaluate(patient.id, doctor.id)

    assert not decision.allowed
    assert decision.path == AccessPath.NONE


async def test_session_errors_fail_closed() -> None:
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(side_effect=ConnectionError("connection reset"))

    decision = await AccessGate(mock_session).evaluate("patient-1", "doctor-1")

    assert decision == DENIED
