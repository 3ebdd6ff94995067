"""Tests for the patient history timeline."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import AuthorizationError, ValidationError
from carelink.models.booking import Booking
from carelink.models.user import User
from carelink.services.access import AccessPath
from carelink.services.prescription import PrescriptionService
from carelink.services.referral import ReferralService
from carelink.services.timeline import TimelineService
from conftest import actor_for, create_booking


@pytest.fixture
async def history(
    async_session: AsyncSession,
    notifications,
    booking: Booking,
    doctor: User,
    other_doctor: User,
    patient: User,
    pharmacy: User,
) -> None:
    """Booking with the doctor, one prescription and one referral."""
    await PrescriptionService(async_session).create_prescription(
        actor_for(doctor),
        patient_id=patient.id,
        pharmacy_id=pharmacy.id,
        medicines=[{"name": "Aspirin", "dosage": "75mg"}],
    )
    await ReferralService(async_session, notifications=notifications).create_referral(
        actor_for(doctor),
        target_id=other_doctor.id,
        patient_id=patient.id,
        referral_type="DOCTOR_TO_DOCTOR",
        reason="Needs a second cardiology opinion",
    )


async def test_patient_sees_own_history(
    async_session: AsyncSession, history, patient: User
) -> None:
    result = await TimelineService(async_session).get_patient_history(actor_for(patient), patient.id)

    assert result.access_path == AccessPath.SELF
    assert sorted(e.entry_type for e in result.entries) == ["booking", "prescription", "referral"]
    dates = [e.date for e in result.entries]
    assert dates == sorted(dates, reverse=True)


async def test_filter_by_type(async_session: AsyncSession, history, patient: User) -> None:
    result = await TimelineService(async_session).get_patient_history(
        actor_for(patient), patient.id, entry_type="prescription"
    )

    assert len(result.entries) == 1
    assert result.entries[0].summary["medicines"] == ["Aspirin"]
    assert result.entries[0].summary["pharmacy"] == "Corner Pharmacy"


async def test_invalid_type(async_session: AsyncSession, patient: User) -> None:
    with pytest.raises(ValidationError, match="Invalid history type: invoices"):
        await TimelineService(async_session).get_patient_history(
            actor_for(patient), patient.id, entry_type="invoices"
        )


async def test_provider_with_booking(
    async_session: AsyncSession, history, doctor: User, patient: User
) -> None:
    result = await TimelineService(async_session).get_patient_history(actor_for(doctor), patient.id)

    assert result.access_path == AccessPath.BOOKING
    assert len(result.entries) == 3


async def test_provider_sees_only_own_bookings(
    async_session: AsyncSession, history, doctor: User, lab: User, patient: User
) -> None:
    await create_booking(async_session, patient, lab)

    result = await TimelineService(async_session).get_patient_history(
        actor_for(lab), patient.id, entry_type="booking"
    )

    assert len(result.entries) == 1
    assert result.entries[0].summary["provider_id"] == lab.id


async def test_provider_without_access(
    async_session: AsyncSession, history, pharmacy: User, patient: User
) -> None:
    with pytest.raises(AuthorizationError):
        await TimelineService(async_session).get_patient_history(actor_for(pharmacy), patient.id)


async def test_admin_is_not_a_provider(
    async_session: AsyncSession, admin: User, patient: User
) -> None:
    with pytest.raises(AuthorizationError):
        await TimelineService(async_session).get_patient_history(actor_for(admin), patient.id)
