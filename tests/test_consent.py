"""Tests for the consent request workflow."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from carelink.models.audit_event import AuditEvent
from carelink.models.consent import ConsentStatus
from carelink.models.user import User
from carelink.services.access import AccessPath
from carelink.services.consent import ConsentService
from carelink.utils.time import utc_now
from conftest import actor_for

PURPOSE = "Review of previous cardiology results"


@pytest.fixture
def service(async_session: AsyncSession, notifications) -> ConsentService:
    return ConsentService(async_session, notifications=notifications)


@pytest.fixture
def later_service(async_session: AsyncSession, notifications) -> ConsentService:
    """Same service with a clock running an hour ahead."""
    return ConsentService(
        async_session,
        notifications=notifications,
        clock=lambda: utc_now() + timedelta(hours=1),
    )


class TestRequestConsent:
    async def test_doctor_requests_consent(
        self, service: ConsentService, notifications, patient: User, doctor: User
    ) -> None:
        consent = await service.request_consent(actor_for(doctor), patient.id, PURPOSE)

        assert consent.status == ConsentStatus.PENDING.value
        assert consent.reference_number.startswith("CONSENT-")
        assert consent.requester_role == "DOCTOR"
        assert consent.requested_at is not None
        # Queued after commit, delivered later
        assert notifications.pending == 1

    async def test_patient_cannot_request(self, service: ConsentService, patient: User) -> None:
        with pytest.raises(AuthorizationError):
            await service.request_consent(actor_for(patient), patient.id, PURPOSE)

    async def test_pharmacy_cannot_request(
        self, service: ConsentService, patient: User, pharmacy: User
    ) -> None:
        with pytest.raises(AuthorizationError):
            await service.request_consent(actor_for(pharmacy), patient.id, PURPOSE)

    async def test_purpose_length(self, service: ConsentService, patient: User, doctor: User) -> None:
        with pytest.raises(ValidationError, match="Purpose"):
            await service.request_consent(actor_for(doctor), patient.id, "too short")

    async def test_target_must_be_patient(
        self, service: ConsentService, doctor: User, other_doctor: User
    ) -> None:
        with pytest.raises(ValidationError, match="patient account"):
            await service.request_consent(actor_for(doctor), other_doctor.id, PURPOSE)

    async def test_unknown_patient(self, service: ConsentService, doctor: User) -> None:
        with pytest.raises(NotFoundError):
            await service.request_consent(actor_for(doctor), "missing", PURPOSE)

    async def test_active_grant_is_returned(
        self, service: ConsentService, patient: User, hospital: User
    ) -> None:
        first = await service.request_consent(actor_for(hospital), patient.id, PURPOSE)
        await service.approve(actor_for(patient), first.reference_number)

        again = await service.request_consent(actor_for(hospital), patient.id, PURPOSE)

        assert again.id == first.id
        assert again.status == ConsentStatus.APPROVED.value


class TestRespondToConsent:
    async def _pending(self, service: ConsentService, patient: User, doctor: User):
        return await service.request_consent(actor_for(doctor), patient.id, PURPOSE)

    async def test_only_patient_can_approve(
        self, service: ConsentService, patient: User, doctor: User
    ) -> None:
        consent = await self._pending(service, patient, doctor)

        with pytest.raises(AuthorizationError, match="Only the patient can approve consent"):
            await service.approve(actor_for(doctor), consent.reference_number)

    async def test_approve_grants_access(
        self, service: ConsentService, patient: User, doctor: User
    ) -> None:
        consent = await self._pending(service, patient, doctor)
        expires = utc_now() + timedelta(days=30)

        approved = await service.approve(
            actor_for(patient), consent.reference_number, expires_at=expires, notes="OK"
        )

        assert approved.status == ConsentStatus.APPROVED.value
        assert approved.responded_at is not None
        decision = await service.check_access(actor_for(doctor), patient.id)
        assert decision.allowed
        assert decision.path == AccessPath.CONSENT

    async def test_approve_twice(self, service: ConsentService, patient: User, doctor: User) -> None:
        consent = await self._pending(service, patient, doctor)
        await service.approve(actor_for(patient), consent.reference_number)

        with pytest.raises(InvalidTransitionError, match="Cannot approve consent with status: APPROVED"):
            await service.approve(actor_for(patient), consent.reference_number)

    async def test_past_expiry_leaves_request_pending(
        self, async_session: AsyncSession, service: ConsentService, patient: User, doctor: User
    ) -> None:
        consent = await self._pending(service, patient, doctor)

        with pytest.raises(ValidationError, match="future"):
            await service.approve(
                actor_for(patient),
                consent.reference_number,
                expires_at=utc_now() - timedelta(days=1),
            )

        await async_session.refresh(consent)
        assert consent.status == ConsentStatus.PENDING.value
        assert consent.responded_at is None

    async def test_reject(self, service: ConsentService, patient: User, doctor: User) -> None:
        consent = await self._pending(service, patient, doctor)

        rejected = await service.reject(actor_for(patient), consent.reference_number, notes="No")

        assert rejected.status == ConsentStatus.REJECTED.value
        assert rejected.notes == "No"

    async def test_revoke_requires_approval(
        self, service: ConsentService, patient: User, doctor: User
    ) -> None:
        consent = await self._pending(service, patient, doctor)

        with pytest.raises(InvalidTransitionError, match="Only approved consents can be revoked"):
            await service.revoke(actor_for(patient), consent.reference_number)

    async def test_revoke_removes_access(
        self, async_session: AsyncSession, service: ConsentService, patient: User, doctor: User
    ) -> None:
        consent = await self._pending(service, patient, doctor)
        await service.approve(actor_for(patient), consent.reference_number)

        revoked = await service.revoke(actor_for(patient), consent.reference_number)

        assert revoked.status == ConsentStatus.REVOKED.value
        assert revoked.revoked_at is not None
        decision = await service.check_access(actor_for(doctor), patient.id)
        assert not decision.allowed

        actions = (
            await async_session.execute(
                select(AuditEvent.action).where(AuditEvent.entity_id == consent.id)
            )
        ).scalars().all()
        assert sorted(actions) == ["consent.approved", "consent.requested", "consent.revoked"]

    async def test_revoke_after_expiry(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        later_service: ConsentService,
        patient: User,
        doctor: User,
    ) -> None:
        consent = await self._pending(service, patient, doctor)
        await service.approve(
            actor_for(patient),
            consent.reference_number,
            expires_at=utc_now() + timedelta(minutes=5),
        )

        with pytest.raises(InvalidTransitionError, match="Only approved consents can be revoked"):
            await later_service.revoke(actor_for(patient), consent.reference_number)

        await async_session.refresh(consent)
        assert consent.status == ConsentStatus.EXPIRED.value
        assert consent.revoked_at is None


class TestConsentReads:
    async def test_outsider_cannot_read(
        self, service: ConsentService, patient: User, doctor: User, other_doctor: User
    ) -> None:
        consent = await service.request_consent(actor_for(doctor), patient.id, PURPOSE)

        with pytest.raises(AuthorizationError):
            await service.get_consent(actor_for(other_doctor), consent.reference_number)

    async def test_admin_can_read(
        self, service: ConsentService, patient: User, doctor: User, admin: User
    ) -> None:
        consent = await service.request_consent(actor_for(doctor), patient.id, PURPOSE)

        found = await service.get_consent(actor_for(admin), consent.reference_number)
        assert found.id == consent.id

    async def test_read_after_expiry(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        later_service: ConsentService,
        patient: User,
        doctor: User,
    ) -> None:
        consent = await service.request_consent(actor_for(doctor), patient.id, PURPOSE)
        await service.approve(
            actor_for(patient),
            consent.reference_number,
            expires_at=utc_now() + timedelta(minutes=5),
        )

        found = await later_service.get_consent(actor_for(doctor), consent.reference_number)

        assert found.status == ConsentStatus.EXPIRED.value
        actions = (
            await async_session.execute(
                select(AuditEvent.action).where(AuditEvent.entity_id == consent.id)
            )
        ).scalars().all()
        assert "consent.expired" in actions

    async def test_patients_cannot_check_access(self, service: ConsentService, patient: User) -> None:
        with pytest.raises(AuthorizationError):
            await service.check_access(actor_for(patient), patient.id)
