"""Tests for the referral workflow."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import AuthorizationError, InvalidTransitionError, ValidationError
from carelink.models.referral import ReferralStatus
from carelink.models.user import User
from carelink.services.notifications import NotificationBus
from carelink.services.referral import ReferralService
from conftest import RecordingProvider, actor_for

REASON = "Persistent chest pain needs specialist review"


@pytest.fixture
def service(async_session: AsyncSession, notifications: NotificationBus) -> ReferralService:
    return ReferralService(async_session, notifications=notifications)


async def _doctor_referral(service, doctor, other_doctor, patient, **kwargs):
    return await service.create_referral(
        actor_for(doctor),
        target_id=other_doctor.id,
        patient_id=patient.id,
        referral_type="DOCTOR_TO_DOCTOR",
        reason=REASON,
        **kwargs,
    )


class TestCreateReferral:
    async def test_snapshots_are_captured(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient, priority="HIGH")

        assert referral.status == ReferralStatus.PENDING.value
        assert referral.reference_number.startswith("REF-")
        assert referral.priority == "HIGH"
        assert referral.source_snapshot["name"] == "Dr. Rao"
        assert referral.source_snapshot["specialization"] == "Cardiology"
        assert referral.target_snapshot["role"] == "DOCTOR"
        assert referral.patient_snapshot["name"] == "Asha Patel"
        assert referral.created_by == doctor.id

    async def test_snapshots_do_not_follow_renames(
        self,
        async_session: AsyncSession,
        service: ReferralService,
        doctor: User,
        other_doctor: User,
        patient: User,
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        patient.name = "Asha Kulkarni"
        await async_session.commit()
        await async_session.refresh(referral)

        assert referral.patient_snapshot["name"] == "Asha Patel"

    async def test_incompatible_target(
        self, service: ReferralService, doctor: User, lab: User, patient: User
    ) -> None:
        with pytest.raises(ValidationError, match="must target doctors"):
            await service.create_referral(
                actor_for(doctor),
                target_id=lab.id,
                patient_id=patient.id,
                referral_type="DOCTOR_TO_DOCTOR",
                reason=REASON,
            )

    async def test_hospital_limited_to_inter_departmental(
        self, service: ReferralService, hospital: User, doctor: User, patient: User
    ) -> None:
        with pytest.raises(ValidationError, match="INTER_DEPARTMENTAL"):
            await service.create_referral(
                actor_for(hospital),
                target_id=doctor.id,
                patient_id=patient.id,
                referral_type="DOCTOR_TO_DOCTOR",
                reason=REASON,
            )

    async def test_doctor_to_pharmacy(
        self, service: ReferralService, doctor: User, pharmacy: User, patient: User
    ) -> None:
        referral = await service.create_referral(
            actor_for(doctor),
            target_id=pharmacy.id,
            patient_id=patient.id,
            referral_type="DOCTOR_TO_PHARMACY",
            reason=REASON,
        )
        assert referral.target_id == pharmacy.id

    async def test_cannot_refer_to_self(
        self, service: ReferralService, doctor: User, patient: User
    ) -> None:
        with pytest.raises(ValidationError, match="Cannot create a referral to yourself"):
            await _doctor_referral(service, doctor, doctor, patient)

    async def test_patients_cannot_refer(
        self, service: ReferralService, patient: User, doctor: User
    ) -> None:
        with pytest.raises(AuthorizationError):
            await _doctor_referral(service, patient, doctor, patient)

    async def test_short_reason(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        with pytest.raises(ValidationError, match="Reason"):
            await service.create_referral(
                actor_for(doctor),
                target_id=other_doctor.id,
                patient_id=patient.id,
                referral_type="DOCTOR_TO_DOCTOR",
                reason="pain",
            )

    async def test_unknown_priority(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        with pytest.raises(ValidationError, match="Invalid referral priority"):
            await _doctor_referral(service, doctor, other_doctor, patient, priority="ASAP")

    async def test_target_is_notified_after_commit(
        self,
        service: ReferralService,
        notifications: NotificationBus,
        notification_provider: RecordingProvider,
        doctor: User,
        other_doctor: User,
        patient: User,
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        report = await notifications.flush()

        assert report.sent == 1
        sent = notification_provider.sent[0]
        assert sent["recipient"] == other_doctor.email
        assert referral.reference_number in sent["subject"]


class TestReferralLifecycle:
    async def test_accept_then_complete(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        accepted = await service.accept(actor_for(other_doctor), referral.reference_number)
        assert accepted.status == ReferralStatus.ACCEPTED.value
        assert accepted.accepted_at is not None

        completed = await service.complete(actor_for(other_doctor), referral.reference_number)
        assert completed.status == ReferralStatus.COMPLETED.value
        assert completed.completed_at is not None

    async def test_only_target_accepts(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        with pytest.raises(AuthorizationError, match="Only the referral target can accept"):
            await service.accept(actor_for(doctor), referral.reference_number)

    async def test_complete_requires_acceptance(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        with pytest.raises(InvalidTransitionError, match="Only accepted referrals can be completed"):
            await service.complete(actor_for(other_doctor), referral.reference_number)

    async def test_reject_records_reason(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        rejected = await service.reject(
            actor_for(other_doctor), referral.reference_number, reason="Out of network"
        )

        assert rejected.status == ReferralStatus.REJECTED.value
        assert rejected.rejection_reason == "Out of network"
        with pytest.raises(InvalidTransitionError):
            await service.accept(actor_for(other_doctor), referral.reference_number)

    async def test_only_source_cancels(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        with pytest.raises(AuthorizationError, match="Only the referring provider"):
            await service.cancel(actor_for(other_doctor), referral.reference_number)

        cancelled = await service.cancel(actor_for(doctor), referral.reference_number, reason="Resolved")
        assert cancelled.status == ReferralStatus.CANCELLED.value
        assert cancelled.cancelled_by == doctor.id
        assert cancelled.cancellation_reason == "Resolved"

    async def test_completed_referral_cannot_be_cancelled(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)
        await service.accept(actor_for(other_doctor), referral.reference_number)
        await service.complete(actor_for(other_doctor), referral.reference_number)

        with pytest.raises(InvalidTransitionError, match="Only pending or accepted referrals"):
            await service.cancel(actor_for(doctor), referral.reference_number)

    async def test_patient_can_read(
        self, service: ReferralService, doctor: User, other_doctor: User, patient: User, lab: User
    ) -> None:
        referral = await _doctor_referral(service, doctor, other_doctor, patient)

        found = await service.get_referral(actor_for(patient), referral.reference_number)
        assert found.id == referral.id
        with pytest.raises(AuthorizationError):
            await service.get_referral(actor_for(lab), referral.reference_number)
