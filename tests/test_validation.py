"""Tests for entity validators run before every write."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from carelink.core.exceptions import ConflictError, ValidationError
from carelink.models.consent import ConsentRequest
from carelink.models.consultation import Consultation
from carelink.models.invoice import Invoice
from carelink.models.payment import Payment
from carelink.models.referral import Referral
from carelink.workflow.validation import (
    normalize_medicines,
    validate_consent_request,
    validate_consultation,
    validate_entity,
    validate_invoice,
    validate_payment,
    validate_referral,
)

T0 = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)


def _consent(**overrides) -> ConsentRequest:
    values = dict(
        status="PENDING",
        patient_id="patient-1",
        requester_id="doctor-1",
        requester_role="DOCTOR",
        purpose="Review previous lab results",
    )
    values.update(overrides)
    return ConsentRequest(**values)


def _referral(**overrides) -> Referral:
    values = dict(
        status="PENDING",
        referral_type="DOCTOR_TO_PHARMACY",
        priority="HIGH",
        reason="Needs specialist medication",
        source_snapshot={"name": "Dr. Rao", "role": "DOCTOR"},
        target_snapshot={"name": "Corner Pharmacy", "role": "PHARMACY"},
        patient_snapshot={"name": "Asha"},
    )
    values.update(overrides)
    return Referral(**values)


def _consultation(**overrides) -> Consultation:
    values = dict(status="SCHEDULED", mode="IN_PERSON", notes=[], messages=[])
    values.update(overrides)
    return Consultation(**values)


class TestConsentValidation:
    def test_valid_request(self) -> None:
        validate_consent_request(_consent())

    def test_short_purpose(self) -> None:
        with pytest.raises(ValidationError, match="Purpose"):
            validate_consent_request(_consent(purpose="short"))

    def test_pharmacy_cannot_request(self) -> None:
        with pytest.raises(ValidationError, match="hospitals, doctors or labs"):
            validate_consent_request(_consent(requester_role="PHARMACY"))

    def test_self_consent(self) -> None:
        with pytest.raises(ValidationError, match="different"):
            validate_consent_request(_consent(requester_id="patient-1"))

    def test_unknown_status(self) -> None:
        with pytest.raises(ValidationError, match="Invalid consent status"):
            validate_consent_request(_consent(status="MAYBE"))


class TestReferralValidation:
    def test_valid_referral(self) -> None:
        validate_referral(_referral())

    def test_compatibility_is_checked_against_snapshots(self) -> None:
        with pytest.raises(ValidationError, match="must target pharmacies"):
            validate_referral(_referral(target_snapshot={"name": "Dr. Menon", "role": "DOCTOR"}))

    def test_missing_snapshot(self) -> None:
        with pytest.raises(ValidationError, match="patient snapshot"):
            validate_referral(_referral(patient_snapshot={}))

    def test_reason_bounds(self) -> None:
        with pytest.raises(ValidationError, match="Reason"):
            validate_referral(_referral(reason="x" * 1001))


class TestConsultationValidation:
    def test_duration_must_match_times(self) -> None:
        consultation = _consultation(
            status="COMPLETED",
            started_at=T0,
            ended_at=T0 + timedelta(minutes=30),
            duration_minutes=29,
        )
        with pytest.raises(ValidationError, match="duration"):
            validate_consultation(consultation)

    def test_naive_times_are_treated_as_utc(self) -> None:
        consultation = _consultation(
            status="COMPLETED",
            started_at=T0.replace(tzinfo=None),
            ended_at=T0 + timedelta(minutes=30),
            duration_minutes=30,
        )
        validate_consultation(consultation)

    def test_video_needs_channel_name(self) -> None:
        with pytest.raises(ValidationError, match="channel name"):
            validate_consultation(_consultation(mode="VIDEO_CALL"))

    def test_short_note(self) -> None:
        with pytest.raises(ValidationError, match="between 10 and 2000"):
            validate_consultation(_consultation(notes=[{"content": "too short"}]))

    def test_empty_message(self) -> None:
        with pytest.raises(ValidationError, match="Message"):
            validate_consultation(_consultation(messages=[{"message": "   "}]))


class TestInvoiceValidation:
    def _invoice(self, **overrides) -> Invoice:
        values = dict(
            status="ISSUED",
            payment_status="PENDING",
            items=[{"item_type": "X", "quantity": 1, "unit_price": 100.0, "total_price": 100.0}],
            tax_details=[{"tax_type": "GST", "tax_rate": 18.0, "tax_amount": 18.0}],
            subtotal=Decimal("100.00"),
            total_tax=Decimal("18.00"),
            total_amount=Decimal("118.00"),
        )
        values.update(overrides)
        return Invoice(**values)

    def test_consistent_totals(self) -> None:
        validate_invoice(self._invoice())

    def test_tampered_total(self) -> None:
        with pytest.raises(ValidationError, match="totals"):
            validate_invoice(self._invoice(total_amount=Decimal("1.00")))

    def test_two_parents(self) -> None:
        with pytest.raises(ConflictError):
            validate_invoice(self._invoice(booking_id="bk-1", prescription_id="rx-1"))


class TestPaymentValidation:
    def test_single_parent(self) -> None:
        with pytest.raises(ConflictError):
            validate_payment(Payment(status="PENDING", amount=1, booking_id=None))

    def test_negative_amount(self) -> None:
        with pytest.raises(ValidationError):
            validate_payment(Payment(status="PENDING", amount=-1, booking_id="bk-1"))


class TestMedicines:
    def test_quantity_defaults_to_one(self) -> None:
        medicines = normalize_medicines([{"name": " Amoxicillin ", "dosage": "500mg"}])

        assert medicines == [
            {
                "name": "Amoxicillin",
                "dosage": "500mg",
                "quantity": 1,
                "instructions": None,
                "duration": None,
            }
        ]

    @pytest.mark.parametrize(
        "medicines",
        [
            [],
            None,
            [{"name": "A"}],
            [{"name": "A", "dosage": "1", "quantity": 0}],
            ["aspirin"],
        ],
    )
    def test_rejected_shapes(self, medicines) -> None:
        with pytest.raises(ValidationError):
            normalize_medicines(medicines)


def test_entities_without_validator_pass() -> None:
    validate_entity(object())
