"""Entity validators run before every write.

``validate_entity`` is called by the unit of work on each new or
modified workflow entity right before commit. Validators only read the
entity; they never fix it up.
"""

from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import inspect

from carelink.core.exceptions import ConflictError, ValidationError
from carelink.models.consent import ConsentRequest, ConsentStatus
from carelink.models.consultation import Consultation, ConsultationMode, ConsultationStatus
from carelink.models.invoice import Invoice, InvoiceStatus
from carelink.models.payment import Payment, PaymentStatus
from carelink.models.prescription import Prescription, PrescriptionStatus
from carelink.models.referral import Referral, ReferralPriority, ReferralStatus, ReferralType
from carelink.utils.time import minutes_between
from carelink.workflow.compatibility import ensure_referral_compatible
from carelink.workflow.identifiers import CHANNEL_NAME_PATTERN
from carelink.workflow.ledger import LedgerReconciler, recompute_invoice_totals
from carelink.workflow.limits import (
    DIAGNOSIS_MAX_LENGTH,
    MESSAGE_MAX_LENGTH,
    NOTE_MAX_LENGTH,
    NOTE_MIN_LENGTH,
    PURPOSE_MAX_LENGTH,
    PURPOSE_MIN_LENGTH,
    REASON_MAX_LENGTH,
    REASON_MIN_LENGTH,
    SHORT_NOTES_MAX_LENGTH,
)

CONSENT_REQUESTER_ROLES = frozenset({"HOSPITAL", "DOCTOR", "LAB"})


def _check_length(value: Any, label: str, minimum: int, maximum: int) -> None:
    length = len((value or "").strip())
    if not minimum <= length <= maximum:
        raise ValidationError(f"{label} must be between {minimum} and {maximum} characters")


def _check_max(value: Any, label: str, maximum: int) -> None:
    if value is not None and len(value) > maximum:
        raise ValidationError(f"{label} cannot exceed {maximum} characters")


def _check_member(value: Any, enum_cls: type, label: str) -> None:
    if value not in {member.value for member in enum_cls}:
        raise ValidationError(f"Invalid {label}: {value}")


def _is_new(entity: Any) -> bool:
    return not inspect(entity).has_identity


def normalize_medicines(medicines: Any) -> list[dict[str, Any]]:
    """Shape a medicines payload into the stored list form.

    Quantity defaults to 1. Anything that is not a non-empty list of
    named, dosed entries is rejected rather than coerced.
    """
    if not isinstance(medicines, list) or not medicines:
        raise ValidationError("At least one medicine is required")

    normalized = []
    for medicine in medicines:
        if not isinstance(medicine, dict):
            raise ValidationError("Each medicine must be an object")
        name = (medicine.get("name") or "").strip()
        dosage = (medicine.get("dosage") or "").strip()
        if not name or not dosage:
            raise ValidationError("Each medicine must have a name and dosage")
        quantity = medicine.get("quantity", 1)
        if quantity is None:
            quantity = 1
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Medicine quantity must be a whole number of at least 1")
        normalized.append(
            {
                "name": name,
                "dosage": dosage,
                "quantity": quantity,
                "instructions": medicine.get("instructions"),
                "duration": medicine.get("duration"),
            }
        )
    return normalized


def validate_consent_request(consent: ConsentRequest) -> None:
    _check_member(consent.status, ConsentStatus, "consent status")
    if consent.requester_role not in CONSENT_REQUESTER_ROLES:
        raise ValidationError("Consent can only be requested by hospitals, doctors or labs")
    _check_length(consent.purpose, "Purpose", PURPOSE_MIN_LENGTH, PURPOSE_MAX_LENGTH)
    _check_max(consent.notes, "Notes", SHORT_NOTES_MAX_LENGTH)
    if consent.patient_id == consent.requester_id:
        raise ValidationError("A consent request must name a different patient and requester")


def validate_referral(referral: Referral) -> None:
    _check_member(referral.status, ReferralStatus, "referral status")
    _check_member(referral.referral_type, ReferralType, "referral type")
    _check_member(referral.priority, ReferralPriority, "referral priority")
    _check_length(referral.reason, "Reason", REASON_MIN_LENGTH, REASON_MAX_LENGTH)
    _check_max(referral.notes, "Notes", SHORT_NOTES_MAX_LENGTH)

    for label, snapshot in (
        ("source", referral.source_snapshot),
        ("target", referral.target_snapshot),
        ("patient", referral.patient_snapshot),
    ):
        if not isinstance(snapshot, dict) or not snapshot.get("name"):
            raise ValidationError(f"Referral {label} snapshot is missing")

    # Checked against the snapshots, never live roles
    ensure_referral_compatible(
        referral.source_snapshot.get("role"),
        referral.referral_type,
        referral.target_snapshot.get("role"),
    )


def validate_consultation(consultation: Consultation) -> None:
    _check_member(consultation.status, ConsultationStatus, "consultation status")
    _check_member(consultation.mode, ConsultationMode, "consultation mode")

    if not isinstance(consultation.notes, list):
        raise ValidationError("Consultation notes must be a list")
    for note in consultation.notes:
        _check_length(
            note.get("content") if isinstance(note, dict) else None,
            "Consultation notes",
            NOTE_MIN_LENGTH,
            NOTE_MAX_LENGTH,
        )

    if not isinstance(consultation.messages, list):
        raise ValidationError("Consultation messages must be a list")
    for message in consultation.messages:
        text = message.get("message") if isinstance(message, dict) else None
        _check_length(text, "Message", 1, MESSAGE_MAX_LENGTH)

    _check_max(consultation.diagnosis, "Diagnosis", DIAGNOSIS_MAX_LENGTH)

    if consultation.started_at is not None and consultation.ended_at is not None:
        expected = minutes_between(consultation.started_at, consultation.ended_at)
        if consultation.duration_minutes != expected:
            raise ValidationError("Consultation duration does not match its start and end times")

    if consultation.mode == ConsultationMode.VIDEO_CALL.value:
        if not consultation.channel_name or not CHANNEL_NAME_PATTERN.match(
            consultation.channel_name
        ):
            raise ValidationError("Video consultations require a valid channel name")


def validate_prescription(prescription: Prescription) -> None:
    _check_member(prescription.status, PrescriptionStatus, "prescription status")
    if normalize_medicines(prescription.medicines) != prescription.medicines:
        raise ValidationError("Medicines must be stored in normalized list form")
    if _is_new(prescription) and not prescription.pharmacy_id:
        raise ValidationError("Pharmacy selection is required for creating a prescription")


def validate_invoice(invoice: Invoice) -> None:
    _check_member(invoice.status, InvoiceStatus, "invoice status")
    _check_member(invoice.payment_status, PaymentStatus, "payment status")
    if invoice.booking_id and invoice.prescription_id:
        raise ConflictError("An invoice cannot reference both a booking and a prescription")

    totals = recompute_invoice_totals(invoice.items, invoice.tax_details)
    stored = (
        Decimal(str(invoice.subtotal)),
        Decimal(str(invoice.total_tax)),
        Decimal(str(invoice.total_amount)),
    )
    if stored != (totals.subtotal, totals.total_tax, totals.total_amount):
        raise ValidationError("Invoice totals do not match its items and taxes")


def validate_payment(payment: Payment) -> None:
    _check_member(payment.status, PaymentStatus, "payment status")
    LedgerReconciler.check_single_parent(payment.booking_id, payment.prescription_id)
    if not isinstance(payment.amount, int) or isinstance(payment.amount, bool) or payment.amount < 0:
        raise ValidationError("Payment amount must be a non-negative integer in minor units")


VALIDATORS: dict[type, Callable[[Any], None]] = {
    ConsentRequest: validate_consent_request,
    Referral: validate_referral,
    Consultation: validate_consultation,
    Prescription: validate_prescription,
    Invoice: validate_invoice,
    Payment: validate_payment,
}


def validate_entity(entity: Any) -> None:
    """Run the validator registered for ``entity``'s type, if any."""
    validator = VALIDATORS.get(type(entity))
    if validator is not None:
        validator(entity)
