"""Transition tables for each workflow entity."""

from datetime import datetime
from typing import Any, Optional

from carelink.core.exceptions import InvalidTransitionError, ValidationError
from carelink.models.consent import ConsentRequest, ConsentStatus
from carelink.models.consultation import (
    Consultation,
    ConsultationStatus,
    ParticipantRole,
)
from carelink.models.invoice import Invoice, InvoiceStatus
from carelink.models.payment import Payment, PaymentStatus, RefundStatus
from carelink.models.prescription import Prescription, PrescriptionStatus
from carelink.models.referral import Referral, ReferralStatus
from carelink.utils.time import is_past, minutes_between
from carelink.workflow.limits import NOTE_MAX_LENGTH, NOTE_MIN_LENGTH
from carelink.workflow.transitions import TransitionContext, TransitionEngine, TransitionTable


def build_note_entry(
    content: str,
    author_id: Optional[str],
    author_role: str,
    at: datetime,
) -> dict[str, Any]:
    """Validate and shape one consultation note."""
    content = (content or "").strip()
    if not NOTE_MIN_LENGTH <= len(content) <= NOTE_MAX_LENGTH:
        raise ValidationError(
            f"Consultation notes must be between {NOTE_MIN_LENGTH} "
            f"and {NOTE_MAX_LENGTH} characters"
        )
    return {
        "content": content,
        "author_id": author_id,
        "author_role": author_role,
        "created_at": at.isoformat(),
    }


# Consent


def _guard_consent_approve(consent: ConsentRequest, ctx: TransitionContext) -> None:
    expires_at = ctx.get("expires_at")
    if expires_at is not None and is_past(expires_at, ctx.at):
        raise ValidationError("Consent expiry must be in the future")


def _guard_consent_expire(consent: ConsentRequest, ctx: TransitionContext) -> None:
    if not ctx.actor.is_system:
        raise InvalidTransitionError("Consent expiry is applied automatically")
    if not is_past(consent.expires_at, ctx.at):
        raise InvalidTransitionError("Consent has not reached its expiry")


def _stamp_consent_response(consent: ConsentRequest, ctx: TransitionContext) -> None:
    consent.responded_at = ctx.at
    if ctx.get("notes") is not None:
        consent.notes = ctx.get("notes")
    if ctx.to_status == ConsentStatus.APPROVED.value:
        consent.expires_at = ctx.get("expires_at")


def _stamp_consent_revoked(consent: ConsentRequest, ctx: TransitionContext) -> None:
    consent.revoked_at = ctx.at


CONSENT_TABLE = TransitionTable(
    "consent",
    edges={
        ConsentStatus.PENDING: {ConsentStatus.APPROVED, ConsentStatus.REJECTED},
        ConsentStatus.APPROVED: {ConsentStatus.REVOKED, ConsentStatus.EXPIRED},
    },
    guards={
        ConsentStatus.APPROVED: _guard_consent_approve,
        ConsentStatus.EXPIRED: _guard_consent_expire,
    },
    effects={
        ConsentStatus.APPROVED: _stamp_consent_response,
        ConsentStatus.REJECTED: _stamp_consent_response,
        ConsentStatus.REVOKED: _stamp_consent_revoked,
    },
    messages={
        ConsentStatus.APPROVED: "Cannot approve consent with status: {current}",
        ConsentStatus.REJECTED: "Cannot reject consent with status: {current}",
        ConsentStatus.REVOKED: "Only approved consents can be revoked",
    },
)


# Referral


def _stamp_referral_accepted(referral: Referral, ctx: TransitionContext) -> None:
    referral.accepted_at = ctx.at
    if ctx.get("notes"):
        referral.notes = ctx.get("notes")


def _stamp_referral_completed(referral: Referral, ctx: TransitionContext) -> None:
    referral.completed_at = ctx.at


def _stamp_referral_rejected(referral: Referral, ctx: TransitionContext) -> None:
    referral.rejected_at = ctx.at
    referral.rejection_reason = ctx.get("reason")


def _stamp_referral_cancelled(referral: Referral, ctx: TransitionContext) -> None:
    referral.cancelled_at = ctx.at
    referral.cancelled_by = ctx.actor.id
    referral.cancellation_reason = ctx.get("reason")


REFERRAL_TABLE = TransitionTable(
    "referral",
    edges={
        ReferralStatus.PENDING: {
            ReferralStatus.ACCEPTED,
            ReferralStatus.REJECTED,
            ReferralStatus.CANCELLED,
        },
        ReferralStatus.ACCEPTED: {ReferralStatus.COMPLETED, ReferralStatus.CANCELLED},
    },
    effects={
        ReferralStatus.ACCEPTED: _stamp_referral_accepted,
        ReferralStatus.COMPLETED: _stamp_referral_completed,
        ReferralStatus.REJECTED: _stamp_referral_rejected,
        ReferralStatus.CANCELLED: _stamp_referral_cancelled,
    },
    messages={
        ReferralStatus.ACCEPTED: "Only pending referrals can be accepted",
        ReferralStatus.REJECTED: "Only pending referrals can be rejected",
        ReferralStatus.COMPLETED: "Only accepted referrals can be completed",
        ReferralStatus.CANCELLED: "Only pending or accepted referrals can be cancelled",
    },
)


# Consultation


def _guard_consultation_complete(consultation: Consultation, ctx: TransitionContext) -> None:
    notes = ctx.get("notes")
    if not notes or not str(notes).strip():
        raise ValidationError("Notes are required when completing a consultation")
    # Shape check only; the entry is built in the effect
    build_note_entry(notes, ctx.actor.id, ParticipantRole.DOCTOR.value, ctx.at)


def _guard_consultation_no_show(consultation: Consultation, ctx: TransitionContext) -> None:
    if ctx.get("notes"):
        build_note_entry(ctx.get("notes"), ctx.actor.id, ParticipantRole.DOCTOR.value, ctx.at)


def _close_call(consultation: Consultation, at: datetime) -> None:
    consultation.ended_at = at
    if consultation.started_at is not None:
        consultation.duration_minutes = minutes_between(consultation.started_at, at)


def _stamp_consultation_started(consultation: Consultation, ctx: TransitionContext) -> None:
    consultation.started_at = ctx.at


def _stamp_consultation_completed(consultation: Consultation, ctx: TransitionContext) -> None:
    _close_call(consultation, ctx.at)
    note = build_note_entry(ctx.get("notes"), ctx.actor.id, ParticipantRole.DOCTOR.value, ctx.at)
    consultation.notes = [*(consultation.notes or []), note]
    if ctx.get("diagnosis") is not None:
        consultation.diagnosis = ctx.get("diagnosis")
    consultation.follow_up_required = bool(ctx.get("follow_up_required", False))
    consultation.follow_up_date = ctx.get("follow_up_date")


def _stamp_consultation_cancelled(consultation: Consultation, ctx: TransitionContext) -> None:
    if ctx.from_status == ConsultationStatus.IN_PROGRESS.value:
        _close_call(consultation, ctx.at)
    consultation.cancelled_at = ctx.at
    consultation.cancelled_by = ctx.actor.id
    consultation.cancellation_reason = ctx.get("reason")


def _stamp_consultation_no_show(consultation: Consultation, ctx: TransitionContext) -> None:
    if ctx.get("notes"):
        note = build_note_entry(
            ctx.get("notes"), ctx.actor.id, ParticipantRole.DOCTOR.value, ctx.at
        )
        consultation.notes = [*(consultation.notes or []), note]


CONSULTATION_TABLE = TransitionTable(
    "consultation",
    edges={
        ConsultationStatus.SCHEDULED: {
            ConsultationStatus.IN_PROGRESS,
            ConsultationStatus.CANCELLED,
            ConsultationStatus.NO_SHOW,
        },
        ConsultationStatus.IN_PROGRESS: {
            ConsultationStatus.COMPLETED,
            ConsultationStatus.CANCELLED,
        },
    },
    guards={
        ConsultationStatus.COMPLETED: _guard_consultation_complete,
        ConsultationStatus.NO_SHOW: _guard_consultation_no_show,
    },
    effects={
        ConsultationStatus.IN_PROGRESS: _stamp_consultation_started,
        ConsultationStatus.COMPLETED: _stamp_consultation_completed,
        ConsultationStatus.CANCELLED: _stamp_consultation_cancelled,
        ConsultationStatus.NO_SHOW: _stamp_consultation_no_show,
    },
    messages={
        ConsultationStatus.IN_PROGRESS: "Only scheduled consultations can be started",
        ConsultationStatus.COMPLETED: "Only in-progress consultations can be completed",
        ConsultationStatus.CANCELLED: (
            "Only scheduled or in-progress consultations can be cancelled"
        ),
        ConsultationStatus.NO_SHOW: "Only scheduled consultations can be marked as no-show",
    },
)


# Prescription


def _guard_prescription_fulfill(prescription: Prescription, ctx: TransitionContext) -> None:
    if not prescription.pharmacy_id:
        raise ValidationError("This prescription does not have a pharmacy assigned")


def _stamp_prescription_fulfilled(prescription: Prescription, ctx: TransitionContext) -> None:
    prescription.fulfilled_at = ctx.at
    prescription.fulfilled_by = ctx.actor.id


def _stamp_prescription_cancelled(prescription: Prescription, ctx: TransitionContext) -> None:
    prescription.cancelled_at = ctx.at
    prescription.cancelled_by = ctx.actor.id
    prescription.cancellation_reason = ctx.get("reason")


PRESCRIPTION_TABLE = TransitionTable(
    "prescription",
    edges={
        PrescriptionStatus.PENDING: {PrescriptionStatus.FULFILLED, PrescriptionStatus.CANCELLED},
    },
    guards={PrescriptionStatus.FULFILLED: _guard_prescription_fulfill},
    effects={
        PrescriptionStatus.FULFILLED: _stamp_prescription_fulfilled,
        PrescriptionStatus.CANCELLED: _stamp_prescription_cancelled,
    },
    messages={
        PrescriptionStatus.FULFILLED: "Only pending prescriptions can be fulfilled",
        PrescriptionStatus.CANCELLED: "Only pending prescriptions can be cancelled",
    },
)


# Invoice


def _guard_invoice_paid(invoice: Invoice, ctx: TransitionContext) -> None:
    if not (ctx.get("settlement_reference") or "").strip():
        raise ValidationError("A settlement reference is required to mark an invoice as paid")


def _stamp_invoice_paid(invoice: Invoice, ctx: TransitionContext) -> None:
    invoice.paid_at = ctx.at
    invoice.settlement_reference = ctx.get("settlement_reference").strip()
    invoice.payment_method = ctx.get("payment_method")
    invoice.payment_status = PaymentStatus.SUCCESS.value


def _stamp_invoice_cancelled(invoice: Invoice, ctx: TransitionContext) -> None:
    invoice.cancelled_at = ctx.at
    invoice.cancelled_by = ctx.actor.id
    reason = ctx.get("reason")
    if reason:
        line = f"Cancellation: {reason}"
        invoice.notes = f"{invoice.notes}\n{line}" if invoice.notes else line


INVOICE_TABLE = TransitionTable(
    "invoice",
    edges={
        InvoiceStatus.DRAFT: {InvoiceStatus.ISSUED},
        InvoiceStatus.ISSUED: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    },
    guards={InvoiceStatus.PAID: _guard_invoice_paid},
    effects={
        InvoiceStatus.PAID: _stamp_invoice_paid,
        InvoiceStatus.CANCELLED: _stamp_invoice_cancelled,
    },
    messages={
        InvoiceStatus.ISSUED: "Invoice has already been issued",
        InvoiceStatus.PAID: "Cannot mark an invoice with status {current} as paid",
        InvoiceStatus.CANCELLED: "Cannot cancel an invoice with status: {current}",
    },
    restricted={
        InvoiceStatus.PAID: (
            "Cannot set status to PAID directly. Use the payment confirmation operation instead."
        ),
    },
)


# Payment


def _guard_payment_success(payment: Payment, ctx: TransitionContext) -> None:
    if not ctx.get("gateway_payment_id"):
        raise ValidationError("A gateway payment id is required to mark a payment as paid")


def _guard_payment_refund(payment: Payment, ctx: TransitionContext) -> None:
    refund_amount = ctx.get("refund_amount")
    if not isinstance(refund_amount, int) or isinstance(refund_amount, bool):
        raise ValidationError("Refund amount must be an integer in minor units")
    if refund_amount <= 0 or refund_amount > payment.amount:
        raise ValidationError("Refund amount must be positive and not exceed the paid amount")


def _stamp_payment_success(payment: Payment, ctx: TransitionContext) -> None:
    payment.gateway_payment_id = ctx.get("gateway_payment_id")
    payment.method = ctx.get("method")
    payment.signature = ctx.get("signature")
    payment.paid_at = ctx.at


def _stamp_payment_failed(payment: Payment, ctx: TransitionContext) -> None:
    payment.failed_at = ctx.at
    payment.failure_reason = ctx.get("reason")


def _stamp_payment_refunded(payment: Payment, ctx: TransitionContext) -> None:
    payment.refund_id = ctx.get("refund_id")
    payment.refund_amount = ctx.get("refund_amount")
    payment.refund_status = RefundStatus.PROCESSED.value
    payment.refunded_at = ctx.at


_PAYMENT_ONLY_VIA_LEDGER = "Payment status can only change through payment settlement operations"

PAYMENT_TABLE = TransitionTable(
    "payment",
    edges={
        PaymentStatus.PENDING: {PaymentStatus.SUCCESS, PaymentStatus.FAILED},
        PaymentStatus.FAILED: {PaymentStatus.SUCCESS},
        PaymentStatus.SUCCESS: {PaymentStatus.REFUNDED},
    },
    guards={
        PaymentStatus.SUCCESS: _guard_payment_success,
        PaymentStatus.REFUNDED: _guard_payment_refund,
    },
    effects={
        PaymentStatus.SUCCESS: _stamp_payment_success,
        PaymentStatus.FAILED: _stamp_payment_failed,
        PaymentStatus.REFUNDED: _stamp_payment_refunded,
    },
    messages={
        PaymentStatus.SUCCESS: "Cannot mark a payment with status {current} as paid",
        PaymentStatus.FAILED: "Only pending payments can be marked as failed",
        PaymentStatus.REFUNDED: "Only successful payments can be refunded",
    },
    restricted={
        PaymentStatus.SUCCESS: _PAYMENT_ONLY_VIA_LEDGER,
        PaymentStatus.FAILED: _PAYMENT_ONLY_VIA_LEDGER,
        PaymentStatus.REFUNDED: _PAYMENT_ONLY_VIA_LEDGER,
    },
)


CONSENT_ENGINE = TransitionEngine(CONSENT_TABLE)
REFERRAL_ENGINE = TransitionEngine(REFERRAL_TABLE)
CONSULTATION_ENGINE = TransitionEngine(CONSULTATION_TABLE)
PRESCRIPTION_ENGINE = TransitionEngine(PRESCRIPTION_TABLE)
INVOICE_ENGINE = TransitionEngine(INVOICE_TABLE)
PAYMENT_ENGINE = TransitionEngine(PAYMENT_TABLE)
