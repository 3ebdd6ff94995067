"""SQLAlchemy models."""

from carelink.models.audit_event import ActorType, AuditEvent
from carelink.models.booking import Booking, BookingStatus, BookingType
from carelink.models.consent import ConsentRequest, ConsentStatus
from carelink.models.consultation import (
    Consultation,
    ConsultationMode,
    ConsultationStatus,
    ParticipantRole,
)
from carelink.models.invoice import Invoice, InvoicePaymentMethod, InvoiceStatus
from carelink.models.payment import Payment, PaymentStatus, RefundStatus
from carelink.models.prescription import Prescription, PrescriptionStatus
from carelink.models.referral import (
    Referral,
    ReferralPriority,
    ReferralStatus,
    ReferralType,
)
from carelink.models.user import PROVIDER_ROLES, User, UserRole

__all__ = [
    "ActorType",
    "AuditEvent",
    "Booking",
    "BookingStatus",
    "BookingType",
    "ConsentRequest",
    "ConsentStatus",
    "Consultation",
    "ConsultationMode",
    "ConsultationStatus",
    "Invoice",
    "InvoicePaymentMethod",
    "InvoiceStatus",
    "ParticipantRole",
    "Payment",
    "PaymentStatus",
    "PROVIDER_ROLES",
    "Prescription",
    "PrescriptionStatus",
    "RefundStatus",
    "Referral",
    "ReferralPriority",
    "ReferralStatus",
    "ReferralType",
    "User",
    "UserRole",
]
