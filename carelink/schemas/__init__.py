"""Pydantic schemas for request/response validation."""

from carelink.schemas.billing import InvoiceCreate, InvoiceRead
from carelink.schemas.consent import ConsentRequestCreate, ConsentRequestRead
from carelink.schemas.consultation import ConsultationCreate, ConsultationRead
from carelink.schemas.payment import PaymentCreate, PaymentRead
from carelink.schemas.prescription import PrescriptionCreate, PrescriptionRead
from carelink.schemas.referral import ReferralCreate, ReferralRead
from carelink.schemas.timeline import PatientHistoryRead

__all__ = [
    "ConsentRequestCreate",
    "ConsentRequestRead",
    "ReferralCreate",
    "ReferralRead",
    "ConsultationCreate",
    "ConsultationRead",
    "PrescriptionCreate",
    "PrescriptionRead",
    "InvoiceCreate",
    "InvoiceRead",
    "PaymentCreate",
    "PaymentRead",
    "PatientHistoryRead",
]
