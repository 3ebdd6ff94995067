"""Pydantic schemas for invoices."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from carelink.models.invoice import InvoicePaymentMethod
from carelink.workflow.limits import REASON_MAX_LENGTH, SHORT_NOTES_MAX_LENGTH, TAX_RATE_MAX, TAX_RATE_MIN


class InvoiceItem(BaseModel):
    """A line item. ``total_price`` is always derived."""

    item_type: str = Field(..., max_length=50, examples=["CONSULTATION"])
    description: Optional[str] = Field(default=None, max_length=500)
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(..., ge=0)


class InvoiceTax(BaseModel):
    """A tax applied to the subtotal. ``tax_amount`` is always derived."""

    tax_type: str = Field(..., max_length=50, examples=["GST"])
    tax_rate: Decimal = Field(..., ge=TAX_RATE_MIN, le=TAX_RATE_MAX)


class InvoiceCreate(BaseModel):
    """Schema for generating an invoice."""

    items: list[InvoiceItem] = Field(..., min_length=1)
    tax_details: list[InvoiceTax] = Field(default_factory=list)
    booking_id: Optional[str] = None
    prescription_id: Optional[str] = None
    patient_id: Optional[str] = None
    provider_id: Optional[str] = Field(
        default=None,
        description="Only used when an admin raises an invoice for a provider",
    )
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=SHORT_NOTES_MAX_LENGTH)


class InvoiceRevise(BaseModel):
    items: Optional[list[InvoiceItem]] = Field(default=None, min_length=1)
    tax_details: Optional[list[InvoiceTax]] = None


class InvoiceMarkPaid(BaseModel):
    settlement_reference: str = Field(..., min_length=1, max_length=100)
    payment_method: InvoicePaymentMethod = InvoicePaymentMethod.MANUAL


class InvoiceCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class InvoiceStatusUpdate(BaseModel):
    """Generic status write; PAID is refused."""

    status: str
    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class InvoiceRead(BaseModel):
    """Schema for reading an invoice."""

    id: str
    reference_number: str
    provider_id: str
    patient_id: Optional[str] = None
    booking_id: Optional[str] = None
    prescription_id: Optional[str] = None
    items: list[dict[str, Any]]
    tax_details: list[dict[str, Any]]
    subtotal: Decimal
    total_tax: Decimal
    total_amount: Decimal
    currency: str
    status: str
    payment_status: str
    settlement_reference: Optional[str] = None
    payment_method: Optional[str] = None
    invoice_date: datetime
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None
    provider_snapshot: Optional[dict[str, Any]] = None
    patient_snapshot: Optional[dict[str, Any]] = None

    model_config = {"from_attributes": True}
