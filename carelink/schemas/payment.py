"""Pydantic schemas for payments."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    """Schema for opening a payment order.

    ``amount`` is in minor currency units (paise, cents).
    """

    amount: int = Field(..., ge=0, examples=[118000])
    booking_id: Optional[str] = None
    prescription_id: Optional[str] = None
    order_id: Optional[str] = Field(default=None, max_length=64)


class PaymentConfirm(BaseModel):
    """Gateway result for a successful payment."""

    payment_id: str = Field(..., min_length=1, max_length=100)
    method: Optional[str] = Field(default=None, max_length=30)
    signature: Optional[str] = Field(default=None, max_length=255)


class PaymentFail(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class PaymentRefund(BaseModel):
    refund_id: str = Field(..., min_length=1, max_length=100)
    refund_amount: int = Field(..., gt=0)


class PaymentRead(BaseModel):
    """Schema for reading a payment."""

    id: str
    order_id: str
    gateway_payment_id: Optional[str] = None
    booking_id: Optional[str] = None
    prescription_id: Optional[str] = None
    payer_id: Optional[str] = None
    amount: int
    currency: str
    status: str
    method: Optional[str] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_status: Optional[str] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
