"""Invoice totals and payment linkage rules.

Money is handled as ``Decimal`` in major units for invoices and as an
integer count of minor units (cents, paise) for payments.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from carelink.core.config import Settings
from carelink.core.exceptions import ConflictError, NotFoundError, ValidationError
from carelink.models.booking import Booking
from carelink.models.invoice import Invoice
from carelink.models.payment import Payment, PaymentStatus
from carelink.models.prescription import Prescription
from carelink.workflow.actors import Actor
from carelink.workflow.lifecycles import PAYMENT_ENGINE
from carelink.workflow.limits import TAX_RATE_MAX, TAX_RATE_MIN
from carelink.workflow.transitions import StatusChange

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger settings injected at construction."""

    currency: str = "INR"
    minor_units_per_major: int = 100
    tolerate_legacy_parent_charge: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerConfig":
        return cls(
            currency=settings.currency,
            minor_units_per_major=settings.minor_units_per_major,
            tolerate_legacy_parent_charge=settings.payment_tolerate_legacy_parent_charge,
        )


@dataclass(frozen=True)
class InvoiceTotals:
    """Normalized line items and taxes with their derived totals."""

    items: list[dict[str, Any]] = field(default_factory=list)
    tax_details: list[dict[str, Any]] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    total_tax: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")


def _decimal(value: Any, label: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{label} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{label} must be a finite number")
    return number


def _quantity(value: Any) -> int:
    number = _decimal(value if value is not None else 1, "Item quantity")
    if number != number.to_integral_value() or number < 1:
        raise ValidationError("Item quantity must be a whole number of at least 1")
    return int(number)


def _money(value: Decimal) -> float:
    """JSON-friendly representation of a cent-rounded amount."""
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def recompute_invoice_totals(
    items: Sequence[dict[str, Any]],
    tax_details: Sequence[dict[str, Any]] = (),
) -> InvoiceTotals:
    """Derive every invoice total from its items and taxes.

    Caller-supplied ``total_price``, ``tax_amount`` and totals are
    ignored. Each tax applies to the subtotal.

    Examples:
        >>> totals = recompute_invoice_totals(
        ...     [{"item_type": "CONSULTATION", "description": "Visit", "quantity": 2, "unit_price": 500}],
        ...     [{"tax_type": "GST", "tax_rate": 18}],
        ... )
        >>> (totals.subtotal, totals.total_tax, totals.total_amount)
        (Decimal('1000.00'), Decimal('180.00'), Decimal('1180.00'))
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("Invoice items must be a list")
    if not isinstance(tax_details, (list, tuple)):
        raise ValidationError("Invoice tax details must be a list")

    normalized_items = []
    subtotal = Decimal("0.00")
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each invoice item must be an object")
        quantity = _quantity(item.get("quantity"))
        unit_price = _decimal(item.get("unit_price"), "Item unit price")
        if unit_price < 0:
            raise ValidationError("Item unit price cannot be negative")
        total_price = (unit_price * quantity).quantize(CENT, rounding=ROUND_HALF_UP)
        subtotal += total_price
        normalized_items.append(
            {
                "item_type": item.get("item_type"),
                "description": item.get("description"),
                "quantity": quantity,
                "unit_price": _money(unit_price),
                "total_price": _money(total_price),
            }
        )

    normalized_taxes = []
    total_tax = Decimal("0.00")
    for tax in tax_details:
        if not isinstance(tax, dict):
            raise ValidationError("Each tax entry must be an object")
        rate = _decimal(tax.get("tax_rate"), "Tax rate")
        if not TAX_RATE_MIN <= rate <= TAX_RATE_MAX:
            raise ValidationError(f"Tax rate must be between {TAX_RATE_MIN} and {TAX_RATE_MAX}")
        amount = (subtotal * rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)
        total_tax += amount
        normalized_taxes.append(
            {
                "tax_type": tax.get("tax_type"),
                "tax_rate": float(rate),
                "tax_amount": _money(amount),
            }
        )

    subtotal = subtotal.quantize(CENT)
    total_tax = total_tax.quantize(CENT)
    return InvoiceTotals(
        items=normalized_items,
        tax_details=normalized_taxes,
        subtotal=subtotal,
        total_tax=total_tax,
        total_amount=subtotal + total_tax,
    )


class LedgerReconciler:
    """Invoice total and payment linkage checks."""

    def __init__(self, config: Optional[LedgerConfig] = None) -> None:
        self.config = config or LedgerConfig()

    # Invoices

    def recompute_invoice_totals(
        self,
        items: Sequence[dict[str, Any]],
        tax_details: Sequence[dict[str, Any]] = (),
    ) -> InvoiceTotals:
        return recompute_invoice_totals(items, tax_details)

    def apply_invoice_totals(
        self,
        invoice: Invoice,
        items: Optional[Sequence[dict[str, Any]]] = None,
        tax_details: Optional[Sequence[dict[str, Any]]] = None,
    ) -> InvoiceTotals:
        """Replace items/taxes (when given) and rewrite every total."""
        totals = recompute_invoice_totals(
            items if items is not None else (invoice.items or []),
            tax_details if tax_details is not None else (invoice.tax_details or []),
        )
        invoice.items = totals.items
        invoice.tax_details = totals.tax_details
        invoice.subtotal = totals.subtotal
        invoice.total_tax = totals.total_tax
        invoice.total_amount = totals.total_amount
        return totals

    # Payments

    def to_minor_units(self, major_amount: Any) -> int:
        """Convert a major-unit amount to minor units, rounding half up."""
        amount = _decimal(major_amount, "Amount")
        minor = (amount * self.config.minor_units_per_major).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return int(minor)

    @staticmethod
    def is_valid_charge(value: Any) -> bool:
        """True for a finite, non-negative number."""
        if value is None or isinstance(value, bool):
            return False
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return False
        return number.is_finite() and number >= 0

    @staticmethod
    def check_single_parent(booking_id: Optional[str], prescription_id: Optional[str]) -> None:
        if booking_id and prescription_id:
            raise ConflictError("A payment cannot reference both a booking and a prescription")
        if not booking_id and not prescription_id:
            raise ConflictError("Either a booking or a prescription must be provided")

    def validate_payment_link(
        self,
        payment: Payment,
        booking: Optional[Booking] = None,
        prescription: Optional[Prescription] = None,
    ) -> None:
        """Check parent linkage and that the amount matches the parent charge."""
        self.check_single_parent(payment.booking_id, payment.prescription_id)

        amount = payment.amount
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise ValidationError("Payment amount must be a non-negative integer in minor units")

        if payment.booking_id:
            if booking is None or booking.id != payment.booking_id:
                raise NotFoundError("Booking not found")
            parent_label = "booking"
            charge = booking.payment_amount
        else:
            if prescription is None or prescription.id != payment.prescription_id:
                raise NotFoundError("Prescription not found")
            parent_label = "prescription"
            charge = prescription.total_amount

        if not self.is_valid_charge(charge):
            if self.config.tolerate_legacy_parent_charge:
                logger.warning(
                    f"Skipping amount check for payment {payment.order_id}: "
                    f"{parent_label} has no valid charge ({charge!r})"
                )
                return
            raise ConflictError(f"Linked {parent_label} has no valid charge to pay against")

        expected = self.to_minor_units(charge)
        if amount != expected:
            raise ConflictError(
                f"Payment amount ({amount} minor units) does not match {parent_label} "
                f"amount ({expected} minor units = {charge} {self.config.currency})"
            )

    # The only ways a payment status moves

    def mark_paid(
        self,
        payment: Payment,
        actor: Actor,
        gateway_payment_id: str,
        method: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> StatusChange:
        return PAYMENT_ENGINE.apply(
            payment,
            PaymentStatus.SUCCESS,
            actor,
            dedicated=True,
            gateway_payment_id=gateway_payment_id,
            method=method,
            signature=signature,
        )

    def mark_failed(self, payment: Payment, actor: Actor, reason: Optional[str] = None) -> StatusChange:
        return PAYMENT_ENGINE.apply(
            payment, PaymentStatus.FAILED, actor, dedicated=True, reason=reason
        )

    def mark_refunded(
        self,
        payment: Payment,
        actor: Actor,
        refund_id: str,
        refund_amount: int,
    ) -> StatusChange:
        return PAYMENT_ENGINE.apply(
            payment,
            PaymentStatus.REFUNDED,
            actor,
            dedicated=True,
            refund_id=refund_id,
            refund_amount=refund_amount,
        )
