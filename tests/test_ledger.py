"""Tests for invoice totals and payment linkage checks."""

from decimal import Decimal

import pytest

from carelink.core.exceptions import ConflictError, NotFoundError, ValidationError
from carelink.models.booking import Booking
from carelink.models.payment import Payment
from carelink.models.prescription import Prescription
from carelink.workflow.ledger import LedgerConfig, LedgerReconciler, recompute_invoice_totals

ITEMS = [{"item_type": "CONSULTATION", "description": "Visit", "quantity": 2, "unit_price": 500}]
GST = [{"tax_type": "GST", "tax_rate": 18}]


class TestInvoiceTotals:
    def test_subtotal_tax_and_total(self) -> None:
        totals = recompute_invoice_totals(ITEMS, GST)

        assert totals.subtotal == Decimal("1000.00")
        assert totals.total_tax == Decimal("180.00")
        assert totals.total_amount == Decimal("1180.00")
        assert totals.items[0]["total_price"] == 1000.0
        assert totals.tax_details[0]["tax_amount"] == 180.0

    def test_caller_totals_are_ignored(self) -> None:
        items = [{**ITEMS[0], "total_price": 1}]
        taxes = [{**GST[0], "tax_amount": 1}]

        totals = recompute_invoice_totals(items, taxes)

        assert totals.total_amount == Decimal("1180.00")

    def test_recompute_is_idempotent(self) -> None:
        first = recompute_invoice_totals(ITEMS, GST)
        second = recompute_invoice_totals(first.items, first.tax_details)

        assert second == first

    def test_quantity_defaults_to_one(self) -> None:
        totals = recompute_invoice_totals([{"item_type": "X", "unit_price": "19.99"}])
        assert totals.items[0]["quantity"] == 1
        assert totals.total_amount == Decimal("19.99")

    def test_rounding_is_half_up(self) -> None:
        totals = recompute_invoice_totals(
            [{"item_type": "X", "unit_price": "10.05"}], [{"tax_type": "GST", "tax_rate": 5}]
        )
        # 10.05 * 5% = 0.5025 -> 0.50
        assert totals.total_tax == Decimal("0.50")
        assert totals.total_amount == Decimal("10.55")

    @pytest.mark.parametrize(
        "items, taxes",
        [
            ([{"item_type": "X", "unit_price": -1}], []),
            ([{"item_type": "X", "unit_price": 1, "quantity": 0}], []),
            ([{"item_type": "X", "unit_price": 1, "quantity": 1.5}], []),
            ([{"item_type": "X", "unit_price": "abc"}], []),
            ([{"item_type": "X", "unit_price": 1}], [{"tax_type": "GST", "tax_rate": 101}]),
            ("not a list", []),
        ],
    )
    def test_invalid_input_is_rejected(self, items, taxes) -> None:
        with pytest.raises(ValidationError):
            recompute_invoice_totals(items, taxes)


class TestPaymentLinkage:
    def setup_method(self) -> None:
        self.ledger = LedgerReconciler(LedgerConfig())
        self.booking = Booking(id="bk-1", payment_amount=Decimal("1180.00"))

    def _payment(self, amount: int, booking_id="bk-1", prescription_id=None) -> Payment:
        return Payment(
            order_id="ORD-1",
            amount=amount,
            booking_id=booking_id,
            prescription_id=prescription_id,
        )

    def test_to_minor_units(self) -> None:
        assert self.ledger.to_minor_units(Decimal("1180.00")) == 118000
        assert self.ledger.to_minor_units("0.005") == 1
        assert self.ledger.to_minor_units(0) == 0

    def test_matching_amount_passes(self) -> None:
        self.ledger.validate_payment_link(self._payment(118000), booking=self.booking)

    def test_mismatched_amount_is_conflict(self) -> None:
        with pytest.raises(ConflictError, match="does not match booking amount"):
            self.ledger.validate_payment_link(self._payment(118001), booking=self.booking)

    def test_both_parents_is_conflict(self) -> None:
        with pytest.raises(ConflictError, match="both"):
            self.ledger.check_single_parent("bk-1", "rx-1")

    def test_no_parent_is_conflict(self) -> None:
        with pytest.raises(ConflictError, match="Either"):
            self.ledger.check_single_parent(None, None)

    def test_parent_must_be_loaded(self) -> None:
        with pytest.raises(NotFoundError):
            self.ledger.validate_payment_link(self._payment(100), booking=None)

    def test_fractional_amount_is_rejected(self) -> None:
        payment = self._payment(100)
        payment.amount = 100.5
        with pytest.raises(ValidationError, match="integer"):
            self.ledger.validate_payment_link(payment, booking=self.booking)

    def test_legacy_charge_is_tolerated_by_default(self) -> None:
        legacy = Booking(id="bk-1", payment_amount=None)
        self.ledger.validate_payment_link(self._payment(999), booking=legacy)

    def test_legacy_charge_rejected_when_strict(self) -> None:
        strict = LedgerReconciler(LedgerConfig(tolerate_legacy_parent_charge=False))
        legacy = Booking(id="bk-1", payment_amount=None)

        with pytest.raises(ConflictError, match="no valid charge"):
            strict.validate_payment_link(self._payment(999), booking=legacy)

    def test_prescription_charge_uses_total_amount(self) -> None:
        prescription = Prescription(id="rx-1", total_amount=Decimal("45.50"))
        payment = self._payment(4550, booking_id=None, prescription_id="rx-1")

        self.ledger.validate_payment_link(payment, prescription=prescription)

    @pytest.mark.parametrize("value", [None, True, "abc", "-1", "NaN", "Infinity"])
    def test_invalid_charges(self, value) -> None:
        assert not LedgerReconciler.is_valid_charge(value)
