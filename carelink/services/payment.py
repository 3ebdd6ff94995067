"""Payment service.

Patients open payment orders against a booking or a prescription. The
gateway result arrives through ``confirm_payment`` / ``mark_failed``;
confirmation cascades settlement onto the booking, prescription and
invoice in the same unit of work.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.config import settings
from carelink.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.invoice import Invoice, InvoicePaymentMethod, InvoiceStatus
from carelink.models.payment import Payment, PaymentStatus
from carelink.models.prescription import Prescription, PrescriptionStatus
from carelink.models.user import UserRole
from carelink.services.audit import write_audit_event
from carelink.services.billing import settle_invoice
from carelink.services.gateway import PaymentVerifier, payment_verifier_from_settings
from carelink.services.identity import BookingStore
from carelink.services.prescription import fulfill_for_settlement
from carelink.workflow.actors import Actor
from carelink.workflow.identifiers import IdentifierKind, new_identifier
from carelink.workflow.ledger import LedgerConfig, LedgerReconciler

logger = logging.getLogger(__name__)

# Bookings in these states never take a new order
SETTLED_BOOKING_STATUSES = (PaymentStatus.SUCCESS.value, PaymentStatus.REFUNDED.value)


class PaymentService:
    """Service for gateway payments."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: Optional[LedgerReconciler] = None,
        verifier: Optional[PaymentVerifier] = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or LedgerReconciler(LedgerConfig.from_settings(settings))
        self.verifier = verifier or payment_verifier_from_settings(settings)
        self.bookings = BookingStore(session)

    async def _get(self, order_id: str) -> Payment:
        result = await self.session.execute(select(Payment).where(Payment.order_id == order_id))
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError(f"Payment not found: {order_id}")
        return payment

    async def _get_prescription(self, prescription_id: Optional[str]) -> Optional[Prescription]:
        if not prescription_id:
            return None
        result = await self.session.execute(
            select(Prescription).where(Prescription.id == prescription_id)
        )
        return result.scalar_one_or_none()

    async def _linked_invoice(self, payment: Payment) -> Optional[Invoice]:
        if payment.booking_id:
            condition = Invoice.booking_id == payment.booking_id
        else:
            condition = Invoice.prescription_id == payment.prescription_id
        result = await self.session.execute(
            select(Invoice)
            .where(condition, Invoice.status != InvoiceStatus.CANCELLED.value)
            .order_by(Invoice.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _require_payer(actor: Actor, payment: Payment) -> None:
        if actor.is_system or actor.has_role(UserRole.ADMIN):
            return
        if actor.id != payment.payer_id:
            raise AuthorizationError("You do not have access to this payment")

    async def get_payment(self, actor: Actor, order_id: str) -> Payment:
        payment = await self._get(order_id)
        self._require_payer(actor, payment)
        return payment

    async def create_payment(
        self,
        actor: Actor,
        amount: int,
        booking_id: Optional[str] = None,
        prescription_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Payment:
        """Open a payment order for the caller's booking or prescription.

        The amount is checked against the parent's charge first; only a
        matching request gets an already pending order for the same
        parent back.
        """
        self.ledger.check_single_parent(booking_id, prescription_id)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("Payment amount must be a non-negative integer in minor units")

        booking = None
        prescription = None
        if booking_id:
            booking = await self.bookings.get_booking(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            patient_id = booking.patient_id
        else:
            prescription = await self._get_prescription(prescription_id)
            if prescription is None:
                raise NotFoundError("Prescription not found")
            patient_id = prescription.patient_id

        if actor.id != patient_id and not actor.has_role(UserRole.ADMIN):
            raise AuthorizationError("You can only pay for your own bookings and prescriptions")

        if booking is not None and booking.payment_status in SETTLED_BOOKING_STATUSES:
            raise ConflictError(f"Booking payment is already {booking.payment_status}")
        if prescription is not None:
            if prescription.status != PrescriptionStatus.PENDING.value:
                raise ConflictError(
                    f"Cannot pay for a prescription with status: {prescription.status}"
                )
            if prescription.total_amount is None:
                raise ConflictError(
                    "Prescription has not been priced yet; the pharmacy must issue an invoice first"
                )

        payment = Payment(
            id=str(uuid.uuid4()),
            order_id=order_id or new_identifier(IdentifierKind.ORDER),
            booking_id=booking_id,
            prescription_id=prescription_id,
            payer_id=actor.id,
            amount=amount,
            currency=self.ledger.config.currency,
            status=PaymentStatus.PENDING.value,
            webhook_received=False,
            created_by=actor.id,
        )
        self.ledger.validate_payment_link(payment, booking, prescription)

        if booking_id:
            parent = Payment.booking_id == booking_id
        else:
            parent = Payment.prescription_id == prescription_id
        result = await self.session.execute(
            select(Payment)
            .where(parent, Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None and existing.amount == amount:
            logger.info(f"Reusing pending payment {existing.order_id}")
            return existing

        if order_id:
            clash = await self.session.execute(select(Payment.id).where(Payment.order_id == order_id))
            if clash.first() is not None:
                raise ConflictError(f"Order id already in use: {order_id}")

        async def _create(session: AsyncSession) -> None:
            session.add(payment)
            await write_audit_event(
                session=session,
                actor=actor,
                action="payment.created",
                entity_type="payment",
                entity_id=payment.id,
                metadata={"order_id": payment.order_id, "amount": payment.amount},
            )

        await TransactionalUnitOfWork(self.session).run(_create)
        return payment

    async def confirm_payment(
        self,
        actor: Actor,
        order_id: str,
        payment_id: str,
        method: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> Payment:
        """Mark a payment paid and settle everything linked to it.

        Confirming an already successful payment changes nothing. Otherwise
        the injected ``PaymentVerifier`` must accept the confirmation.
        """
        payment = await self._get(order_id)
        self._require_payer(actor, payment)
        if payment.status == PaymentStatus.SUCCESS.value:
            logger.info(f"Payment {order_id} already confirmed")
            return payment

        self.verifier.verify(payment.order_id, payment_id, signature)
        used = await self.session.execute(
            select(Payment.order_id).where(
                Payment.gateway_payment_id == payment_id, Payment.id != payment.id
            )
        )
        if used.first() is not None:
            raise ConflictError(f"Gateway payment id already recorded: {payment_id}")

        booking = await self.bookings.get_booking(payment.booking_id)
        prescription = await self._get_prescription(payment.prescription_id)
        invoice = await self._linked_invoice(payment)

        async def _confirm(session: AsyncSession) -> None:
            current = await lock_current_status(session, payment)
            if current == PaymentStatus.SUCCESS.value:
                return
            change = self.ledger.mark_paid(payment, actor, payment_id, method, signature)
            await write_audit_event(
                session=session,
                actor=actor,
                action="payment.success",
                entity_type="payment",
                entity_id=payment.id,
                metadata={"order_id": payment.order_id, **change.as_metadata()},
            )

            if booking is not None:
                booking.payment_status = PaymentStatus.SUCCESS.value
                booking.payment_reference = payment_id
            if prescription is not None:
                await fulfill_for_settlement(session, prescription, actor)
            if invoice is not None and invoice.status == InvoiceStatus.ISSUED.value:
                await settle_invoice(
                    session, invoice, actor, payment_id, InvoicePaymentMethod.ONLINE.value
                )

        await TransactionalUnitOfWork(self.session).run(_confirm)
        return payment

    async def mark_failed(
        self,
        actor: Actor,
        order_id: str,
        reason: Optional[str] = None,
    ) -> Payment:
        payment = await self._get(order_id)
        self._require_payer(actor, payment)
        booking = await self.bookings.get_booking(payment.booking_id)

        async def _fail(session: AsyncSession) -> None:
            await lock_current_status(session, payment)
            change = self.ledger.mark_failed(payment, actor, reason)
            if booking is not None:
                booking.payment_status = PaymentStatus.FAILED.value
            await write_audit_event(
                session=session,
                actor=actor,
                action="payment.failed",
                entity_type="payment",
                entity_id=payment.id,
                metadata={"order_id": payment.order_id, "reason": reason, **change.as_metadata()},
            )

        await TransactionalUnitOfWork(self.session).run(_fail)
        return payment

    async def mark_refunded(
        self,
        actor: Actor,
        order_id: str,
        refund_id: str,
        refund_amount: int,
    ) -> Payment:
        """Record a gateway refund. Admin or system only."""
        if not (actor.is_system or actor.has_role(UserRole.ADMIN)):
            raise AuthorizationError("Only administrators can record refunds")
        payment = await self._get(order_id)
        booking = await self.bookings.get_booking(payment.booking_id)
        invoice = await self._linked_invoice(payment)

        async def _refund(session: AsyncSession) -> None:
            await lock_current_status(session, payment)
            change = self.ledger.mark_refunded(payment, actor, refund_id, refund_amount)
            if booking is not None:
                booking.payment_status = PaymentStatus.REFUNDED.value
            if invoice is not None and invoice.status == InvoiceStatus.PAID.value:
                invoice.payment_status = PaymentStatus.REFUNDED.value
            await write_audit_event(
                session=session,
                actor=actor,
                action="payment.refunded",
                entity_type="payment",
                entity_id=payment.id,
                metadata={
                    "order_id": payment.order_id,
                    "refund_id": refund_id,
                    "refund_amount": refund_amount,
                    **change.as_metadata(),
                },
            )

        await TransactionalUnitOfWork(self.session).run(_refund)
        return payment
