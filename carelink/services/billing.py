"""Invoice service.

Invoices are issued on creation. Totals always come from
``LedgerReconciler``; PAID is reachable only through
``mark_invoice_paid`` or a confirmed payment.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.config import settings
from carelink.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.invoice import Invoice, InvoicePaymentMethod, InvoiceStatus
from carelink.models.payment import PaymentStatus
from carelink.models.prescription import Prescription, PrescriptionStatus
from carelink.models.user import UserRole
from carelink.services.audit import write_audit_event
from carelink.services.identity import BookingStore, IdentityDirectory
from carelink.services.prescription import fulfill_for_settlement
from carelink.utils.time import ensure_utc, utc_now
from carelink.workflow.actors import Actor
from carelink.workflow.identifiers import IdentifierKind, new_identifier
from carelink.workflow.ledger import LedgerConfig, LedgerReconciler
from carelink.workflow.lifecycles import INVOICE_ENGINE
from carelink.workflow.limits import SHORT_NOTES_MAX_LENGTH
from carelink.workflow.snapshots import snapshot_patient, snapshot_provider
from carelink.workflow.transitions import StatusChange

OPEN_INVOICE_STATUSES = (InvoiceStatus.ISSUED.value, InvoiceStatus.PAID.value)


async def settle_invoice(
    session: AsyncSession,
    invoice: Invoice,
    actor: Actor,
    settlement_reference: str,
    payment_method: str,
) -> StatusChange:
    """Mark an invoice PAID inside the caller's unit of work."""
    change = INVOICE_ENGINE.apply(
        invoice,
        InvoiceStatus.PAID,
        actor,
        dedicated=True,
        settlement_reference=settlement_reference,
        payment_method=getattr(payment_method, "value", payment_method),
    )
    await write_audit_event(
        session=session,
        actor=actor,
        action="invoice.paid",
        entity_type="invoice",
        entity_id=invoice.id,
        metadata={
            "reference_number": invoice.reference_number,
            "payment_method": invoice.payment_method,
            **change.as_metadata(),
        },
    )
    return change


class BillingService:
    """Service for provider invoices."""

    def __init__(self, session: AsyncSession, ledger: Optional[LedgerReconciler] = None) -> None:
        self.session = session
        self.ledger = ledger or LedgerReconciler(LedgerConfig.from_settings(settings))
        self.identity = IdentityDirectory(session)
        self.bookings = BookingStore(session)

    async def _get(self, reference_number: str) -> Invoice:
        result = await self.session.execute(
            select(Invoice).where(Invoice.reference_number == reference_number)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError(f"Invoice not found: {reference_number}")
        return invoice

    async def _get_prescription(self, prescription_id: Optional[str]) -> Optional[Prescription]:
        if not prescription_id:
            return None
        result = await self.session.execute(
            select(Prescription).where(Prescription.id == prescription_id)
        )
        return result.scalar_one_or_none()

    async def _get_as_provider(self, actor: Actor, reference_number: str) -> Invoice:
        invoice = await self._get(reference_number)
        if actor.id != invoice.provider_id and not actor.has_role(UserRole.ADMIN):
            raise AuthorizationError("Only the issuing provider can modify this invoice")
        return invoice

    async def get_invoice(self, actor: Actor, reference_number: str) -> Invoice:
        invoice = await self._get(reference_number)
        if actor.id not in (invoice.provider_id, invoice.patient_id) and not actor.has_role(
            UserRole.ADMIN
        ):
            raise AuthorizationError("You do not have access to this invoice")
        return invoice

    async def _ensure_no_open_invoice(self, column: Any, parent_id: str, label: str) -> None:
        result = await self.session.execute(
            select(Invoice.id).where(column == parent_id, Invoice.status.in_(OPEN_INVOICE_STATUSES))
        )
        if result.first() is not None:
            raise ConflictError(f"An open invoice already exists for this {label}")

    async def generate_invoice(
        self,
        actor: Actor,
        items: list[dict[str, Any]],
        tax_details: Optional[list[dict[str, Any]]] = None,
        booking_id: Optional[str] = None,
        prescription_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        due_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> Invoice:
        """Issue an invoice for a provider's booking, prescription or ad hoc service."""
        if actor.has_role(UserRole.ADMIN):
            if not provider_id:
                raise ValidationError("A provider is required when an admin generates an invoice")
        else:
            if provider_id and provider_id != actor.id:
                raise AuthorizationError("Providers can only invoice on their own behalf")
            provider_id = actor.id

        provider = await self.identity.require_user(provider_id, label="Provider")
        if not provider.is_provider:
            raise AuthorizationError("Only providers can generate invoices")

        if booking_id and prescription_id:
            raise ConflictError("An invoice cannot reference both a booking and a prescription")
        if not items:
            raise ValidationError("At least one invoice item is required")
        if notes is not None and len(notes) > SHORT_NOTES_MAX_LENGTH:
            raise ValidationError(f"Notes cannot exceed {SHORT_NOTES_MAX_LENGTH} characters")

        prescription = None
        if booking_id:
            booking = await self.bookings.get_booking(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.provider_id != provider.id:
                raise AuthorizationError("This booking does not belong to the provider")
            patient_id = self._parent_patient(patient_id, booking.patient_id)
            await self._ensure_no_open_invoice(Invoice.booking_id, booking_id, "booking")
        elif prescription_id:
            prescription = await self._get_prescription(prescription_id)
            if prescription is None:
                raise NotFoundError("Prescription not found")
            if prescription.pharmacy_id != provider.id:
                raise AuthorizationError("This prescription is not assigned to the provider")
            if prescription.status == PrescriptionStatus.CANCELLED.value:
                raise ValidationError("Cannot invoice a cancelled prescription")
            patient_id = self._parent_patient(patient_id, prescription.patient_id)
            await self._ensure_no_open_invoice(
                Invoice.prescription_id, prescription_id, "prescription"
            )

        patient = None
        if patient_id:
            patient = await self.identity.require_user(patient_id, UserRole.PATIENT, "Patient")

        invoice = Invoice(
            id=str(uuid.uuid4()),
            reference_number=new_identifier(IdentifierKind.INVOICE),
            provider_id=provider.id,
            patient_id=patient.id if patient else None,
            booking_id=booking_id,
            prescription_id=prescription_id,
            currency=self.ledger.config.currency,
            status=InvoiceStatus.DRAFT.value,
            payment_status=PaymentStatus.PENDING.value,
            invoice_date=utc_now(),
            due_date=ensure_utc(due_date),
            notes=notes,
            provider_snapshot=snapshot_provider(provider).to_dict(),
            patient_snapshot=snapshot_patient(patient).to_dict() if patient else None,
            created_by=actor.id,
        )
        self.ledger.apply_invoice_totals(invoice, items, tax_details or [])

        async def _issue(session: AsyncSession) -> None:
            session.add(invoice)
            change = INVOICE_ENGINE.apply(invoice, InvoiceStatus.ISSUED, actor)
            if prescription is not None:
                prescription.total_amount = invoice.total_amount
            await write_audit_event(
                session=session,
                actor=actor,
                action="invoice.issued",
                entity_type="invoice",
                entity_id=invoice.id,
                metadata={
                    "reference_number": invoice.reference_number,
                    "total_amount": str(invoice.total_amount),
                    **change.as_metadata(),
                },
            )

        await TransactionalUnitOfWork(self.session).run(_issue)
        return invoice

    @staticmethod
    def _parent_patient(requested: Optional[str], parent_patient: str) -> str:
        if requested and requested != parent_patient:
            raise ValidationError("Patient does not match the linked record")
        return parent_patient

    async def revise_invoice(
        self,
        actor: Actor,
        reference_number: str,
        items: Optional[list[dict[str, Any]]] = None,
        tax_details: Optional[list[dict[str, Any]]] = None,
    ) -> Invoice:
        """Replace items and/or taxes on an issued invoice; totals are recomputed."""
        invoice = await self._get_as_provider(actor, reference_number)
        if items is not None and not items:
            raise ValidationError("At least one invoice item is required")
        prescription = await self._get_prescription(invoice.prescription_id)

        async def _revise(session: AsyncSession) -> None:
            current = await lock_current_status(session, invoice)
            if current != InvoiceStatus.ISSUED.value:
                raise InvalidTransitionError(
                    "Only issued invoices can be revised", current_status=current
                )
            totals = self.ledger.apply_invoice_totals(invoice, items, tax_details)
            invoice.updated_by = actor.id
            if prescription is not None:
                prescription.total_amount = totals.total_amount
            await write_audit_event(
                session=session,
                actor=actor,
                action="invoice.revised",
                entity_type="invoice",
                entity_id=invoice.id,
                metadata={
                    "reference_number": invoice.reference_number,
                    "total_amount": str(totals.total_amount),
                },
            )

        await TransactionalUnitOfWork(self.session).run(_revise)
        return invoice

    async def mark_invoice_paid(
        self,
        actor: Actor,
        reference_number: str,
        settlement_reference: str,
        payment_method: str = InvoicePaymentMethod.MANUAL.value,
    ) -> Invoice:
        """Record an out-of-band settlement. The only direct path to PAID."""
        invoice = await self._get_as_provider(actor, reference_number)
        try:
            payment_method = InvoicePaymentMethod(getattr(payment_method, "value", payment_method))
        except ValueError:
            raise ValidationError(f"Invalid payment method: {payment_method}")
        prescription = await self._get_prescription(invoice.prescription_id)

        async def _settle(session: AsyncSession) -> None:
            await lock_current_status(session, invoice)
            await settle_invoice(
                session, invoice, actor, settlement_reference, payment_method.value
            )
            if prescription is not None:
                await fulfill_for_settlement(session, prescription, actor)

        await TransactionalUnitOfWork(self.session).run(_settle)
        return invoice

    async def cancel_invoice(
        self,
        actor: Actor,
        reference_number: str,
        reason: Optional[str] = None,
    ) -> Invoice:
        invoice = await self._get_as_provider(actor, reference_number)

        async def _cancel(session: AsyncSession) -> None:
            current = await lock_current_status(session, invoice)
            if current == InvoiceStatus.PAID.value:
                raise InvalidTransitionError("Cannot cancel a paid invoice", current_status=current)
            change = INVOICE_ENGINE.apply(invoice, InvoiceStatus.CANCELLED, actor, reason=reason)
            await write_audit_event(
                session=session,
                actor=actor,
                action="invoice.cancelled",
                entity_type="invoice",
                entity_id=invoice.id,
                metadata={"reference_number": invoice.reference_number, **change.as_metadata()},
            )

        await TransactionalUnitOfWork(self.session).run(_cancel)
        return invoice

    async def update_status(
        self,
        actor: Actor,
        reference_number: str,
        status: str,
        reason: Optional[str] = None,
    ) -> Invoice:
        """Generic status write. PAID is refused; use ``mark_invoice_paid``."""
        status = getattr(status, "value", status)
        if status == InvoiceStatus.CANCELLED.value:
            return await self.cancel_invoice(actor, reference_number, reason)

        invoice = await self._get_as_provider(actor, reference_number)
        INVOICE_ENGINE.check(invoice, status)
        raise InvalidTransitionError(
            f"Invoice status {status} can only be set by its dedicated operation"
        )
