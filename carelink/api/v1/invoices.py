"""Invoice endpoints."""

from fastapi import APIRouter, status

from carelink.api.deps import CurrentActor, DbSession
from carelink.models.invoice import Invoice
from carelink.schemas.billing import (
    InvoiceCancel,
    InvoiceCreate,
    InvoiceMarkPaid,
    InvoiceRead,
    InvoiceRevise,
    InvoiceStatusUpdate,
)
from carelink.services.billing import BillingService

router = APIRouter()


@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    body: InvoiceCreate,
    actor: CurrentActor,
    session: DbSession,
) -> Invoice:
    """Issue an invoice. Totals are derived from items and taxes."""
    return await BillingService(session).generate_invoice(
        actor,
        items=[item.model_dump() for item in body.items],
        tax_details=[tax.model_dump() for tax in body.tax_details],
        booking_id=body.booking_id,
        prescription_id=body.prescription_id,
        patient_id=body.patient_id,
        due_date=body.due_date,
        notes=body.notes,
        provider_id=body.provider_id,
    )


@router.get("/{reference_number}", response_model=InvoiceRead)
async def get_invoice(
    reference_number: str,
    actor: CurrentActor,
    session: DbSession,
) -> Invoice:
    return await BillingService(session).get_invoice(actor, reference_number)


@router.patch("/{reference_number}", response_model=InvoiceRead)
async def revise_invoice(
    reference_number: str,
    body: InvoiceRevise,
    actor: CurrentActor,
    session: DbSession,
) -> Invoice:
    return await BillingService(session).revise_invoice(
        actor,
        reference_number,
        items=[item.model_dump() for item in body.items] if body.items is not None else None,
        tax_details=(
            [tax.model_dump() for tax in body.tax_details]
            if body.tax_details is not None
            else None
        ),
    )


@router.post("/{reference_number}/mark-paid", response_model=InvoiceRead)
async def mark_invoice_paid(
    reference_number: str,
    body: InvoiceMarkPaid,
    actor: CurrentActor,
    session: DbSession,
) -> Invoice:
    """Record an out-of-band settlement."""
    return await BillingService(session).mark_invoice_paid(
        actor,
        reference_number,
        settlement_reference=body.settlement_reference,
        payment_method=body.payment_method,
    )


@router.post("/{reference_number}/cancel", response_model=InvoiceRead)
async def cancel_invoice(
    reference_number: str,
    body: InvoiceCancel,
    actor: CurrentActor,
    session: DbSession,
) -> Invoice:
    return await BillingService(session).cancel_invoice(actor, reference_number, body.reason)


@router.put("/{reference_number}/status", response_model=InvoiceRead)
async def update_invoice_status(
    reference_number: str,
    body: InvoiceStatusUpdate,
    actor: CurrentActor,
    session: DbSession,
) -> Invoice:
    """Generic status write. Setting PAID here is refused."""
    return await BillingService(session).update_status(
        actor, reference_number, body.status, reason=body.reason
    )
