"""Payment endpoints."""

from fastapi import APIRouter, status

from carelink.api.deps import CurrentActor, DbSession, Verifier
from carelink.models.payment import Payment
from carelink.schemas.payment import PaymentConfirm, PaymentCreate, PaymentFail, PaymentRead, PaymentRefund
from carelink.services.payment import PaymentService

router = APIRouter()


@router.post("", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreate,
    actor: CurrentActor,
    session: DbSession,
) -> Payment:
    """Open a payment order; an open order for the same parent is reused."""
    return await PaymentService(session).create_payment(
        actor,
        amount=body.amount,
        booking_id=body.booking_id,
        prescription_id=body.prescription_id,
        order_id=body.order_id,
    )


@router.get("/{order_id}", response_model=PaymentRead)
async def get_payment(order_id: str, actor: CurrentActor, session: DbSession) -> Payment:
    return await PaymentService(session).get_payment(actor, order_id)


@router.post("/{order_id}/confirm", response_model=PaymentRead)
async def confirm_payment(
    order_id: str,
    body: PaymentConfirm,
    actor: CurrentActor,
    session: DbSession,
    verifier: Verifier,
) -> Payment:
    """Record a successful gateway payment and settle what it pays for."""
    return await PaymentService(session, verifier=verifier).confirm_payment(
        actor, order_id, body.payment_id, method=body.method, signature=body.signature
    )


@router.post("/{order_id}/fail", response_model=PaymentRead)
async def fail_payment(
    order_id: str,
    body: PaymentFail,
    actor: CurrentActor,
    session: DbSession,
) -> Payment:
    return await PaymentService(session).mark_failed(actor, order_id, reason=body.reason)


@router.post("/{order_id}/refund", response_model=PaymentRead)
async def refund_payment(
    order_id: str,
    body: PaymentRefund,
    actor: CurrentActor,
    session: DbSession,
) -> Payment:
    return await PaymentService(session).mark_refunded(
        actor, order_id, body.refund_id, body.refund_amount
    )
