"""Payment, subscription and refund endpoints.

Handlers are plain `def` so FastAPI runs the blocking gateway calls in its
threadpool. Errors are mapped to HTTP statuses by the app's handlers.
"""

from typing import Annotated

from fastapi import APIRouter, Path, status

from square_sync.api.dependencies import Bridge
from square_sync.api.schemas import (
    ErrorResponse,
    PaymentCreate,
    PaymentResponse,
    RecurringCreate,
    RecurringResponse,
    RefundCreate,
    RefundResponse,
    SyncResponse,
)
from square_sync.services.sync_engine import SyncResult

router = APIRouter(tags=["payments"])

ERRORS = {
    400: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _sync_response(result: SyncResult) -> SyncResponse:
    return SyncResponse(outcome=result.outcome.value, record_id=result.record_id, reason=result.reason)


@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
def create_payment(bridge: Bridge, payload: PaymentCreate) -> PaymentResponse:
    """Charge a card token once."""
    result = bridge.submit_payment(payload.to_request())
    return PaymentResponse(
        payment_id=result.payment_id,
        status=result.status.value,
        gateway_status=result.gateway_status,
        customer_id=result.customer_id,
    )


@router.post(
    "/recurring",
    response_model=RecurringResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
def create_recurring(bridge: Bridge, payload: RecurringCreate) -> RecurringResponse:
    """Create the gateway subscription for a recurring contribution."""
    result = bridge.submit_recurring(payload.to_request())
    return RecurringResponse(
        subscription_id=result.subscription_id,
        customer_id=result.customer_id,
        card_id=result.card_id,
        plan_variation_id=result.plan_variation_id,
        start_date=result.start_date,
        status=result.status.value,
    )


@router.post(
    "/refunds",
    response_model=RefundResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
def create_refund(bridge: Bridge, payload: RefundCreate) -> RefundResponse:
    """Refund part or all of a payment."""
    result = bridge.refund(payload.to_request())
    return RefundResponse(
        refund_id=result.refund.id or "",
        payment_id=result.refund.payment_id or payload.payment_id,
        status=result.refund.status,
        sync_outcome=result.sync.outcome.value,
    )


@router.post(
    "/subscriptions/{subscription_id}/cancel",
    response_model=SyncResponse,
    responses=ERRORS,
)
def cancel_subscription(
    bridge: Bridge,
    subscription_id: Annotated[str, Path(min_length=1)],
) -> SyncResponse:
    """Cancel at the gateway and mark the recurring contribution Cancelled."""
    return _sync_response(bridge.cancel_subscription(subscription_id))


@router.post(
    "/subscriptions/{subscription_id}/sync",
    response_model=SyncResponse,
    responses=ERRORS,
)
def sync_subscription(
    bridge: Bridge,
    subscription_id: Annotated[str, Path(min_length=1)],
) -> SyncResponse:
    """Pull the subscription from the gateway and reconcile it locally."""
    return _sync_response(bridge.sync_subscription(subscription_id))
