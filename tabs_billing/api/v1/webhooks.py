"""POST /v1/webhooks/payments - Normalized payment processor events"""

import logging

from fastapi import APIRouter, Depends, Request

from tabs_billing.api.dependencies import get_payment_event_service, get_request_id
from tabs_billing.api.v1.errors import to_http_exception
from tabs_billing.api.v1.schemas import PaymentEventRequest, PaymentEventResponse
from tabs_billing.services.payment_event_service import PaymentEvent, PaymentEventService

router = APIRouter()


@router.post("/webhooks/payments", response_model=PaymentEventResponse)
async def receive_payment_event(
    request_body: PaymentEventRequest,
    request: Request,
    service: PaymentEventService = Depends(get_payment_event_service),
):
    """
    Apply a processor event that the webhook transport has already verified.

    Flow:
    1. Success events mark the payment succeeded and credit its tab
    2. Group ids carried in the checkout metadata drive the allocation
    3. Full refunds debit the tab and reverse the allocation
    """
    request_id = get_request_id(request)
    event = PaymentEvent(
        type=request_body.type,
        event_id=request_body.id,
        payment_id=request_body.payment_id,
        processor_payment_id=request_body.processor_payment_id,
        metadata=request_body.metadata,
        fully_refunded=request_body.fully_refunded,
    )

    try:
        outcome = await service.handle(event)
    except Exception as e:
        logging.warning(
            f"Payment event failed: {e}",
            extra={"request_id": request_id, "event_type": event.type, "event_id": event.event_id},
        )
        raise to_http_exception(e, request_id)

    return PaymentEventResponse(
        handled=outcome.handled,
        payment_id=outcome.payment_id,
        status=outcome.status,
        allocated=outcome.allocated,
        reversed=outcome.reversed,
    )
