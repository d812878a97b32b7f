"""Normalized payment-processor events: success triggers allocation, refund triggers reversal"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabs_billing.domain.exceptions import DatabaseError, DomainException, NotFoundError
from tabs_billing.domain.models import PaymentStatus
from tabs_billing.infrastructure.database.models import Payment
from tabs_billing.infrastructure.database.unit_of_work import UnitOfWork
from tabs_billing.infrastructure.observability.logging import log_reversal
from tabs_billing.infrastructure.observability.metrics import reversal_counter
from tabs_billing.services.allocation_service import (
    PaymentAllocationService,
    has_active_allocation,
    reverse_allocations,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
CHARGE_REFUNDED = "charge.refunded"

SUCCESS_EVENTS = frozenset({CHECKOUT_COMPLETED, PAYMENT_SUCCEEDED})


@dataclass
class PaymentEvent:
    """Processor event after transport-level verification and normalization"""

    type: str
    event_id: Optional[str] = None
    payment_id: Optional[str] = None
    processor_payment_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    fully_refunded: bool = True


@dataclass
class PaymentEventOutcome:
    handled: bool
    payment_id: Optional[str] = None
    status: Optional[str] = None
    allocated: bool = False
    reversed: bool = False


class PaymentEventService:
    """Applies processor events to payments, tab totals and billing group allocations"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        allocation_service: Optional[PaymentAllocationService] = None,
    ):
        self.session_factory = session_factory
        self.allocation_service = allocation_service or PaymentAllocationService(session_factory)

    async def handle(self, event: PaymentEvent) -> PaymentEventOutcome:
        logger.info("Payment event received", extra={"event_type": event.type, "event_id": event.event_id})

        if event.type in SUCCESS_EVENTS:
            return await self._handle_success(event)
        if event.type == CHARGE_REFUNDED:
            return await self._handle_refund(event)

        logger.debug("Unhandled payment event type", extra={"event_type": event.type, "event_id": event.event_id})
        return PaymentEventOutcome(handled=False)

    async def _handle_success(self, event: PaymentEvent) -> PaymentEventOutcome:
        """
        Mark the payment succeeded and credit the tab, then allocate from checkout metadata.

        Replays are safe: the tab is credited only on the first transition to succeeded and a
        payment with a live allocation is not allocated again.
        """
        try:
            async with UnitOfWork(self.session_factory) as uow:
                payment = await self._find_payment(uow, event)
                if payment.status != PaymentStatus.SUCCEEDED.value:
                    await uow.payments.set_status(payment, PaymentStatus.SUCCEEDED.value)
                    await uow.tabs.add_paid_amount(payment.tab_id, payment.amount_cents)
                if event.event_id:
                    await uow.payments.update_metadata(
                        payment, {**(payment.metadata_ or {}), "processorEventId": event.event_id}
                    )
                already_allocated = has_active_allocation(payment)
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Failed to record payment success: {e}", extra={"event_id": event.event_id})
            raise DatabaseError("Failed to record payment success", e) from e

        allocated = False
        if not already_allocated:
            result = await self.allocation_service.allocate_from_checkout_metadata(payment.id, event.metadata)
            allocated = result is not None

        return PaymentEventOutcome(
            handled=True,
            payment_id=payment.id,
            status=PaymentStatus.SUCCEEDED.value,
            allocated=allocated,
        )

    async def _handle_refund(self, event: PaymentEvent) -> PaymentEventOutcome:
        """
        Mark the payment refunded; a full refund debits the tab and reverses group allocations.

        Status, tab total and group balances change in one transaction.
        """
        status = PaymentStatus.REFUNDED.value if event.fully_refunded else PaymentStatus.PARTIALLY_REFUNDED.value
        reversed_cents, restored_ids = 0, []
        try:
            async with UnitOfWork(self.session_factory) as uow:
                payment = await self._find_payment(uow, event)
                was_counted = payment.status in (PaymentStatus.SUCCEEDED.value, PaymentStatus.PARTIALLY_REFUNDED.value)
                should_reverse = event.fully_refunded and has_active_allocation(payment)
                await uow.payments.set_status(payment, status)
                if event.fully_refunded and was_counted:
                    await uow.tabs.add_paid_amount(payment.tab_id, -payment.amount_cents)
                if should_reverse:
                    reversed_cents, restored_ids = await reverse_allocations(uow, payment)
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Failed to record refund: {e}", extra={"event_id": event.event_id})
            raise DatabaseError("Failed to record refund", e) from e

        if should_reverse:
            reversal_counter.inc()
            log_reversal(payment.id, reversed_cents, restored_ids)

        return PaymentEventOutcome(handled=True, payment_id=payment.id, status=status, reversed=should_reverse)

    @staticmethod
    async def _find_payment(uow: UnitOfWork, event: PaymentEvent) -> Payment:
        payment = None
        if event.payment_id:
            payment = await uow.payments.get(event.payment_id, for_update=True)
        elif event.processor_payment_id:
            payment = await uow.payments.get_by_processor_id(event.processor_payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment
