"""Payment allocation endpoints: allocate, reverse, and list a tab's allocation history"""

from fastapi import APIRouter, Depends, Request

from tabs_billing.api.dependencies import get_allocation_service, get_organization_id, get_request_id
from tabs_billing.api.v1.errors import to_http_exception
from tabs_billing.api.v1.schemas import (
    AllocationRequest,
    AllocationResponse,
    BillingGroupSchema,
    GroupAllocationSchema,
    LineItemAllocationSchema,
    MessageResponse,
    PaymentAllocationRecordSchema,
    PaymentSchema,
    TabPaymentAllocationsResponse,
)
from tabs_billing.domain.models import GroupAllocation, LineItemAllocation
from tabs_billing.domain.money import format_cents
from tabs_billing.infrastructure.database.models import BillingGroup, Payment
from tabs_billing.services.allocation_service import PaymentAllocationService

router = APIRouter()


def payment_schema(payment: Payment) -> PaymentSchema:
    return PaymentSchema(
        id=payment.id,
        tab_id=payment.tab_id,
        amount=format_cents(payment.amount_cents),
        currency=payment.currency,
        status=payment.status,
        processor_payment_id=payment.processor_payment_id,
        metadata=payment.metadata_ or {},
    )


def billing_group_schema(group: BillingGroup) -> BillingGroupSchema:
    return BillingGroupSchema(
        id=group.id,
        tab_id=group.tab_id,
        invoice_id=group.invoice_id,
        name=group.name,
        group_type=group.group_type,
        status=group.status,
        current_balance=format_cents(group.current_balance_cents),
        deposit_amount=format_cents(group.deposit_amount_cents),
        deposit_applied=format_cents(group.deposit_applied_cents),
    )


def allocation_schema(allocation: GroupAllocation) -> GroupAllocationSchema:
    return GroupAllocationSchema(
        billing_group_id=allocation.billing_group_id,
        amount=format_cents(allocation.amount_cents),
        line_item_allocations=[
            LineItemAllocationSchema(line_item_id=li.line_item_id, amount=format_cents(li.amount_cents))
            for li in allocation.line_item_allocations
        ],
    )


@router.post("/payments/{payment_id}/allocations", response_model=AllocationResponse)
async def allocate_payment(
    payment_id: str,
    request_body: AllocationRequest,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: PaymentAllocationService = Depends(get_allocation_service),
):
    """
    Split a payment across billing groups.

    Returns:
        The payment with its allocation record, the per-group split, the post-allocation
        groups, and any amount that exceeded the groups' outstanding balance
    """
    request_id = get_request_id(request)

    line_item_allocations = None
    if request_body.line_item_allocations:
        line_item_allocations = {
            group_id: [LineItemAllocation(line_item_id=li.line_item_id, amount_cents=li.amount_cents) for li in items]
            for group_id, items in request_body.line_item_allocations.items()
        }

    try:
        result = await service.allocate(
            payment_id,
            request_body.billing_group_ids,
            request_body.method,
            line_item_allocations=line_item_allocations,
            organization_id=organization_id,
        )
    except Exception as e:
        raise to_http_exception(e, request_id)

    return AllocationResponse(
        payment=payment_schema(result.payment),
        method=result.method.value,
        allocations=[allocation_schema(a) for a in result.allocations],
        updated_groups=[billing_group_schema(g) for g in result.updated_groups],
        unallocated=format_cents(result.unallocated_cents),
    )


@router.post("/payments/{payment_id}/reversal", response_model=MessageResponse)
async def reverse_payment_allocation(
    payment_id: str,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: PaymentAllocationService = Depends(get_allocation_service),
):
    """Restore the billing group balances a payment's allocation consumed"""
    try:
        await service.reverse(payment_id, organization_id=organization_id)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))
    return MessageResponse(message="Payment allocation reversed")


@router.get("/tabs/{tab_id}/payment-allocations", response_model=TabPaymentAllocationsResponse)
async def get_tab_payment_allocations(
    tab_id: str,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: PaymentAllocationService = Depends(get_allocation_service),
):
    try:
        records = await service.get_tab_payment_allocations(tab_id, organization_id=organization_id)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))

    return TabPaymentAllocationsResponse(
        tab_id=tab_id,
        payments=[
            PaymentAllocationRecordSchema(
                payment_id=record.payment_id,
                amount=format_cents(record.amount_cents),
                method=record.method,
                allocated_at=record.allocated_at,
                reversed=record.reversed,
                allocations=[allocation_schema(a) for a in record.allocations],
            )
            for record in records
        ],
    )
