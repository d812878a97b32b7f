"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tabs_billing.domain.money import to_cents

Amount = Union[str, int, Decimal]


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python code uses snake_case"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _parse_amount(value: Amount) -> int:
    try:
        return to_cents(value)
    except ValueError as e:
        raise ValueError(f"Invalid amount: {e}")


class LineItemAllocationRequest(CamelModel):
    line_item_id: str = Field(..., min_length=1)
    amount: Amount = Field(..., description='Decimal string with at most two fractional digits, e.g. "12.50"')

    @field_validator("amount")
    @classmethod
    def amount_is_money(cls, value: Amount) -> Amount:
        _parse_amount(value)
        return value

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class AllocationRequest(CamelModel):
    """Request body for POST /v1/payments/{payment_id}/allocations"""

    billing_group_ids: List[str] = Field(..., min_length=1, description="Target groups; order matters for fifo")
    method: str = Field("proportional", description="proportional | fifo | equal")
    line_item_allocations: Optional[Dict[str, List[LineItemAllocationRequest]]] = Field(
        None, description="Optional per-group line-item split keyed by billing group id"
    )


class LineItemAllocationSchema(CamelModel):
    line_item_id: str
    amount: str


class GroupAllocationSchema(CamelModel):
    billing_group_id: str
    amount: str
    line_item_allocations: List[LineItemAllocationSchema] = []


class PaymentSchema(CamelModel):
    id: str
    tab_id: str
    amount: str
    currency: str
    status: str
    processor_payment_id: Optional[str] = None
    metadata: Dict[str, Any] = {}


class BillingGroupSchema(CamelModel):
    id: str
    tab_id: Optional[str] = None
    invoice_id: Optional[str] = None
    name: str
    group_type: str
    status: str
    current_balance: str
    deposit_amount: str
    deposit_applied: str


class AllocationResponse(CamelModel):
    """Response for POST /v1/payments/{payment_id}/allocations"""

    payment: PaymentSchema
    method: str
    allocations: List[GroupAllocationSchema]
    updated_groups: List[BillingGroupSchema]
    unallocated: str


class PaymentAllocationRecordSchema(CamelModel):
    payment_id: str
    amount: str
    method: Optional[str] = None
    allocated_at: Optional[str] = None
    reversed: bool
    allocations: List[GroupAllocationSchema]


class TabPaymentAllocationsResponse(CamelModel):
    tab_id: str
    payments: List[PaymentAllocationRecordSchema]


class MessageResponse(CamelModel):
    message: str


class DeletionBlockerSchema(CamelModel):
    type: str
    count: int
    message: str


class BillingGroupSummarySchema(CamelModel):
    id: str
    name: str
    group_type: str
    status: str
    invoice_id: Optional[str] = None


class DeletionValidationResponse(CamelModel):
    """Response for GET /v1/billing-groups/{id}/validate-deletion (200 even when blocked)"""

    can_delete: bool
    blockers: List[DeletionBlockerSchema]
    warnings: List[str]
    billing_group: BillingGroupSummarySchema


class DeleteBillingGroupRequest(CamelModel):
    force: bool = Field(False, description="Skip safety validation; an audited override")
    move_line_items_to_group_id: Optional[str] = None


class DeleteBillingGroupResponse(CamelModel):
    message: str
    warnings: List[str] = []


class DefaultBillingGroupResponse(CamelModel):
    billing_group_id: str


class DepositRequest(CamelModel):
    amount: Amount

    @field_validator("amount")
    @classmethod
    def amount_is_money(cls, value: Amount) -> Amount:
        _parse_amount(value)
        return value


class DepositResponse(CamelModel):
    billing_group_id: str
    applied: str


class AssignLineItemRequest(CamelModel):
    billing_group_id: Optional[str] = Field(None, description="Target group, or null to unassign")
    override: bool = False


class LineItemSchema(CamelModel):
    id: str
    tab_id: str
    billing_group_id: Optional[str] = None
    description: str
    quantity: int
    unit_price: str
    total: str


class PaymentEventRequest(CamelModel):
    """Normalized processor event; signature verification happens upstream"""

    type: str = Field(..., min_length=1)
    id: Optional[str] = Field(None, description="Processor event id")
    payment_id: Optional[str] = None
    processor_payment_id: Optional[str] = None
    metadata: Dict[str, Any] = {}
    fully_refunded: bool = True


class PaymentEventResponse(CamelModel):
    received: bool = True
    handled: bool
    payment_id: Optional[str] = None
    status: Optional[str] = None
    allocated: bool = False
    reversed: bool = False
