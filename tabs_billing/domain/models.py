"""Domain models - pure Python dataclasses and enums representing billing entities"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class AllocationMethod(str, Enum):
    """How a single payment is split across billing groups"""

    PROPORTIONAL = "proportional"
    FIFO = "fifo"
    EQUAL = "equal"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class BillingGroupType(str, Enum):
    STANDARD = "standard"
    DEFAULT = "default"
    CORPORATE = "corporate"
    DEPOSIT = "deposit"
    CREDIT = "credit"


class BillingGroupStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


# Invoice states that must survive any deletion of the group feeding them
AUDIT_PROTECTED_INVOICE_STATUSES = frozenset(
    {InvoiceStatus.PAID.value, InvoiceStatus.OVERDUE.value, InvoiceStatus.UNCOLLECTIBLE.value}
)

# Payments in these states never fund an allocation
NON_ALLOCATABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.FAILED.value, PaymentStatus.REFUNDED.value, PaymentStatus.PARTIALLY_REFUNDED.value}
)


@dataclass
class GroupBalance:
    """Outstanding balance of one billing group, as input to an allocation strategy"""

    billing_group_id: str
    balance_cents: int


@dataclass
class LineItemAllocation:
    """Portion of a group allocation attributed to one line item"""

    line_item_id: str
    amount_cents: int


@dataclass
class GroupAllocation:
    """Amount of a payment assigned to one billing group"""

    billing_group_id: str
    amount_cents: int
    line_item_allocations: List[LineItemAllocation] = field(default_factory=list)


@dataclass
class AllocationPlan:
    """Output of an allocation strategy"""

    method: AllocationMethod
    payment_cents: int
    allocations: List[GroupAllocation]
    unallocated_cents: int = 0

    @property
    def allocated_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)


@dataclass
class DeletionBlocker:
    """Structured reason a billing group cannot be deleted"""

    type: str  # "invoice" | "payment" | "line_items"
    count: int
    message: str


@dataclass
class BillingGroupSummary:
    """Redacted billing group view returned with deletion verdicts"""

    id: str
    name: str
    group_type: str
    status: str
    invoice_id: Optional[str]


@dataclass
class InvoiceSnapshot:
    """Invoice fields the deletion rules look at"""

    id: str
    invoice_number: str
    status: str
    paid_cents: int
    total_cents: int


@dataclass
class DeletionFootprint:
    """Financial footprint of a billing group, gathered before a deletion decision"""

    billing_group: BillingGroupSummary
    invoice: Optional[InvoiceSnapshot]
    succeeded_payment_count: int
    paid_line_item_totals: List[int]
    unpaid_line_item_totals: List[int]


@dataclass
class DeletionVerdict:
    """Result of deletion validation"""

    can_delete: bool
    blockers: List[DeletionBlocker]
    warnings: List[str]
    billing_group: BillingGroupSummary
