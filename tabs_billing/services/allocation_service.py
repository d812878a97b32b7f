"""Payment allocation across billing groups, and its reversal on refund"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabs_billing.config import settings
from tabs_billing.domain.allocation import plan_allocation
from tabs_billing.domain.exceptions import (
    DatabaseError,
    DomainException,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from tabs_billing.domain.models import (
    NON_ALLOCATABLE_PAYMENT_STATUSES,
    AllocationMethod,
    AllocationPlan,
    GroupAllocation,
    GroupBalance,
    LineItemAllocation,
)
from tabs_billing.domain.money import format_cents, to_cents
from tabs_billing.infrastructure.database.models import BillingGroup, Payment
from tabs_billing.infrastructure.database.unit_of_work import UnitOfWork
from tabs_billing.infrastructure.observability.logging import log_allocation, log_reversal
from tabs_billing.infrastructure.observability.metrics import record_allocation, reversal_counter
from tabs_billing.services.billing_group_service import owning_tab_id
from tabs_billing.utils.date_utils import isoformat_utc

logger = logging.getLogger(__name__)

ALLOCATIONS_KEY = "billingGroupAllocations"


@dataclass
class AllocationResult:
    """Payment row, the computed split, and the post-mutation billing groups"""

    payment: Payment
    method: AllocationMethod
    allocations: List[GroupAllocation]
    updated_groups: List[BillingGroup]
    unallocated_cents: int = 0


@dataclass
class PaymentAllocationRecord:
    """Allocation history of one payment, read back from its metadata"""

    payment_id: str
    amount_cents: int
    method: Optional[str]
    allocated_at: Optional[str]
    reversed: bool
    allocations: List[GroupAllocation] = field(default_factory=list)


def parse_allocation_method(value: Union[str, AllocationMethod]) -> AllocationMethod:
    try:
        return AllocationMethod(value)
    except ValueError:
        raise ValidationError(f"Unknown allocation method: {value}")


def serialize_allocations(allocations: Sequence[GroupAllocation]) -> List[Dict[str, Any]]:
    """Allocation list in the shape stored under payment.metadata.billingGroupAllocations"""
    serialized = []
    for allocation in allocations:
        entry: Dict[str, Any] = {
            "billingGroupId": allocation.billing_group_id,
            "amount": format_cents(allocation.amount_cents),
        }
        if allocation.line_item_allocations:
            entry["lineItemAllocations"] = [
                {"lineItemId": li.line_item_id, "amount": format_cents(li.amount_cents)}
                for li in allocation.line_item_allocations
            ]
        serialized.append(entry)
    return serialized


def deserialize_allocations(entries: Sequence[Mapping[str, Any]]) -> List[GroupAllocation]:
    # str() first: older records stored plain numbers
    return [
        GroupAllocation(
            billing_group_id=entry["billingGroupId"],
            amount_cents=to_cents(str(entry["amount"])),
            line_item_allocations=[
                LineItemAllocation(line_item_id=li["lineItemId"], amount_cents=to_cents(str(li["amount"])))
                for li in entry.get("lineItemAllocations") or []
            ],
        )
        for entry in entries
    ]


def has_active_allocation(payment: Payment) -> bool:
    metadata = payment.metadata_ or {}
    return bool(metadata.get(ALLOCATIONS_KEY)) and not metadata.get("reversed")


async def _ensure_tab_owned(uow: UnitOfWork, tab_id: str, organization_id: Optional[str]) -> None:
    """Tenant check for callers acting on behalf of an organization; internal callers pass None"""
    if organization_id is None:
        return
    tab = await uow.tabs.get(tab_id)
    if tab is None:
        raise NotFoundError("Tab not found")
    if tab.organization_id != organization_id:
        raise UnauthorizedError("You do not have permission to access this tab")


async def reverse_allocations(uow: UnitOfWork, payment: Payment) -> Tuple[int, List[str]]:
    """
    Credit each group back with its share of the payment and mark the allocation reversed.

    Runs inside the caller's unit of work; groups deleted since the allocation are skipped.

    Returns:
        (cents restored, ids of the groups that were credited)
    """
    metadata = dict(payment.metadata_ or {})
    rows = await uow.payments.active_allocations(payment.id)
    entries: List[Tuple[Optional[str], int]]
    if rows:
        entries = [(row.billing_group_id, row.amount_cents) for row in rows]
    else:
        entries = [(a.billing_group_id, a.amount_cents) for a in deserialize_allocations(metadata[ALLOCATIONS_KEY])]

    restored_ids = []
    reversed_cents = 0
    for billing_group_id, amount_cents in entries:
        new_balance = None
        if billing_group_id is not None:
            new_balance = await uow.billing_groups.adjust_balance(billing_group_id, amount_cents)
        if new_balance is None:
            logger.warning(
                "Billing group no longer exists; allocation not restored",
                extra={"payment_id": payment.id, "billing_group_id": billing_group_id},
            )
            continue
        restored_ids.append(billing_group_id)
        reversed_cents += amount_cents

    await uow.payments.mark_allocations_reversed(payment.id)
    metadata["reversed"] = True
    metadata["reversedAt"] = isoformat_utc()
    await uow.payments.update_metadata(payment, metadata)
    return reversed_cents, restored_ids


def _dedupe(ids: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in ids:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class PaymentAllocationService:
    """
    Distributes payments over billing groups and undoes the distribution on refund.

    Every operation runs inside one UnitOfWork: balances, line-item history and payment
    metadata commit together or not at all.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def allocate(
        self,
        payment_id: str,
        billing_group_ids: Sequence[str],
        method: Union[str, AllocationMethod] = AllocationMethod.PROPORTIONAL,
        line_item_allocations: Optional[Mapping[str, Sequence[LineItemAllocation]]] = None,
        organization_id: Optional[str] = None,
    ) -> AllocationResult:
        """
        Allocate a payment across billing groups.

        Flow:
        1. Lock the payment and the requested groups (caller order preserved)
        2. Compute the split with the chosen strategy
        3. Decrement each group's balance atomically
        4. Append line-item allocation history when provided
        5. Record the split on the payment (allocation rows + metadata)

        Raises:
            NotFoundError: Payment does not exist
            UnauthorizedError: organization_id given and the payment's tab belongs to another one
            ValidationError: No groups resolved, no balance, invalid line items, or the
                payment is not in an allocatable state
            DatabaseError: Any unexpected persistence failure
        """
        allocation_method = parse_allocation_method(method)
        group_ids = _dedupe(billing_group_ids)
        if not group_ids:
            raise ValidationError("At least one billing group is required")

        try:
            async with UnitOfWork(self.session_factory) as uow:
                payment = await uow.payments.get(payment_id, for_update=True)
                if payment is None:
                    raise NotFoundError("Payment not found")
                await _ensure_tab_owned(uow, payment.tab_id, organization_id)
                self._ensure_allocatable(payment)

                groups = await uow.billing_groups.lock_many(group_ids)
                if not groups:
                    raise ValidationError("No billing groups found")
                for group in groups:
                    if owning_tab_id(group) != payment.tab_id:
                        raise ValidationError(f"Billing group {group.id} does not belong to the payment's tab")

                plan = plan_allocation(
                    payment.amount_cents,
                    [GroupBalance(billing_group_id=g.id, balance_cents=g.current_balance_cents) for g in groups],
                    allocation_method,
                )
                if not plan.allocations:
                    raise ValidationError("No balance to allocate payment to")

                allocated_at = isoformat_utc()
                if line_item_allocations:
                    await self._apply_line_item_allocations(uow, payment.id, plan, line_item_allocations, allocated_at)

                for allocation in plan.allocations:
                    new_balance = await uow.billing_groups.adjust_balance(
                        allocation.billing_group_id, -allocation.amount_cents
                    )
                    if new_balance is None:
                        raise NotFoundError(f"Billing group {allocation.billing_group_id} not found")

                await uow.payments.add_allocations(payment.id, plan)

                metadata = dict(payment.metadata_ or {})
                metadata.pop("reversed", None)
                metadata.pop("reversedAt", None)
                metadata[ALLOCATIONS_KEY] = serialize_allocations(plan.allocations)
                metadata["allocationMethod"] = plan.method.value
                metadata["allocatedAt"] = allocated_at
                if plan.unallocated_cents:
                    metadata["unallocatedAmount"] = format_cents(plan.unallocated_cents)
                await uow.payments.update_metadata(payment, metadata)

                updated_groups = await uow.billing_groups.refresh_many([g.id for g in groups])

        except DomainException as e:
            logger.warning(f"Payment allocation rejected: {e}", extra={"payment_id": payment_id})
            raise
        except Exception as e:
            logger.error(
                f"Failed to allocate payment: {e}",
                extra={"payment_id": payment_id, "billing_group_ids": group_ids},
            )
            raise DatabaseError("Failed to allocate payment to billing groups", e) from e

        record_allocation(plan.method.value, plan.allocated_cents, plan.unallocated_cents)
        log_allocation(
            payment_id,
            plan.method.value,
            plan.allocated_cents,
            plan.unallocated_cents,
            [a.billing_group_id for a in plan.allocations],
        )

        return AllocationResult(
            payment=payment,
            method=plan.method,
            allocations=plan.allocations,
            updated_groups=updated_groups,
            unallocated_cents=plan.unallocated_cents,
        )

    async def allocate_from_checkout_metadata(
        self, payment_id: str, metadata: Optional[Mapping[str, Any]]
    ) -> Optional[AllocationResult]:
        """
        Allocate using the comma-joined group ids a checkout carried in processor metadata.

        Returns None when the metadata names no groups: the payment applies to the tab as a
        whole.
        """
        metadata = metadata or {}
        raw_ids = metadata.get(settings.checkout_group_ids_key)
        if not raw_ids:
            return None

        group_ids = [part.strip() for part in str(raw_ids).split(",") if part.strip()]
        if not group_ids:
            return None

        method = metadata.get("allocationMethod") or settings.default_allocation_method
        return await self.allocate(payment_id, group_ids, method)

    async def reverse(self, payment_id: str, organization_id: Optional[str] = None) -> None:
        """
        Restore billing group balances for a previously allocated payment.

        Line-item allocation history is left untouched; it is an append-only ledger.
        A second reversal of the same allocation is refused.

        Raises:
            ValidationError: Payment missing, never allocated, or already reversed
            DatabaseError: Any unexpected persistence failure
        """
        try:
            async with UnitOfWork(self.session_factory) as uow:
                payment = await uow.payments.get(payment_id, for_update=True)
                metadata = dict(payment.metadata_ or {}) if payment is not None else {}
                if payment is None or not metadata.get(ALLOCATIONS_KEY):
                    raise ValidationError("Payment or allocations not found")
                await _ensure_tab_owned(uow, payment.tab_id, organization_id)
                if metadata.get("reversed"):
                    raise ValidationError("Payment allocations have already been reversed")
                reversed_cents, restored_ids = await reverse_allocations(uow, payment)

        except DomainException as e:
            logger.warning(f"Allocation reversal rejected: {e}", extra={"payment_id": payment_id})
            raise
        except Exception as e:
            logger.error(f"Failed to reverse payment allocation: {e}", extra={"payment_id": payment_id})
            raise DatabaseError("Failed to reverse payment allocation", e) from e

        reversal_counter.inc()
        log_reversal(payment_id, reversed_cents, restored_ids)

    async def get_tab_payment_allocations(
        self, tab_id: str, organization_id: Optional[str] = None
    ) -> List[PaymentAllocationRecord]:
        """Allocation history for every payment on a tab that was split across groups"""
        try:
            async with UnitOfWork(self.session_factory) as uow:
                await _ensure_tab_owned(uow, tab_id, organization_id)
                payments = await uow.payments.list_for_tab(tab_id)
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Failed to load payment allocations: {e}", extra={"tab_id": tab_id})
            raise DatabaseError("Failed to load payment allocations", e) from e

        records = []
        for payment in payments:
            metadata = payment.metadata_ or {}
            if not metadata.get(ALLOCATIONS_KEY):
                continue
            records.append(
                PaymentAllocationRecord(
                    payment_id=payment.id,
                    amount_cents=payment.amount_cents,
                    method=metadata.get("allocationMethod"),
                    allocated_at=metadata.get("allocatedAt"),
                    reversed=bool(metadata.get("reversed")),
                    allocations=deserialize_allocations(metadata[ALLOCATIONS_KEY]),
                )
            )
        return records

    @staticmethod
    def _ensure_allocatable(payment: Payment) -> None:
        if payment.status in NON_ALLOCATABLE_PAYMENT_STATUSES:
            raise ValidationError(f"Cannot allocate a payment in '{payment.status}' status")
        if payment.amount_cents <= 0:
            raise ValidationError("Payment amount must be positive")
        if has_active_allocation(payment):
            raise ValidationError("Payment has already been allocated to billing groups")

    @staticmethod
    async def _apply_line_item_allocations(
        uow: UnitOfWork,
        payment_id: str,
        plan: AllocationPlan,
        line_item_allocations: Mapping[str, Sequence[LineItemAllocation]],
        allocated_at: str,
    ) -> None:
        """Validate caller-supplied line-item splits and append them to each item's history"""
        by_group = {a.billing_group_id: a for a in plan.allocations}
        requested_ids = [li.line_item_id for items in line_item_allocations.values() for li in items]
        line_items = await uow.line_items.get_many(requested_ids)

        for billing_group_id, items in line_item_allocations.items():
            allocation = by_group.get(billing_group_id)
            if allocation is None:
                raise ValidationError(f"Billing group {billing_group_id} received no part of this payment")

            total = sum(li.amount_cents for li in items)
            if total > allocation.amount_cents:
                raise ValidationError(
                    f"Line item allocations for billing group {billing_group_id} exceed its allocation "
                    f"of {format_cents(allocation.amount_cents)}"
                )

            for li in items:
                if li.amount_cents <= 0:
                    raise ValidationError("Line item allocation amounts must be positive")
                line_item = line_items.get(li.line_item_id)
                if line_item is None:
                    raise NotFoundError(f"Line item {li.line_item_id} not found")
                if line_item.billing_group_id != billing_group_id:
                    raise ValidationError(
                        f"Line item {li.line_item_id} does not belong to billing group {billing_group_id}"
                    )
                await uow.line_items.append_allocation(
                    line_item,
                    {"paymentId": payment_id, "amount": format_cents(li.amount_cents), "date": allocated_at},
                )
                allocation.line_item_allocations.append(li)
