"""Data access layer for billing entities"""

from typing import Dict, Iterable, List, Optional, Sequence, Set
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tabs_billing.domain.models import AllocationPlan, BillingGroupType, PaymentStatus
from tabs_billing.infrastructure.database.models import (
    BillingGroup,
    Invoice,
    InvoiceLineItem,
    LineItem,
    Payment,
    PaymentAllocation,
    Tab,
)
from tabs_billing.utils.date_utils import utcnow


class TabRepository:
    """Repository for tabs"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, tab_id: str, for_update: bool = False) -> Optional[Tab]:
        return await self.db.get(Tab, tab_id, with_for_update=for_update or None)

    async def add_paid_amount(self, tab_id: str, delta_cents: int) -> Optional[Tab]:
        """Atomically move the tab's paid amount and derive its status from the new total"""
        result = await self.db.execute(
            update(Tab)
            .where(Tab.id == tab_id)
            .values(paid_cents=Tab.paid_cents + delta_cents, updated_at=utcnow())
            .returning(Tab.paid_cents, Tab.total_cents)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            return None

        paid_cents, total_cents = row
        paid_cents = max(paid_cents, 0)
        if paid_cents == 0:
            status = "open"
        elif paid_cents >= total_cents:
            status = "paid"
        else:
            status = "partial"
        await self.db.execute(
            update(Tab)
            .where(Tab.id == tab_id)
            .values(paid_cents=paid_cents, status=status)
            .execution_options(synchronize_session=False)
        )
        return await self.db.get(Tab, tab_id, populate_existing=True)


class BillingGroupRepository:
    """Repository for billing groups"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, billing_group_id: str) -> Optional[BillingGroup]:
        return await self.db.get(BillingGroup, billing_group_id)

    async def get_with_relations(self, billing_group_id: str) -> Optional[BillingGroup]:
        """Fetch group with invoice, owning tab and line items eagerly loaded"""
        result = await self.db.execute(
            select(BillingGroup)
            .where(BillingGroup.id == billing_group_id)
            .options(
                selectinload(BillingGroup.invoice).selectinload(Invoice.tab),
                selectinload(BillingGroup.tab),
                selectinload(BillingGroup.line_items),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def lock_many(self, billing_group_ids: Sequence[str]) -> List[BillingGroup]:
        """
        Fetch groups with SELECT ... FOR UPDATE, preserving the caller's order.

        Unknown ids are skipped. SQLite ignores FOR UPDATE; other databases honor it.
        """
        result = await self.db.execute(
            select(BillingGroup)
            .where(BillingGroup.id.in_(list(billing_group_ids)))
            .options(selectinload(BillingGroup.invoice))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        by_id: Dict[str, BillingGroup] = {g.id: g for g in result.scalars().all()}
        return [by_id[gid] for gid in billing_group_ids if gid in by_id]

    async def refresh_many(self, billing_group_ids: Sequence[str]) -> List[BillingGroup]:
        """Re-read groups after atomic updates, in the given order"""
        result = await self.db.execute(
            select(BillingGroup)
            .where(BillingGroup.id.in_(list(billing_group_ids)))
            .execution_options(populate_existing=True)
        )
        by_id = {g.id: g for g in result.scalars().all()}
        return [by_id[gid] for gid in billing_group_ids if gid in by_id]

    async def adjust_balance(self, billing_group_id: str, delta_cents: int) -> Optional[int]:
        """
        Atomic UPDATE ... SET current_balance_cents = current_balance_cents + :delta.

        Returns the new balance, or None when the group no longer exists.
        """
        result = await self.db.execute(
            update(BillingGroup)
            .where(BillingGroup.id == billing_group_id)
            .values(current_balance_cents=BillingGroup.current_balance_cents + delta_cents, updated_at=utcnow())
            .returning(BillingGroup.current_balance_cents)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def set_balance(self, billing_group_id: str, balance_cents: int) -> None:
        await self.db.execute(
            update(BillingGroup)
            .where(BillingGroup.id == billing_group_id)
            .values(current_balance_cents=balance_cents, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def apply_deposit(self, billing_group_id: str, amount_cents: int) -> None:
        await self.db.execute(
            update(BillingGroup)
            .where(BillingGroup.id == billing_group_id)
            .values(deposit_applied_cents=BillingGroup.deposit_applied_cents + amount_cents, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def find_default(self, tab_id: str) -> Optional[BillingGroup]:
        result = await self.db.execute(
            select(BillingGroup)
            .where(BillingGroup.tab_id == tab_id, BillingGroup.group_type == BillingGroupType.DEFAULT.value)
            .order_by(BillingGroup.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, **fields) -> BillingGroup:
        group = BillingGroup(**fields)
        self.db.add(group)
        await self.db.flush()  # Get ID without committing
        return group

    async def detach_invoice(self, billing_group_id: str) -> None:
        await self.db.execute(
            update(BillingGroup)
            .where(BillingGroup.id == billing_group_id)
            .values(invoice_id=None)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, billing_group_id: str) -> int:
        result = await self.db.execute(
            delete(BillingGroup).where(BillingGroup.id == billing_group_id).execution_options(synchronize_session=False)
        )
        return result.rowcount


class LineItemRepository:
    """Repository for tab line items"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, line_item_id: str) -> Optional[LineItem]:
        result = await self.db.execute(
            select(LineItem).where(LineItem.id == line_item_id).options(selectinload(LineItem.tab))
        )
        return result.scalar_one_or_none()

    async def get_many(self, line_item_ids: Iterable[str]) -> Dict[str, LineItem]:
        result = await self.db.execute(select(LineItem).where(LineItem.id.in_(list(line_item_ids))))
        return {item.id: item for item in result.scalars().all()}

    async def list_for_group(self, billing_group_id: str) -> List[LineItem]:
        result = await self.db.execute(
            select(LineItem).where(LineItem.billing_group_id == billing_group_id).order_by(LineItem.created_at)
        )
        return list(result.scalars().all())

    async def total_for_group(self, billing_group_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(LineItem.total_cents), 0)).where(LineItem.billing_group_id == billing_group_id)
        )
        return int(result.scalar() or 0)

    async def reassign_group(self, from_group_id: str, to_group_id: Optional[str]) -> int:
        """Repoint every line item of a group; never deletes line items"""
        result = await self.db.execute(
            update(LineItem)
            .where(LineItem.billing_group_id == from_group_id)
            .values(billing_group_id=to_group_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def set_group(self, line_item: LineItem, billing_group_id: Optional[str]) -> None:
        line_item.billing_group_id = billing_group_id
        await self.db.flush()

    async def append_allocation(self, line_item: LineItem, entry: dict) -> None:
        """Append to metadata.allocations; existing history is never rewritten"""
        metadata = dict(line_item.metadata_ or {})
        metadata["allocations"] = list(metadata.get("allocations") or []) + [entry]
        # Assign a new dict so the JSON column is flagged dirty
        line_item.metadata_ = metadata
        await self.db.flush()


class PaymentRepository:
    """Repository for payments and their allocation records"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, payment_id: str, for_update: bool = False) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_processor_id(self, processor_payment_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.processor_payment_id == processor_payment_id)
            .with_for_update()
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_tab(self, tab_id: str) -> List[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.tab_id == tab_id).order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_succeeded_for_group(self, billing_group_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Payment.id)).where(
                Payment.billing_group_id == billing_group_id,
                Payment.status == PaymentStatus.SUCCEEDED.value,
            )
        )
        return int(result.scalar() or 0)

    async def tabs_with_succeeded_payments(self, tab_ids: Iterable[str]) -> Set[str]:
        ids = list(set(tab_ids))
        if not ids:
            return set()
        result = await self.db.execute(
            select(Payment.tab_id)
            .where(Payment.tab_id.in_(ids), Payment.status == PaymentStatus.SUCCEEDED.value)
            .distinct()
        )
        return set(result.scalars().all())

    async def update_metadata(self, payment: Payment, metadata: dict) -> None:
        payment.metadata_ = dict(metadata)
        await self.db.flush()

    async def set_status(self, payment: Payment, status: str) -> None:
        payment.status = status
        await self.db.flush()

    async def add_allocations(self, payment_id: str, plan: AllocationPlan) -> List[PaymentAllocation]:
        rows = [
            PaymentAllocation(
                payment_id=payment_id,
                billing_group_id=allocation.billing_group_id,
                amount_cents=allocation.amount_cents,
                method=plan.method.value,
            )
            for allocation in plan.allocations
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    async def active_allocations(self, payment_id: str) -> List[PaymentAllocation]:
        result = await self.db.execute(
            select(PaymentAllocation)
            .where(PaymentAllocation.payment_id == payment_id, PaymentAllocation.reversed_at.is_(None))
            .order_by(PaymentAllocation.allocated_at)
        )
        return list(result.scalars().all())

    async def mark_allocations_reversed(self, payment_id: str) -> int:
        result = await self.db.execute(
            update(PaymentAllocation)
            .where(PaymentAllocation.payment_id == payment_id, PaymentAllocation.reversed_at.is_(None))
            .values(reversed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def allocated_to_group(self, billing_group_id: str) -> int:
        """Sum of unreversed allocations, whatever the payment's current status"""
        result = await self.db.execute(
            select(func.coalesce(func.sum(PaymentAllocation.amount_cents), 0)).where(
                PaymentAllocation.billing_group_id == billing_group_id,
                PaymentAllocation.reversed_at.is_(None),
            )
        )
        return int(result.scalar() or 0)


class InvoiceRepository:
    """Repository for invoices"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def delete_with_line_items(self, invoice_id: str) -> None:
        """Delete invoice line items first, then the invoice (foreign-key order)"""
        await self.db.execute(
            delete(InvoiceLineItem)
            .where(InvoiceLineItem.invoice_id == invoice_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(Invoice).where(Invoice.id == invoice_id).execution_options(synchronize_session=False)
        )
