"""Billing group balance maintenance, deposits and line-item assignment"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabs_billing.domain.exceptions import (
    DatabaseError,
    DomainException,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from tabs_billing.infrastructure.database.models import BillingGroup, LineItem
from tabs_billing.infrastructure.database.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def owning_tab_id(group: BillingGroup) -> Optional[str]:
    """Tab a group belongs to, directly or through its invoice (relations must be loaded)"""
    if group.tab_id:
        return group.tab_id
    return group.invoice.tab_id if group.invoice is not None else None


def owning_organization_id(group: BillingGroup) -> Optional[str]:
    if group.tab is not None:
        return group.tab.organization_id
    if group.invoice is not None and group.invoice.tab is not None:
        return group.invoice.tab.organization_id
    return None


def ensure_owned_by(group: BillingGroup, organization_id: str, action: str = "modify") -> None:
    """Tenant isolation check for any operation on a billing group"""
    if owning_organization_id(group) != organization_id:
        raise UnauthorizedError(f"You do not have permission to {action} this billing group")


async def recalculate_group_balance(uow: UnitOfWork, billing_group_id: str) -> int:
    """Balance = assigned line items - unreversed allocations; only reversal gives money back"""
    items_total = await uow.line_items.total_for_group(billing_group_id)
    allocated = await uow.payments.allocated_to_group(billing_group_id)
    balance = items_total - allocated
    await uow.billing_groups.set_balance(billing_group_id, balance)
    return balance


class BillingGroupService:
    """Operations that rewrite a billing group's balance outside of payment allocation"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def recalculate_balance(self, billing_group_id: str, organization_id: str) -> BillingGroup:
        try:
            async with UnitOfWork(self.session_factory) as uow:
                group = await self._load_owned(uow, billing_group_id, organization_id)
                balance = await recalculate_group_balance(uow, group.id)
                [group] = await uow.billing_groups.refresh_many([group.id])
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Failed to recalculate balance: {e}", extra={"billing_group_id": billing_group_id})
            raise DatabaseError("Failed to recalculate billing group balance", e) from e

        logger.info(
            "Recalculated billing group balance",
            extra={"billing_group_id": billing_group_id, "balance_cents": balance},
        )
        return group

    async def apply_deposit(self, billing_group_id: str, organization_id: str, amount_cents: int) -> int:
        """
        Apply part of a group's deposit, capped at what has not been applied yet.

        Returns:
            Cents actually applied

        Raises:
            ValidationError: Nothing left to apply or non-positive amount
        """
        if amount_cents <= 0:
            raise ValidationError("Deposit amount must be positive")

        try:
            async with UnitOfWork(self.session_factory) as uow:
                group = await self._load_owned(uow, billing_group_id, organization_id)
                await uow.billing_groups.lock_many([group.id])
                available = group.deposit_amount_cents - group.deposit_applied_cents
                applied = min(amount_cents, available)
                if applied <= 0:
                    raise ValidationError("No deposit available to apply")
                await uow.billing_groups.apply_deposit(group.id, applied)
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Failed to apply deposit: {e}", extra={"billing_group_id": billing_group_id})
            raise DatabaseError("Failed to apply deposit", e) from e

        logger.info(
            "Applied deposit to billing group",
            extra={
                "billing_group_id": billing_group_id,
                "applied_cents": applied,
                "remaining_deposit_cents": available - applied,
            },
        )
        return applied

    async def assign_line_item(
        self,
        line_item_id: str,
        billing_group_id: Optional[str],
        organization_id: str,
        override: bool = False,
    ) -> LineItem:
        """
        Move a line item into a billing group (or unassign it with None).

        A line item whose tab has received a succeeded payment is protected and only moves
        with override=True. Balances of both the old and new group are recalculated in the
        same transaction.
        """
        try:
            async with UnitOfWork(self.session_factory) as uow:
                line_item = await uow.line_items.get(line_item_id)
                if line_item is None:
                    raise NotFoundError("Line item not found")
                if line_item.tab.organization_id != organization_id:
                    raise UnauthorizedError("You do not have permission to modify this line item")

                paid_tabs = await uow.payments.tabs_with_succeeded_payments([line_item.tab_id])
                if paid_tabs and not override:
                    raise ValidationError(
                        "Line item is protected by a succeeded payment on its tab; an explicit override is required"
                    )

                if billing_group_id is not None:
                    target = await uow.billing_groups.get_with_relations(billing_group_id)
                    if target is None:
                        raise NotFoundError("Billing group not found")
                    if owning_tab_id(target) != line_item.tab_id:
                        raise ValidationError("Billing group belongs to a different tab")

                previous_group_id = line_item.billing_group_id
                await uow.line_items.set_group(line_item, billing_group_id)
                for group_id in {previous_group_id, billing_group_id} - {None}:
                    await recalculate_group_balance(uow, group_id)
        except DomainException:
            raise
        except Exception as e:
            logger.error(f"Failed to assign line item: {e}", extra={"line_item_id": line_item_id})
            raise DatabaseError("Failed to assign line item", e) from e

        logger.info(
            "Assigned line item to billing group",
            extra={
                "line_item_id": line_item_id,
                "billing_group_id": billing_group_id,
                "previous_billing_group_id": previous_group_id,
                "override": override,
            },
        )
        return line_item

    @staticmethod
    async def _load_owned(uow: UnitOfWork, billing_group_id: str, organization_id: str) -> BillingGroup:
        group = await uow.billing_groups.get_with_relations(billing_group_id)
        if group is None:
            raise NotFoundError("Billing group not found")
        ensure_owned_by(group, organization_id)
        return group
