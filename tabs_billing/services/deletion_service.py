"""Billing group deletion: safety validation and the destructive transaction"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabs_billing.domain.deletion import assess_deletion
from tabs_billing.domain.exceptions import (
    DatabaseError,
    DeletionBlockedError,
    DomainException,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from tabs_billing.domain.models import (
    BillingGroupStatus,
    BillingGroupSummary,
    BillingGroupType,
    DeletionFootprint,
    DeletionVerdict,
    InvoiceSnapshot,
    InvoiceStatus,
)
from tabs_billing.infrastructure.database.models import BillingGroup
from tabs_billing.infrastructure.database.unit_of_work import UnitOfWork
from tabs_billing.infrastructure.observability.logging import log_deletion
from tabs_billing.infrastructure.observability.metrics import deletion_counter, record_deletion_validation
from tabs_billing.services.billing_group_service import (
    ensure_owned_by,
    owning_tab_id,
    recalculate_group_balance,
)

logger = logging.getLogger(__name__)


def summarize(group: BillingGroup) -> BillingGroupSummary:
    return BillingGroupSummary(
        id=group.id,
        name=group.name,
        group_type=group.group_type,
        status=group.status,
        invoice_id=group.invoice_id,
    )


async def gather_footprint(uow: UnitOfWork, group: BillingGroup) -> DeletionFootprint:
    """Collect invoice state, succeeded payments and paid/unpaid line items of a group"""
    invoice = None
    if group.invoice is not None:
        invoice = InvoiceSnapshot(
            id=group.invoice.id,
            invoice_number=group.invoice.invoice_number,
            status=group.invoice.status,
            paid_cents=group.invoice.paid_cents or 0,
            total_cents=group.invoice.total_cents or 0,
        )

    succeeded_payments = await uow.payments.count_succeeded_for_group(group.id)

    line_items = await uow.line_items.list_for_group(group.id)
    paid_tabs = await uow.payments.tabs_with_succeeded_payments(item.tab_id for item in line_items)

    return DeletionFootprint(
        billing_group=summarize(group),
        invoice=invoice,
        succeeded_payment_count=succeeded_payments,
        paid_line_item_totals=[item.total_cents for item in line_items if item.tab_id in paid_tabs],
        unpaid_line_item_totals=[item.total_cents for item in line_items if item.tab_id not in paid_tabs],
    )


class BillingGroupDeletionService:
    """
    Guards destruction of billing groups.

    validate_deletion reports blockers without side effects. delete_billing_group re-runs
    the same validation inside its own transaction (state may have changed since the
    caller's check) unless skip_validation is passed explicitly.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def validate_deletion(self, billing_group_id: str, organization_id: str) -> DeletionVerdict:
        """
        Report whether a billing group can be deleted.

        Raises:
            NotFoundError: "Billing group not found"
            UnauthorizedError: Group's tab belongs to another organization
            DatabaseError: Any unexpected persistence failure
        """
        try:
            async with UnitOfWork(self.session_factory) as uow:
                verdict = await self._validate(uow, billing_group_id, organization_id)
        except (ValidationError, UnauthorizedError):
            raise
        except Exception as e:
            logger.error(
                f"Failed to validate billing group deletion: {e}",
                extra={"billing_group_id": billing_group_id, "organization_id": organization_id},
            )
            raise DatabaseError("Failed to validate billing group deletion", e) from e

        record_deletion_validation(verdict.can_delete, verdict.blockers)
        return verdict

    async def delete_billing_group(
        self,
        billing_group_id: str,
        organization_id: str,
        user_id: str,
        skip_validation: bool = False,
        move_line_items_to_group_id: Optional[str] = None,
    ) -> List[str]:
        """
        Delete a billing group atomically and return the validation warnings (none when forced).

        Steps (one transaction):
        1. Re-fetch the group with invoice, line items and tab
        2. Repoint its line items to move_line_items_to_group_id (recalculating its balance),
           or unassign them
        3. Delete a draft invoice with its invoice line items; other invoices are kept
        4. Delete the group

        Raises:
            DeletionBlockedError: Blockers found and skip_validation not set
            NotFoundError: Group vanished before the transaction ran
            ValidationError: Reassignment target missing or on another tab
            UnauthorizedError: Group's tab belongs to another organization
            DatabaseError: Any unexpected persistence failure (nothing is applied)
        """
        log_context = {
            "billing_group_id": billing_group_id,
            "organization_id": organization_id,
            "user_id": user_id,
        }
        warnings: List[str] = []
        try:
            async with UnitOfWork(self.session_factory) as uow:
                await uow.billing_groups.lock_many([billing_group_id])

                if not skip_validation:
                    verdict = await self._validate(uow, billing_group_id, organization_id)
                    if not verdict.can_delete:
                        messages = "; ".join(b.message for b in verdict.blockers)
                        raise DeletionBlockedError(
                            f"Cannot delete billing group: {messages}",
                            verdict.blockers,
                            verdict.billing_group,
                            verdict.warnings,
                        )
                    warnings = verdict.warnings

                group = await uow.billing_groups.get_with_relations(billing_group_id)
                if group is None:
                    raise NotFoundError("Billing group not found")
                ensure_owned_by(group, organization_id, "delete")

                target_id = move_line_items_to_group_id
                if target_id is not None:
                    await self._check_move_target(uow, group, target_id)

                moved = await uow.line_items.reassign_group(group.id, target_id)
                if moved and target_id is not None:
                    await recalculate_group_balance(uow, target_id)
                if moved:
                    logger.info(
                        "Moved line items from deleted billing group",
                        extra={**log_context, "line_item_count": moved, "target_group_id": target_id},
                    )

                invoice = group.invoice
                if invoice is not None and invoice.status == InvoiceStatus.DRAFT.value:
                    await uow.billing_groups.detach_invoice(group.id)
                    await uow.invoices.delete_with_line_items(invoice.id)
                    logger.info(
                        "Deleted draft invoice with billing group",
                        extra={**log_context, "invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
                    )

                if await uow.billing_groups.delete(group.id) == 0:
                    raise NotFoundError("Billing group not found")

        except (ValidationError, UnauthorizedError) as e:
            logger.warning(f"Billing group deletion refused: {e}", extra=log_context)
            raise
        except Exception as e:
            logger.error(f"Failed to delete billing group: {e}", extra=log_context)
            raise DatabaseError("Failed to delete billing group", e) from e

        deletion_counter.labels(mode="forced" if skip_validation else "validated").inc()
        log_deletion(billing_group_id, organization_id, user_id, skip_validation, moved, target_id)
        return warnings

    async def get_or_create_default_billing_group(self, tab_id: str, organization_id: str) -> str:
        """
        Return the id of the tab's single default group, creating it if missing.

        The tab row is locked first so concurrent callers cannot both insert.
        """
        created = False
        try:
            async with UnitOfWork(self.session_factory) as uow:
                tab = await uow.tabs.get(tab_id, for_update=True)
                if tab is None:
                    raise NotFoundError("Tab not found")
                if tab.organization_id != organization_id:
                    raise UnauthorizedError("You do not have permission to modify this tab")

                group = await uow.billing_groups.find_default(tab_id)
                if group is None:
                    group = await uow.billing_groups.create(
                        tab_id=tab_id,
                        group_number="DEFAULT",
                        name="Default Group",
                        group_type=BillingGroupType.DEFAULT.value,
                        status=BillingGroupStatus.ACTIVE.value,
                    )
                    created = True
                group_id = group.id
        except DomainException:
            raise
        except Exception as e:
            logger.error(
                f"Failed to get or create default billing group: {e}",
                extra={"tab_id": tab_id, "organization_id": organization_id},
            )
            raise DatabaseError("Failed to get or create default billing group", e) from e

        if created:
            logger.info(
                "Created default billing group",
                extra={"tab_id": tab_id, "organization_id": organization_id, "billing_group_id": group_id},
            )
        return group_id

    @staticmethod
    async def _validate(uow: UnitOfWork, billing_group_id: str, organization_id: str) -> DeletionVerdict:
        group = await uow.billing_groups.get_with_relations(billing_group_id)
        if group is None:
            raise NotFoundError("Billing group not found")
        ensure_owned_by(group, organization_id, "delete")
        return assess_deletion(await gather_footprint(uow, group))

    @staticmethod
    async def _check_move_target(uow: UnitOfWork, group: BillingGroup, target_id: str) -> None:
        if target_id == group.id:
            raise ValidationError("Cannot move line items into the billing group being deleted")
        target = await uow.billing_groups.get_with_relations(target_id)
        if target is None:
            raise ValidationError("Target billing group for line items not found")
        if owning_tab_id(target) != owning_tab_id(group):
            raise ValidationError("Target billing group belongs to a different tab")
