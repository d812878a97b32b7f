"""Deletion safety rules for billing groups"""

from typing import List
from tabs_billing.domain.models import (
    AUDIT_PROTECTED_INVOICE_STATUSES,
    DeletionBlocker,
    DeletionFootprint,
    DeletionVerdict,
    InvoiceStatus,
)
from tabs_billing.domain.money import format_dollars


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def invoice_blocker(footprint: DeletionFootprint) -> List[DeletionBlocker]:
    """A paid (even partially) or audit-protected invoice blocks deletion"""
    invoice = footprint.invoice
    if invoice is None:
        return []

    reasons = []
    if invoice.paid_cents > 0:
        reasons.append(
            f"Cannot delete billing group with paid invoice ({invoice.invoice_number}). "
            f"Amount paid: {format_dollars(invoice.paid_cents)}."
        )
    if invoice.status in AUDIT_PROTECTED_INVOICE_STATUSES:
        reasons.append(
            f"Invoice {invoice.invoice_number} is in '{invoice.status}' status and must be "
            "preserved for audit purposes."
        )
    if not reasons:
        return []
    return [DeletionBlocker(type="invoice", count=1, message=" ".join(reasons))]


def payment_blocker(footprint: DeletionFootprint) -> List[DeletionBlocker]:
    count = footprint.succeeded_payment_count
    if count <= 0:
        return []
    return [
        DeletionBlocker(
            type="payment",
            count=count,
            message=(
                f"Cannot delete billing group with {_plural(count, 'successful payment')}. "
                "These must be preserved for financial records."
            ),
        )
    ]


def line_items_blocker(footprint: DeletionFootprint) -> List[DeletionBlocker]:
    paid = footprint.paid_line_item_totals
    if not paid:
        return []
    return [
        DeletionBlocker(
            type="line_items",
            count=len(paid),
            message=(
                f"Cannot delete billing group with {_plural(len(paid), 'paid line item')} "
                f"totaling {format_dollars(sum(paid))}. These must be preserved for audit purposes."
            ),
        )
    ]


def deletion_warnings(footprint: DeletionFootprint) -> List[str]:
    """Non-blocking notices: draft invoice removal and orphaned unpaid line items"""
    warnings = []
    invoice = footprint.invoice
    if invoice is not None and invoice.status == InvoiceStatus.DRAFT.value and invoice.total_cents > 0:
        warnings.append(
            f"Invoice {invoice.invoice_number} is in draft status with amount "
            f"{format_dollars(invoice.total_cents)}. It will be deleted."
        )

    unpaid = footprint.unpaid_line_item_totals
    if unpaid:
        warnings.append(
            f"{_plural(len(unpaid), 'unpaid line item')} totaling {format_dollars(sum(unpaid))} "
            "will be unassigned unless moved to another group such as the default billing group."
        )
    return warnings


def assess_deletion(footprint: DeletionFootprint) -> DeletionVerdict:
    """
    Decide whether a billing group may be deleted.

    Blockers are additive; the group is deletable only when none apply:
    - invoice: invoice has money paid against it, or is paid/overdue/uncollectible
    - payment: succeeded payments recorded directly against the group
    - line_items: the group's line items sit on a tab that has received a succeeded payment

    Warnings never block.
    """
    blockers = invoice_blocker(footprint) + payment_blocker(footprint) + line_items_blocker(footprint)
    return DeletionVerdict(
        can_delete=not blockers,
        blockers=blockers,
        warnings=deletion_warnings(footprint),
        billing_group=footprint.billing_group,
    )
