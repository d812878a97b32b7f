"""Billing group endpoints: deletion safety, deletion, default group, balance and deposits"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from tabs_billing.api.dependencies import (
    get_billing_group_service,
    get_deletion_service,
    get_organization_id,
    get_request_id,
    get_user_id,
)
from tabs_billing.api.v1.allocations import billing_group_schema
from tabs_billing.api.v1.errors import to_http_exception
from tabs_billing.api.v1.schemas import (
    BillingGroupSchema,
    BillingGroupSummarySchema,
    DefaultBillingGroupResponse,
    DeleteBillingGroupRequest,
    DeleteBillingGroupResponse,
    DeletionBlockerSchema,
    DeletionValidationResponse,
    DepositRequest,
    DepositResponse,
)
from tabs_billing.domain.exceptions import DeletionBlockedError
from tabs_billing.domain.models import BillingGroupSummary, DeletionBlocker
from tabs_billing.domain.money import format_cents, to_cents
from tabs_billing.services.billing_group_service import BillingGroupService
from tabs_billing.services.deletion_service import BillingGroupDeletionService

router = APIRouter()


def _blocker_schema(blocker: DeletionBlocker) -> DeletionBlockerSchema:
    return DeletionBlockerSchema(type=blocker.type, count=blocker.count, message=blocker.message)


def _summary_schema(summary: BillingGroupSummary) -> BillingGroupSummarySchema:
    return BillingGroupSummarySchema(
        id=summary.id,
        name=summary.name,
        group_type=summary.group_type,
        status=summary.status,
        invoice_id=summary.invoice_id,
    )


@router.get("/billing-groups/{billing_group_id}/validate-deletion", response_model=DeletionValidationResponse)
async def validate_deletion(
    billing_group_id: str,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: BillingGroupDeletionService = Depends(get_deletion_service),
):
    """
    Report whether a billing group can be deleted.

    A blocked group is a normal outcome and still returns 200 with canDelete=false.
    """
    try:
        verdict = await service.validate_deletion(billing_group_id, organization_id)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))

    return DeletionValidationResponse(
        can_delete=verdict.can_delete,
        blockers=[_blocker_schema(b) for b in verdict.blockers],
        warnings=verdict.warnings,
        billing_group=_summary_schema(verdict.billing_group),
    )


@router.delete("/billing-groups/{billing_group_id}", response_model=DeleteBillingGroupResponse)
async def delete_billing_group(
    billing_group_id: str,
    request: Request,
    request_body: Optional[DeleteBillingGroupRequest] = None,
    organization_id: str = Depends(get_organization_id),
    user_id: str = Depends(get_user_id),
    service: BillingGroupDeletionService = Depends(get_deletion_service),
):
    """
    Delete a billing group, moving its line items and dropping a draft invoice.

    Status codes:
        200: Deleted
        400: Line-item reassignment target missing or invalid
        403: Group belongs to another organization
        404: Group does not exist (or vanished since validation)
        409: Blocked by paid invoices, payments or paid line items and not forced
        500: Persistence failure, nothing applied
    """
    request_id = get_request_id(request)
    options = request_body or DeleteBillingGroupRequest()

    if options.force:
        logging.warning(
            "Forced billing group deletion requested",
            extra={
                "request_id": request_id,
                "billing_group_id": billing_group_id,
                "organization_id": organization_id,
                "user_id": user_id,
            },
        )

    try:
        warnings = await service.delete_billing_group(
            billing_group_id,
            organization_id,
            user_id,
            skip_validation=options.force,
            move_line_items_to_group_id=options.move_line_items_to_group_id,
        )
    except DeletionBlockedError as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": str(e),
                "blockers": [_blocker_schema(b).model_dump(by_alias=True) for b in e.blockers],
                "warnings": e.warnings,
                "billingGroup": _summary_schema(e.billing_group).model_dump(by_alias=True)
                if e.billing_group is not None
                else None,
            },
        )
    except Exception as e:
        raise to_http_exception(e, request_id)

    return DeleteBillingGroupResponse(message="Billing group deleted successfully", warnings=warnings)


@router.post("/tabs/{tab_id}/default-billing-group", response_model=DefaultBillingGroupResponse)
async def get_or_create_default_billing_group(
    tab_id: str,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: BillingGroupDeletionService = Depends(get_deletion_service),
):
    try:
        billing_group_id = await service.get_or_create_default_billing_group(tab_id, organization_id)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))
    return DefaultBillingGroupResponse(billing_group_id=billing_group_id)


@router.post("/billing-groups/{billing_group_id}/recalculate", response_model=BillingGroupSchema)
async def recalculate_balance(
    billing_group_id: str,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: BillingGroupService = Depends(get_billing_group_service),
):
    """Rebuild the balance from assigned line items minus live allocations"""
    try:
        group = await service.recalculate_balance(billing_group_id, organization_id)
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))
    return billing_group_schema(group)


@router.post("/billing-groups/{billing_group_id}/deposit", response_model=DepositResponse)
async def apply_deposit(
    billing_group_id: str,
    request_body: DepositRequest,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: BillingGroupService = Depends(get_billing_group_service),
):
    try:
        applied = await service.apply_deposit(billing_group_id, organization_id, to_cents(request_body.amount))
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))
    return DepositResponse(billing_group_id=billing_group_id, applied=format_cents(applied))
