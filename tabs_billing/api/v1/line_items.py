"""PUT /v1/line-items/{line_item_id}/billing-group - Move a line item between billing groups"""

from fastapi import APIRouter, Depends, Request

from tabs_billing.api.dependencies import get_billing_group_service, get_organization_id, get_request_id
from tabs_billing.api.v1.errors import to_http_exception
from tabs_billing.api.v1.schemas import AssignLineItemRequest, LineItemSchema
from tabs_billing.domain.money import format_cents
from tabs_billing.services.billing_group_service import BillingGroupService

router = APIRouter()


@router.put("/line-items/{line_item_id}/billing-group", response_model=LineItemSchema)
async def assign_line_item(
    line_item_id: str,
    request_body: AssignLineItemRequest,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    service: BillingGroupService = Depends(get_billing_group_service),
):
    """
    Assign a line item to a billing group, or unassign it with billingGroupId=null.

    Line items on a tab that has received a succeeded payment need override=true.
    """
    try:
        line_item = await service.assign_line_item(
            line_item_id,
            request_body.billing_group_id,
            organization_id,
            override=request_body.override,
        )
    except Exception as e:
        raise to_http_exception(e, get_request_id(request))

    return LineItemSchema(
        id=line_item.id,
        tab_id=line_item.tab_id,
        billing_group_id=line_item.billing_group_id,
        description=line_item.description,
        quantity=line_item.quantity,
        unit_price=format_cents(line_item.unit_price_cents),
        total=format_cents(line_item.total_cents),
    )
