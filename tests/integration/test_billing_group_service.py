"""Integration tests for balance recalculation, deposits and line-item assignment"""

import pytest

from tabs_billing.domain.exceptions import NotFoundError, UnauthorizedError, ValidationError
from tabs_billing.infrastructure.database.models import BillingGroup, LineItem, Payment
from tabs_billing.services.allocation_service import PaymentAllocationService
from tabs_billing.services.billing_group_service import BillingGroupService
from tabs_billing.services.payment_event_service import CHARGE_REFUNDED, PaymentEvent, PaymentEventService
from tests.conftest import OTHER_ORG_ID, ORG_ID


@pytest.fixture
def service(session_factory) -> BillingGroupService:
    return BillingGroupService(session_factory)


@pytest.mark.asyncio
async def test_recalculate_from_items_and_allocations(service, seed, session_factory):
    """Balance = assigned items - every unreversed allocation"""
    tab = await seed.tab()
    group = await seed.group(tab, 0)
    await seed.line_item(tab, group, 3000)
    await seed.line_item(tab, group, 2000)
    paid = await seed.payment(tab, 1500, status="succeeded")
    pending = await seed.payment(tab, 500, status="pending")

    allocations = PaymentAllocationService(session_factory)
    await service.recalculate_balance(group.id, ORG_ID)
    await allocations.allocate(paid.id, [group.id])
    await allocations.allocate(pending.id, [group.id])

    recalculated = await service.recalculate_balance(group.id, ORG_ID)

    # Pending payment's allocation still holds its share of the balance
    assert recalculated.current_balance_cents == 3000
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 3000


@pytest.mark.asyncio
async def test_recalculate_ignores_reversed_allocations(service, seed, session_factory):
    tab = await seed.tab()
    group = await seed.group(tab, 1000)
    await seed.line_item(tab, group, 1000)
    payment = await seed.payment(tab, 400)

    allocations = PaymentAllocationService(session_factory)
    await allocations.allocate(payment.id, [group.id])
    await allocations.reverse(payment.id)

    assert (await service.recalculate_balance(group.id, ORG_ID)).current_balance_cents == 1000


@pytest.mark.asyncio
async def test_recalculate_then_reverse_pending_payment(service, seed, session_factory):
    """Reversal after a recalculation restores exactly what the allocation took"""
    tab = await seed.tab()
    group = await seed.group(tab, 10000)
    await seed.line_item(tab, group, 10000)
    payment = await seed.payment(tab, 4000, status="pending")

    allocations = PaymentAllocationService(session_factory)
    await allocations.allocate(payment.id, [group.id])
    assert (await service.recalculate_balance(group.id, ORG_ID)).current_balance_cents == 6000

    await allocations.reverse(payment.id)

    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 10000
    assert (await service.recalculate_balance(group.id, ORG_ID)).current_balance_cents == 10000


@pytest.mark.asyncio
async def test_recalculate_keeps_partially_refunded_allocation(service, seed, session_factory):
    tab = await seed.tab()
    group = await seed.group(tab, 10000)
    await seed.line_item(tab, group, 10000)
    payment = await seed.payment(tab, 4000, status="succeeded")

    await PaymentAllocationService(session_factory).allocate(payment.id, [group.id])
    await PaymentEventService(session_factory).handle(
        PaymentEvent(type=CHARGE_REFUNDED, payment_id=payment.id, fully_refunded=False)
    )

    assert (await seed.reload(Payment, payment.id)).status == "partially_refunded"
    assert (await service.recalculate_balance(group.id, ORG_ID)).current_balance_cents == 6000


@pytest.mark.asyncio
async def test_recalculate_other_organization(service, seed):
    tab = await seed.tab()
    group = await seed.group(tab, 0)

    with pytest.raises(UnauthorizedError):
        await service.recalculate_balance(group.id, OTHER_ORG_ID)
    with pytest.raises(NotFoundError):
        await service.recalculate_balance("missing", ORG_ID)


@pytest.mark.asyncio
async def test_apply_deposit_capped_at_remaining(service, seed):
    tab = await seed.tab()
    group = await seed.group(tab, 0, group_type="deposit", deposit_amount_cents=5000)

    assert await service.apply_deposit(group.id, ORG_ID, 3000) == 3000
    assert await service.apply_deposit(group.id, ORG_ID, 3000) == 2000
    assert (await seed.reload(BillingGroup, group.id)).deposit_applied_cents == 5000

    with pytest.raises(ValidationError, match="No deposit available to apply"):
        await service.apply_deposit(group.id, ORG_ID, 100)


@pytest.mark.asyncio
async def test_apply_deposit_rejects_non_positive(service, seed):
    tab = await seed.tab()
    group = await seed.group(tab, 0, deposit_amount_cents=5000)

    with pytest.raises(ValidationError, match="positive"):
        await service.apply_deposit(group.id, ORG_ID, 0)


@pytest.mark.asyncio
async def test_assign_line_item_recalculates_both_groups(service, seed):
    tab = await seed.tab()
    source = await seed.group(tab, 3000)
    target = await seed.group(tab, 0)
    item = await seed.line_item(tab, source, 3000)

    moved = await service.assign_line_item(item.id, target.id, ORG_ID)

    assert moved.billing_group_id == target.id
    assert (await seed.reload(BillingGroup, source.id)).current_balance_cents == 0
    assert (await seed.reload(BillingGroup, target.id)).current_balance_cents == 3000


@pytest.mark.asyncio
async def test_unassign_line_item(service, seed):
    tab = await seed.tab()
    group = await seed.group(tab, 3000)
    item = await seed.line_item(tab, group, 3000)

    await service.assign_line_item(item.id, None, ORG_ID)

    assert (await seed.reload(LineItem, item.id)).billing_group_id is None
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 0


@pytest.mark.asyncio
async def test_paid_tab_line_item_needs_override(service, seed):
    tab = await seed.tab()
    source = await seed.group(tab, 3000)
    target = await seed.group(tab, 0)
    item = await seed.line_item(tab, source, 3000)
    await seed.payment(tab, 1000, status="succeeded")

    with pytest.raises(ValidationError, match="override"):
        await service.assign_line_item(item.id, target.id, ORG_ID)
    assert (await seed.reload(LineItem, item.id)).billing_group_id == source.id

    await service.assign_line_item(item.id, target.id, ORG_ID, override=True)
    assert (await seed.reload(LineItem, item.id)).billing_group_id == target.id


@pytest.mark.asyncio
async def test_assign_line_item_guards(service, seed):
    tab = await seed.tab()
    other_tab = await seed.tab()
    item = await seed.line_item(tab, None, 1000)
    foreign = await seed.group(other_tab, 0)

    with pytest.raises(NotFoundError, match="Line item not found"):
        await service.assign_line_item("missing", None, ORG_ID)
    with pytest.raises(UnauthorizedError):
        await service.assign_line_item(item.id, None, OTHER_ORG_ID)
    with pytest.raises(NotFoundError, match="Billing group not found"):
        await service.assign_line_item(item.id, "missing", ORG_ID)
    with pytest.raises(ValidationError, match="different tab"):
        await service.assign_line_item(item.id, foreign.id, ORG_ID)
