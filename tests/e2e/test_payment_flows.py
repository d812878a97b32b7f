"""
E2E tests for processor event flows through the HTTP surface.

Flow under test:
- checkout.session.completed / payment_intent.succeeded: payment succeeds, tab is credited,
  billing groups named in the checkout metadata are allocated
- charge.refunded: tab is debited and the allocation reversed
"""

import pytest
from httpx import AsyncClient

from tabs_billing.infrastructure.database.models import BillingGroup, Payment, Tab
from tabs_billing.infrastructure.database.repositories import BillingGroupRepository


async def _post_event(client: AsyncClient, **event) -> dict:
    response = await client.post("/v1/webhooks/payments", json=event)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_checkout_allocates_then_refund_reverses(client: AsyncClient, seed):
    """
    Split checkout across two groups, then refund.
    Expected: balances drop by the split and return to their original values on refund
    """
    tab = await seed.tab(total_cents=40000)
    group_a = await seed.group(tab, 30000)
    group_b = await seed.group(tab, 10000)
    payment = await seed.payment(tab, 10000, status="pending", processor_payment_id="pi_123")

    completed = await _post_event(
        client,
        type="checkout.session.completed",
        id="evt_1",
        processorPaymentId="pi_123",
        metadata={"billingGroupIds": f"{group_a.id},{group_b.id}", "allocationMethod": "proportional"},
    )

    assert completed["handled"] is True
    assert completed["allocated"] is True
    assert completed["status"] == "succeeded"
    assert (await seed.reload(BillingGroup, group_a.id)).current_balance_cents == 22500
    assert (await seed.reload(BillingGroup, group_b.id)).current_balance_cents == 7500
    stored_tab = await seed.reload(Tab, tab.id)
    assert stored_tab.paid_cents == 10000
    assert stored_tab.status == "partial"
    stored_payment = await seed.reload(Payment, payment.id)
    assert stored_payment.metadata_["processorEventId"] == "evt_1"

    refunded = await _post_event(client, type="charge.refunded", id="evt_2", processorPaymentId="pi_123")

    assert refunded["reversed"] is True
    assert refunded["status"] == "refunded"
    assert (await seed.reload(BillingGroup, group_a.id)).current_balance_cents == 30000
    assert (await seed.reload(BillingGroup, group_b.id)).current_balance_cents == 10000
    stored_tab = await seed.reload(Tab, tab.id)
    assert stored_tab.paid_cents == 0
    assert stored_tab.status == "open"
    assert (await seed.reload(Payment, payment.id)).metadata_["reversed"] is True


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_replayed_success_event_allocates_once(client: AsyncClient, seed):
    tab = await seed.tab(total_cents=5000)
    group = await seed.group(tab, 5000)
    payment = await seed.payment(tab, 5000, status="pending")
    event = {
        "type": "payment_intent.succeeded",
        "id": "evt_9",
        "paymentId": payment.id,
        "metadata": {"billingGroupIds": group.id},
    }

    first = await _post_event(client, **event)
    second = await _post_event(client, **event)

    assert first["allocated"] is True
    assert second["allocated"] is False
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 0
    stored_tab = await seed.reload(Tab, tab.id)
    assert stored_tab.paid_cents == 5000
    assert stored_tab.status == "paid"


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_success_without_groups_applies_to_tab(client: AsyncClient, seed):
    tab = await seed.tab(total_cents=5000)
    group = await seed.group(tab, 5000)
    payment = await seed.payment(tab, 2000, status="pending")

    outcome = await _post_event(client, type="payment_intent.succeeded", paymentId=payment.id)

    assert outcome["allocated"] is False
    assert (await seed.reload(Tab, tab.id)).paid_cents == 2000
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 5000


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_partial_refund_keeps_allocation(client: AsyncClient, seed):
    tab = await seed.tab(total_cents=5000)
    group = await seed.group(tab, 5000)
    payment = await seed.payment(tab, 2000, status="pending")
    await _post_event(
        client, type="payment_intent.succeeded", paymentId=payment.id, metadata={"billingGroupIds": group.id}
    )

    outcome = await _post_event(client, type="charge.refunded", paymentId=payment.id, fullyRefunded=False)

    assert outcome["status"] == "partially_refunded"
    assert outcome["reversed"] is False
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 3000


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_unknown_event_ignored(client: AsyncClient):
    outcome = await _post_event(client, type="customer.created", id="evt_x")

    assert outcome["handled"] is False


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_event_for_unknown_payment(client: AsyncClient):
    response = await client.post(
        "/v1/webhooks/payments", json={"type": "payment_intent.succeeded", "paymentId": "missing"}
    )

    assert response.status_code == 404


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_failed_refund_reversal_rolls_back_status(client: AsyncClient, seed, monkeypatch):
    """
    Group credit fails during a full refund.
    Expected: payment stays succeeded, tab keeps its paid amount, a replay completes the refund
    """
    tab = await seed.tab(total_cents=5000)
    group = await seed.group(tab, 5000)
    payment = await seed.payment(tab, 2000, status="pending")
    await _post_event(
        client, type="payment_intent.succeeded", paymentId=payment.id, metadata={"billingGroupIds": group.id}
    )

    async def broken(self, billing_group_id, delta_cents):
        raise RuntimeError("connection reset")

    with monkeypatch.context() as patch:
        patch.setattr(BillingGroupRepository, "adjust_balance", broken)
        response = await client.post("/v1/webhooks/payments", json={"type": "charge.refunded", "paymentId": payment.id})

    assert response.status_code == 500
    stored_payment = await seed.reload(Payment, payment.id)
    assert stored_payment.status == "succeeded"
    assert "reversed" not in stored_payment.metadata_
    assert (await seed.reload(Tab, tab.id)).paid_cents == 2000
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 3000

    replay = await _post_event(client, type="charge.refunded", paymentId=payment.id)

    assert replay["reversed"] is True
    assert (await seed.reload(Tab, tab.id)).paid_cents == 0
    assert (await seed.reload(BillingGroup, group.id)).current_balance_cents == 5000
