"""Unit tests for payment allocation strategies"""

import pytest

from tabs_billing.domain.allocation import (
    allocate_equal,
    allocate_fifo,
    allocate_proportional,
    plan_allocation,
)
from tabs_billing.domain.exceptions import ValidationError
from tabs_billing.domain.models import AllocationMethod, GroupBalance


def _groups(*balances: int) -> list[GroupBalance]:
    return [GroupBalance(billing_group_id=f"g{i}", balance_cents=b) for i, b in enumerate(balances)]


def _amounts(allocations) -> list[int]:
    return [a.amount_cents for a in allocations]


def test_proportional_split_by_balance():
    """$100 across $300 and $100 balances -> $75 and $25"""
    allocations = allocate_proportional(10000, _groups(30000, 10000))

    assert _amounts(allocations) == [7500, 2500]
    assert [a.billing_group_id for a in allocations] == ["g0", "g1"]


def test_fifo_pays_in_caller_order():
    """$120 across [$50, $100] -> $50 then $70"""
    allocations = allocate_fifo(12000, _groups(5000, 10000))

    assert _amounts(allocations) == [5000, 7000]


def test_fifo_stops_when_payment_exhausted():
    """Groups after the payment runs out get nothing"""
    allocations = allocate_fifo(3000, _groups(5000, 10000, 2000))

    assert _amounts(allocations) == [3000]


def test_equal_split_remainder_to_first_group():
    """$100 across three $40 groups -> $33.34, $33.33, $33.33"""
    allocations = allocate_equal(10000, _groups(4000, 4000, 4000))

    assert _amounts(allocations) == [3334, 3333, 3333]


def test_equal_split_capped_by_small_balance():
    """A group with less than its share is filled and the rest moves to later groups"""
    plan = plan_allocation(10000, _groups(1000, 20000), AllocationMethod.EQUAL)

    assert _amounts(plan.allocations) == [1000, 9000]
    assert plan.unallocated_cents == 0


def test_proportional_rounding_is_conserved():
    """Thirds of $100 still add up to exactly $100"""
    plan = plan_allocation(10000, _groups(10000, 10000, 10000), AllocationMethod.PROPORTIONAL)

    assert sum(_amounts(plan.allocations)) == 10000
    assert plan.unallocated_cents == 0


@pytest.mark.parametrize("method", list(AllocationMethod))
@pytest.mark.parametrize(
    "payment, balances",
    [
        (10000, (30000, 10000)),
        (9999, (3333, 3333, 3334)),
        (1, (500, 500, 500)),
        (12345, (10000, 1, 7777, 4567)),
        (50000, (20000, 20000, 20000)),
    ],
)
def test_conservation_and_caps(method, payment, balances):
    """allocated + unallocated == payment, and no group exceeds its balance"""
    groups = _groups(*balances)
    plan = plan_allocation(payment, groups, method)

    assert plan.allocated_cents + plan.unallocated_cents == payment
    caps = {g.billing_group_id: g.balance_cents for g in groups}
    for allocation in plan.allocations:
        assert 0 < allocation.amount_cents <= caps[allocation.billing_group_id]
    if payment <= sum(balances):
        assert plan.unallocated_cents == 0


def test_overpayment_reported_as_unallocated():
    """Excess over the total balance is never pushed into a group"""
    plan = plan_allocation(15000, _groups(5000, 5000), AllocationMethod.PROPORTIONAL)

    assert _amounts(plan.allocations) == [5000, 5000]
    assert plan.unallocated_cents == 5000


def test_proportional_zero_balance_rejected():
    """No outstanding balance -> ValidationError"""
    with pytest.raises(ValidationError, match="No balance to allocate payment to"):
        plan_allocation(10000, _groups(0, 0), AllocationMethod.PROPORTIONAL)


def test_negative_balance_groups_absorb_nothing():
    """Credit groups in the negative are skipped"""
    plan = plan_allocation(5000, _groups(-2000, 8000), AllocationMethod.FIFO)

    assert [a.billing_group_id for a in plan.allocations] == ["g1"]
    assert _amounts(plan.allocations) == [5000]


def test_no_groups_rejected():
    with pytest.raises(ValidationError, match="No billing groups found"):
        plan_allocation(10000, [], AllocationMethod.FIFO)


def test_non_positive_payment_rejected():
    with pytest.raises(ValidationError):
        plan_allocation(0, _groups(1000), AllocationMethod.FIFO)


def test_method_accepts_string_value():
    plan = plan_allocation(10000, _groups(30000, 10000), "proportional")

    assert plan.method is AllocationMethod.PROPORTIONAL
