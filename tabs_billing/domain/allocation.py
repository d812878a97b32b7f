"""Payment allocation strategies - split one payment across billing groups"""

from typing import Callable, Dict, List, Sequence
from tabs_billing.domain.models import AllocationMethod, AllocationPlan, GroupAllocation, GroupBalance
from tabs_billing.domain.exceptions import ValidationError
from tabs_billing.domain.money import proportional_share

AllocationStrategy = Callable[[int, Sequence[GroupBalance]], List[GroupAllocation]]


def _headroom(group: GroupBalance) -> int:
    # Credit groups can carry a negative balance; they never absorb payment
    return max(group.balance_cents, 0)


def _reconcile_remainder(
    allocations: List[GroupAllocation],
    groups: Sequence[GroupBalance],
    remaining: int,
) -> int:
    """
    Push leftover cents into already-allocated groups, first group first.

    When every allocated group is full (or shares rounded down to nothing), groups that got
    no allocation take the rest in order. A group never receives more than its balance.
    Returns the cents that could not be placed (payment larger than the total outstanding
    balance).
    """
    balances = {g.billing_group_id: _headroom(g) for g in groups}
    for allocation in allocations:
        if remaining <= 0:
            break
        room = balances[allocation.billing_group_id] - allocation.amount_cents
        extra = min(room, remaining)
        if extra > 0:
            allocation.amount_cents += extra
            remaining -= extra

    allocated_ids = {a.billing_group_id for a in allocations}
    for group in groups:
        if remaining <= 0:
            break
        if group.billing_group_id in allocated_ids:
            continue
        extra = min(balances[group.billing_group_id], remaining)
        if extra > 0:
            allocations.append(GroupAllocation(billing_group_id=group.billing_group_id, amount_cents=extra))
            remaining -= extra
    return remaining


def allocate_proportional(payment_cents: int, groups: Sequence[GroupBalance]) -> List[GroupAllocation]:
    """
    Split a payment in proportion to each group's outstanding balance.

    Each share is rounded half-up to the cent and capped at the group's balance and at what
    is left of the payment. Rounding leftovers go to the first allocated group.

    Example:
        $100.00 across A=$300.00, B=$100.00 -> A=$75.00, B=$25.00

    Raises:
        ValidationError: If the groups have no outstanding balance
    """
    total_balance = sum(_headroom(g) for g in groups)
    if total_balance <= 0:
        raise ValidationError("No balance to allocate payment to")

    remaining = payment_cents
    allocations: List[GroupAllocation] = []
    for group in groups:
        if remaining <= 0:
            break
        target = proportional_share(payment_cents, _headroom(group), total_balance)
        amount = min(target, _headroom(group), remaining)
        if amount > 0:
            allocations.append(GroupAllocation(billing_group_id=group.billing_group_id, amount_cents=amount))
            remaining -= amount

    _reconcile_remainder(allocations, groups, remaining)
    return allocations


def allocate_fifo(payment_cents: int, groups: Sequence[GroupBalance]) -> List[GroupAllocation]:
    """
    Pay groups in the order given, each up to its full balance.

    Example:
        $120.00 across [A=$50.00, B=$100.00] -> A=$50.00, B=$70.00
    """
    remaining = payment_cents
    allocations: List[GroupAllocation] = []
    for group in groups:
        if remaining <= 0:
            break
        amount = min(_headroom(group), remaining)
        if amount > 0:
            allocations.append(GroupAllocation(billing_group_id=group.billing_group_id, amount_cents=amount))
            remaining -= amount
    return allocations


def allocate_equal(payment_cents: int, groups: Sequence[GroupBalance]) -> List[GroupAllocation]:
    """
    Split a payment evenly, flooring each share to the cent.

    Shares are capped by balance; leftover cents go to the first allocated group.

    Example:
        $100.00 across three groups of $40.00 -> [$33.34, $33.33, $33.33]
    """
    if not groups:
        return []

    target = payment_cents // len(groups)
    remaining = payment_cents
    allocations: List[GroupAllocation] = []
    for group in groups:
        if remaining <= 0:
            break
        amount = min(target, _headroom(group), remaining)
        if amount > 0:
            allocations.append(GroupAllocation(billing_group_id=group.billing_group_id, amount_cents=amount))
            remaining -= amount

    _reconcile_remainder(allocations, groups, remaining)
    return allocations


ALLOCATION_STRATEGIES: Dict[AllocationMethod, AllocationStrategy] = {
    AllocationMethod.PROPORTIONAL: allocate_proportional,
    AllocationMethod.FIFO: allocate_fifo,
    AllocationMethod.EQUAL: allocate_equal,
}


def plan_allocation(
    payment_cents: int,
    groups: Sequence[GroupBalance],
    method: AllocationMethod = AllocationMethod.PROPORTIONAL,
) -> AllocationPlan:
    """
    Main entry point: compute how a payment is distributed over billing groups.

    Guarantees:
    - No group receives more than its pre-allocation balance
    - allocated + unallocated == payment, to the cent
    - unallocated is zero whenever the payment does not exceed the total balance
    """
    if payment_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    if not groups:
        raise ValidationError("No billing groups found")

    strategy = ALLOCATION_STRATEGIES[AllocationMethod(method)]
    allocations = strategy(payment_cents, groups)
    allocated = sum(a.amount_cents for a in allocations)

    return AllocationPlan(
        method=AllocationMethod(method),
        payment_cents=payment_cents,
        allocations=allocations,
        unallocated_cents=payment_cents - allocated,
    )
