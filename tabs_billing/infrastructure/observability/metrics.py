"""Prometheus metrics for monitoring allocations, reversals and billing group deletions"""

from typing import List
from prometheus_client import Counter, Histogram

from tabs_billing.domain.models import DeletionBlocker

# Allocation metrics
allocation_counter = Counter(
    "tabs_allocation_total",
    "Payments allocated to billing groups",
    ["method"],  # proportional | fifo | equal
)

allocated_amount_histogram = Histogram(
    "tabs_allocated_amount_dollars",
    "Amount allocated per payment",
    buckets=[10, 50, 100, 250, 500, 1000, 5000, 10000],
)

unallocated_payment_counter = Counter(
    "tabs_unallocated_payment_total",
    "Payments that exceeded the outstanding balance of their billing groups",
)

reversal_counter = Counter(
    "tabs_allocation_reversal_total",
    "Allocations reversed after refunds",
)

# Deletion metrics
deletion_validation_counter = Counter(
    "tabs_deletion_validation_total",
    "Billing group deletion validations",
    ["outcome"],  # deletable | blocked
)

deletion_blocker_counter = Counter(
    "tabs_deletion_blocker_total",
    "Blockers raised against billing group deletions",
    ["type"],  # invoice | payment | line_items
)

deletion_counter = Counter(
    "tabs_billing_group_deleted_total",
    "Billing groups deleted",
    ["mode"],  # validated | forced
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_allocation(method: str, allocated_cents: int, unallocated_cents: int) -> None:
    allocation_counter.labels(method=method).inc()
    allocated_amount_histogram.observe(allocated_cents / 100)
    if unallocated_cents > 0:
        unallocated_payment_counter.inc()


def record_deletion_validation(can_delete: bool, blockers: List[DeletionBlocker]) -> None:
    """Record validation outcome and which rules blocked it"""
    deletion_validation_counter.labels(outcome="deletable" if can_delete else "blocked").inc()
    for blocker in blockers:
        deletion_blocker_counter.labels(type=blocker.type).inc()
