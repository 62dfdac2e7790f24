"""
Capacity Aggregator - fleet-wide roll-up of per-assignment workloads.
"""

from collections.abc import Sequence
from decimal import Decimal

from quota_engine import policy
from quota_engine.config import settings
from quota_engine.models.domain import FleetCapacity, PackageWorkload
from quota_engine.services.workload import utilization_percent


def aggregate(
    workloads: Sequence[PackageWorkload],
    assignment_sizes: Sequence[int],
    standard_monthly_capacity_hours: int | None = None,
) -> FleetCapacity:
    """
    Roll workloads up into fleet totals.

    overall_utilization_percent is the plain mean of each workload's own
    percentage, so a small overloaded team weighs as much as a large idle one.
    demand_to_capacity_percent is the ratio of the summed hours.

    Raises:
        ValueError: workloads and assignment_sizes differ in length
    """
    if len(workloads) != len(assignment_sizes):
        raise ValueError(
            f"Got {len(workloads)} workloads but {len(assignment_sizes)} assignment sizes"
        )
    if any(size < 0 for size in assignment_sizes):
        raise ValueError("Assignment sizes cannot be negative")

    capacity_per_member = (
        standard_monthly_capacity_hours
        if standard_monthly_capacity_hours is not None
        else settings.standard_monthly_capacity_hours
    )

    total_demand = sum((w.total_hours_required for w in workloads), Decimal("0"))
    total_capacity = sum(size * capacity_per_member for size in assignment_sizes)

    if workloads:
        mean = Decimal(sum(w.team_utilization_percent for w in workloads)) / len(workloads)
        overall = int(policy.round_half_up(mean))
    else:
        overall = 0

    return FleetCapacity(
        total_demand_hours=total_demand,
        total_capacity_hours=total_capacity,
        overall_utilization_percent=overall,
        demand_to_capacity_percent=utilization_percent(total_demand, total_capacity),
        total_creative_units=sum(w.total_creative_units for w in workloads),
        assignment_count=len(workloads),
        unstaffed_count=sum(1 for w in workloads if w.unstaffed),
    )
