"""
Workload Allocator - converts contracted deliverables into hours and utilization.

Pure computation: no session, no writes. Hours come from the catalog's
hours table, capacity from the configured per-member monthly figure.
"""

from decimal import Decimal

from quota_engine import policy
from quota_engine.config import settings
from quota_engine.exceptions import UnknownDeliverableTypeError
from quota_engine.models.domain import PackageAssignmentContext, PackageWorkload, WorkloadUnit
from quota_engine.observability.logging import get_logger
from quota_engine.observability.metrics import metrics
from quota_engine.services.catalog import HoursTable

logger = get_logger(__name__)


def utilization_percent(hours_required: Decimal, capacity_hours: int) -> int:
    """Required hours as a whole percentage of capacity; 0 when there is no capacity."""
    if capacity_hours <= 0:
        return 0
    return int(policy.round_half_up(hours_required * 100 / Decimal(capacity_hours)))


class WorkloadAllocator:
    """Computes PackageWorkload figures for a staffed assignment."""

    def __init__(self, standard_monthly_capacity_hours: int | None = None) -> None:
        capacity = (
            standard_monthly_capacity_hours
            if standard_monthly_capacity_hours is not None
            else settings.standard_monthly_capacity_hours
        )
        if capacity <= 0:
            raise ValueError(f"standard_monthly_capacity_hours must be positive: {capacity}")
        self.standard_monthly_capacity_hours = capacity

    def compute_workload(
        self, context: PackageAssignmentContext, hours_table: HoursTable
    ) -> PackageWorkload:
        """
        Compute hours required, capacity and utilization for one assignment.

        Raises:
            UnknownDeliverableTypeError: An allocation line has no hours-per-unit entry
        """
        breakdown: list[WorkloadUnit] = []
        for line in context.allocations:
            if line.deliverable_type not in hours_table:
                raise UnknownDeliverableTypeError(line.deliverable_type)

            hours_per_unit = Decimal(hours_table[line.deliverable_type])
            breakdown.append(
                WorkloadUnit(
                    deliverable_type=line.deliverable_type,
                    category=line.label or line.deliverable_type,
                    quantity=line.quantity,
                    hours_per_unit=hours_per_unit,
                    total_hours=policy.round_half_up(
                        line.quantity * hours_per_unit, policy.ONE_DECIMAL
                    ),
                )
            )

        total_hours = sum((unit.total_hours for unit in breakdown), Decimal("0"))
        capacity_hours = context.team_size * self.standard_monthly_capacity_hours
        unstaffed = capacity_hours == 0

        workload = PackageWorkload(
            client_id=context.client_id,
            assignment_id=context.assignment_id,
            package_name=context.package_name,
            total_creative_units=sum(unit.quantity for unit in breakdown),
            total_hours_required=total_hours,
            capacity_hours=capacity_hours,
            team_size=context.team_size,
            team_utilization_percent=utilization_percent(total_hours, capacity_hours),
            unstaffed=unstaffed,
            workload_breakdown=tuple(breakdown),
        )

        if unstaffed and breakdown:
            logger.info(
                "workload_unstaffed",
                client_id=str(context.client_id),
                package_name=context.package_name,
                hours_required=str(total_hours),
            )
        metrics.record_workload(workload.team_utilization_percent, workload.severity.value)
        return workload
