"""
Read Models - Pydantic models handed to UI and reporting collaborators.

NO DICTIONARIES - All data structures are strongly typed.
Hour figures are serialized as strings to keep Decimal precision.
"""

from uuid import UUID

from pydantic import BaseModel

from quota_engine.models.domain import (
    DeductionEventData,
    FleetCapacity,
    PackageWorkload,
    UsageRecordData,
)
from quota_engine.models.enums import DeductionStatus, UtilizationSeverity

# ============================================================================
# Quota Ledger
# ============================================================================


class UsageRecordResponse(BaseModel):
    """One used-vs-allocated counter."""

    deliverable_type: str
    label: str
    unit_label: str
    used: int
    total: int
    remaining: int  # Clamped at zero
    percent_used: int
    warning_threshold: int
    is_low: bool
    is_depleted: bool
    auto_deduction: bool

    @classmethod
    def from_domain(cls, record: UsageRecordData) -> "UsageRecordResponse":
        return cls(
            deliverable_type=record.deliverable_type,
            label=record.label,
            unit_label=record.unit_label,
            used=record.used,
            total=record.total,
            remaining=record.remaining,
            percent_used=record.percent_used,
            warning_threshold=record.warning_threshold,
            is_low=record.is_low,
            is_depleted=record.is_depleted,
            auto_deduction=record.auto_deduction,
        )


class UsageStatusResponse(BaseModel):
    """Usage snapshot for one assignment."""

    assignment_id: UUID
    records: list[UsageRecordResponse]
    low_count: int
    depleted_count: int

    @classmethod
    def from_records(
        cls, assignment_id: UUID, records: list[UsageRecordData]
    ) -> "UsageStatusResponse":
        return cls(
            assignment_id=assignment_id,
            records=[UsageRecordResponse.from_domain(r) for r in records],
            low_count=sum(1 for r in records if r.is_low),
            depleted_count=sum(1 for r in records if r.is_depleted),
        )


class DeductionEventResponse(BaseModel):
    """Single deduction event."""

    event_id: UUID
    assignment_id: UUID
    deliverable_type: str
    deliverable_name: str
    quantity: int
    status: DeductionStatus
    requested_by: str
    resolved_by: str | None = None
    created_at: str  # ISO 8601 timestamp
    resolved_at: str | None = None

    @classmethod
    def from_domain(cls, event: DeductionEventData) -> "DeductionEventResponse":
        return cls(
            event_id=event.event_id,
            assignment_id=event.assignment_id,
            deliverable_type=event.deliverable_type,
            deliverable_name=event.deliverable_name,
            quantity=event.quantity,
            status=event.status,
            requested_by=event.requested_by,
            resolved_by=event.resolved_by,
            created_at=event.created_at.isoformat(),
            resolved_at=event.resolved_at.isoformat() if event.resolved_at else None,
        )


# ============================================================================
# Workload
# ============================================================================


class WorkloadUnitResponse(BaseModel):
    """Hours contributed by one allocation line."""

    deliverable_type: str
    category: str
    quantity: int
    hours_per_unit: str
    total_hours: str


class PackageWorkloadResponse(BaseModel):
    """Workload figures for one staffed assignment."""

    client_id: UUID
    assignment_id: UUID | None = None
    package_name: str
    total_creative_units: int
    total_hours_required: str
    total_hours_display: int  # Floored whole hours
    capacity_hours: int
    team_size: int
    team_utilization_percent: int
    severity: UtilizationSeverity
    unstaffed: bool
    workload_breakdown: list[WorkloadUnitResponse]

    @classmethod
    def from_domain(cls, workload: PackageWorkload) -> "PackageWorkloadResponse":
        return cls(
            client_id=workload.client_id,
            assignment_id=workload.assignment_id,
            package_name=workload.package_name,
            total_creative_units=workload.total_creative_units,
            total_hours_required=str(workload.total_hours_required),
            total_hours_display=workload.total_hours_display,
            capacity_hours=workload.capacity_hours,
            team_size=workload.team_size,
            team_utilization_percent=workload.team_utilization_percent,
            severity=workload.severity,
            unstaffed=workload.unstaffed,
            workload_breakdown=[
                WorkloadUnitResponse(
                    deliverable_type=unit.deliverable_type,
                    category=unit.category,
                    quantity=unit.quantity,
                    hours_per_unit=str(unit.hours_per_unit),
                    total_hours=str(unit.total_hours),
                )
                for unit in workload.workload_breakdown
            ],
        )


class FleetCapacityResponse(BaseModel):
    """
    Fleet-wide roll-up.

    overall_utilization_percent: mean of per-assignment percentages (dashboard figure)
    demand_to_capacity_percent: total demand hours over total capacity hours
    """

    total_demand_hours: str
    total_capacity_hours: int
    overall_utilization_percent: int
    demand_to_capacity_percent: int
    severity: UtilizationSeverity
    total_creative_units: int
    assignment_count: int
    unstaffed_count: int

    @classmethod
    def from_domain(cls, fleet: FleetCapacity) -> "FleetCapacityResponse":
        return cls(
            total_demand_hours=str(fleet.total_demand_hours),
            total_capacity_hours=fleet.total_capacity_hours,
            overall_utilization_percent=fleet.overall_utilization_percent,
            demand_to_capacity_percent=fleet.demand_to_capacity_percent,
            severity=fleet.severity,
            total_creative_units=fleet.total_creative_units,
            assignment_count=fleet.assignment_count,
            unstaffed_count=fleet.unstaffed_count,
        )
