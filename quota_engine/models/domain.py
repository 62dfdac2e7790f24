"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from quota_engine import policy
from quota_engine.models.enums import (
    AssignmentStatus,
    DeductionStatus,
    UsageField,
    UtilizationSeverity,
)


def ensure_unique_types(deliverable_types: list[str]) -> None:
    seen: set[str] = set()
    for type_key in deliverable_types:
        if type_key in seen:
            raise ValueError(f"Duplicate deliverable type in allocation: {type_key}")
        seen.add(type_key)


# ============================================================================
# Catalog
# ============================================================================


@dataclass(frozen=True)
class DeliverableTypeDefinition:
    """Intent to register a deliverable type in the catalog."""

    type_key: str
    label: str
    unit_label: str
    hours_per_unit: Decimal
    icon: str = ""
    sort_order: int = 0

    def __post_init__(self) -> None:
        """Validate catalog entry."""
        if not self.type_key or not self.type_key.strip():
            raise ValueError("type_key cannot be empty")
        if not self.label:
            raise ValueError("label cannot be empty")
        if Decimal(self.hours_per_unit) <= 0:
            raise ValueError(f"hours_per_unit must be positive: {self.hours_per_unit}")


@dataclass(frozen=True)
class DeliverableTypeData:
    """Immutable catalog entry snapshot."""

    id: UUID
    type_key: str
    label: str
    unit_label: str
    hours_per_unit: Decimal
    icon: str
    sort_order: int
    is_active: bool


@dataclass(frozen=True)
class ServiceCategoryData:
    """Immutable service category snapshot."""

    id: UUID
    name: str
    icon: str
    color: str
    description: str
    sort_order: int
    is_active: bool


# ============================================================================
# Package Templates
# ============================================================================


@dataclass(frozen=True)
class PackageFeatureSpec:
    """One deliverable allocation line of a package."""

    deliverable_type: str
    total_allocated: int
    unit_label: str = ""
    label: str = ""
    warning_threshold: int | None = None  # None takes the configured default
    auto_deduction: bool = True

    def __post_init__(self) -> None:
        """Validate allocation line."""
        if not self.deliverable_type:
            raise ValueError("deliverable_type cannot be empty")
        if self.total_allocated < 0:
            raise ValueError(f"total_allocated cannot be negative: {self.total_allocated}")
        if self.warning_threshold is not None and not 0 <= self.warning_threshold <= 100:
            raise ValueError(f"warning_threshold must be 0-100: {self.warning_threshold}")


@dataclass(frozen=True)
class PackageTemplateIntent:
    """Package template before persistence."""

    name: str
    tier: str
    plan_type: str
    monthly_fee: Decimal
    deliverables: tuple[PackageFeatureSpec, ...]
    category: str | None = None
    currency: str = "BDT"
    platform_count: int = 1
    correction_limit: int = 2
    description: str = ""
    features: tuple[str, ...] = ()
    recommended: bool = False

    def __post_init__(self) -> None:
        """Validate template constraints."""
        if not self.name:
            raise ValueError("Package name cannot be empty")
        if Decimal(self.monthly_fee) < 0:
            raise ValueError(f"monthly_fee cannot be negative: {self.monthly_fee}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")
        if self.platform_count < 0:
            raise ValueError(f"platform_count cannot be negative: {self.platform_count}")
        if self.correction_limit < 0:
            raise ValueError(f"correction_limit cannot be negative: {self.correction_limit}")
        ensure_unique_types([d.deliverable_type for d in self.deliverables])


@dataclass(frozen=True)
class PackageTemplateData:
    """Immutable package template snapshot with its allocations in order."""

    id: UUID
    name: str
    tier: str
    plan_type: str
    category: str | None
    monthly_fee: Decimal
    currency: str
    platform_count: int
    correction_limit: int
    description: str
    features: tuple[str, ...]
    recommended: bool
    is_active: bool
    deliverables: tuple[PackageFeatureSpec, ...]
    created_at: datetime


# ============================================================================
# Client Package Assignments
# ============================================================================


@dataclass(frozen=True)
class AssignmentMeta:
    """Assignment details supplied by the client-management collaborator."""

    start_date: date
    renewal_date: date | None = None
    custom_monthly_fee: Decimal | None = None
    notes: str | None = None
    custom_deliverables: tuple[PackageFeatureSpec, ...] | None = None

    def __post_init__(self) -> None:
        """Validate assignment details."""
        if self.renewal_date is not None and self.renewal_date < self.start_date:
            raise ValueError(
                f"renewal_date {self.renewal_date} precedes start_date {self.start_date}"
            )
        if self.custom_monthly_fee is not None and Decimal(self.custom_monthly_fee) < 0:
            raise ValueError(f"custom_monthly_fee cannot be negative: {self.custom_monthly_fee}")
        if self.custom_deliverables is not None:
            ensure_unique_types([d.deliverable_type for d in self.custom_deliverables])


@dataclass(frozen=True)
class ClientPackageData:
    """Immutable client package assignment snapshot."""

    id: UUID
    client_id: UUID
    package_id: UUID
    start_date: date
    renewal_date: date | None
    custom_monthly_fee: Decimal | None
    notes: str | None
    status: AssignmentStatus
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Quota Ledger
# ============================================================================


@dataclass(frozen=True)
class UsageRecordData:
    """Used-vs-allocated counter for one deliverable type under one assignment."""

    assignment_id: UUID
    deliverable_type: str
    label: str
    unit_label: str
    used: int
    total: int
    warning_threshold: int
    auto_deduction: bool

    @property
    def remaining(self) -> int:
        """Remaining balance, clamped at zero for display."""
        return policy.display_remaining(self.used, self.total)

    @property
    def is_low(self) -> bool:
        return policy.is_low_usage(self.used, self.total, self.warning_threshold)

    @property
    def is_depleted(self) -> bool:
        return policy.is_depleted(self.used, self.total)

    @property
    def percent_used(self) -> int:
        return policy.percent_used(self.used, self.total)


@dataclass(frozen=True)
class DeductionIntent:
    """Request to consume quota - immutable intent."""

    assignment_id: UUID
    deliverable_type: str
    quantity: int
    requested_by: str
    deliverable_name: str | None = None

    def __post_init__(self) -> None:
        """Validate deduction constraints."""
        if self.quantity <= 0:
            raise ValueError(f"Deduction quantity must be positive: {self.quantity}")
        if not self.deliverable_type:
            raise ValueError("deliverable_type cannot be empty")
        if not self.requested_by:
            raise ValueError("requested_by cannot be empty")


@dataclass(frozen=True)
class DeductionEventData:
    """Immutable deduction event snapshot."""

    event_id: UUID
    assignment_id: UUID
    deliverable_type: str
    deliverable_name: str
    quantity: int
    status: DeductionStatus
    requested_by: str
    resolved_by: str | None
    created_at: datetime
    resolved_at: datetime | None


@dataclass(frozen=True)
class UsageOverride:
    """Administrative correction that bypasses the event workflow."""

    assignment_id: UUID
    deliverable_type: str
    field: UsageField
    value: int

    def __post_init__(self) -> None:
        """Only non-negative values are accepted."""
        if self.value < 0:
            raise ValueError(f"Override value cannot be negative: {self.value}")


# ============================================================================
# Workload
# ============================================================================


@dataclass(frozen=True)
class TeamMemberLoad:
    """A team member staffed on an assignment, as reported by team management."""

    member_id: str
    role: str
    current_load_percent: int
    recommended: bool = False
    member_name: str | None = None

    @property
    def load_severity(self) -> UtilizationSeverity:
        return policy.member_load_severity(self.current_load_percent)


@dataclass(frozen=True)
class AllocationLine:
    """Deliverable quantity contracted under an active package."""

    deliverable_type: str
    quantity: int
    label: str = ""

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(f"Allocation quantity cannot be negative: {self.quantity}")


@dataclass(frozen=True)
class PackageAssignmentContext:
    """Client + package + staffed team, the input of a workload computation."""

    client_id: UUID
    assignment_id: UUID | None
    package_name: str
    allocations: tuple[AllocationLine, ...]
    assigned_team_members: tuple[TeamMemberLoad, ...] = ()

    def __post_init__(self) -> None:
        ensure_unique_types([line.deliverable_type for line in self.allocations])

    @property
    def team_size(self) -> int:
        return len(self.assigned_team_members)

    @classmethod
    def from_usage(
        cls,
        client_id: UUID,
        assignment_id: UUID,
        package_name: str,
        records: list[UsageRecordData],
        members: tuple[TeamMemberLoad, ...] = (),
    ) -> "PackageAssignmentContext":
        """Build a context whose quantities are each record's allocated total."""
        return cls(
            client_id=client_id,
            assignment_id=assignment_id,
            package_name=package_name,
            allocations=tuple(
                AllocationLine(
                    deliverable_type=record.deliverable_type,
                    quantity=record.total,
                    label=record.label,
                )
                for record in records
            ),
            assigned_team_members=members,
        )


@dataclass(frozen=True)
class WorkloadUnit:
    """Hours contributed by one allocation line."""

    deliverable_type: str
    category: str
    quantity: int
    hours_per_unit: Decimal
    total_hours: Decimal


@dataclass(frozen=True)
class PackageWorkload:
    """Derived demand/capacity figures for one staffed assignment."""

    client_id: UUID
    assignment_id: UUID | None
    package_name: str
    total_creative_units: int
    total_hours_required: Decimal
    capacity_hours: int
    team_size: int
    team_utilization_percent: int
    unstaffed: bool
    workload_breakdown: tuple[WorkloadUnit, ...] = field(default_factory=tuple)

    @property
    def total_hours_display(self) -> int:
        return policy.floor_hours(self.total_hours_required)

    @property
    def severity(self) -> UtilizationSeverity:
        return policy.utilization_severity(self.team_utilization_percent)


@dataclass(frozen=True)
class FleetCapacity:
    """
    Fleet-wide roll-up of workloads.

    overall_utilization_percent is the unweighted mean of per-assignment
    percentages; demand_to_capacity_percent is the ratio of the sums.
    """

    total_demand_hours: Decimal
    total_capacity_hours: int
    overall_utilization_percent: int
    demand_to_capacity_percent: int
    total_creative_units: int
    assignment_count: int
    unstaffed_count: int

    @property
    def severity(self) -> UtilizationSeverity:
        return policy.utilization_severity(self.overall_utilization_percent)
