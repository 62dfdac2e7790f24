"""
Hypothesis Property-Based Tests for quota and utilization policy.

Tests policy invariants without any database.
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from quota_engine import policy
from quota_engine.models.domain import AllocationLine, PackageAssignmentContext, TeamMemberLoad
from quota_engine.models.enums import UtilizationSeverity
from quota_engine.services.workload import WorkloadAllocator

# ============================================================================
# Hypothesis Strategies
# ============================================================================

counts = st.integers(min_value=0, max_value=100_000)
thresholds = st.integers(min_value=0, max_value=100)
percents = st.integers(min_value=0, max_value=500)
hours_per_unit = st.decimals(
    min_value=Decimal("0.25"), max_value=Decimal("40"), places=2, allow_nan=False
)


@st.composite
def allocations(draw):
    """Distinct deliverable types with quantities and hours."""
    keys = draw(
        st.lists(
            st.sampled_from(["design", "video", "caption", "reel", "story", "carousel"]),
            unique=True,
            max_size=6,
        )
    )
    lines = tuple(AllocationLine(key, draw(st.integers(min_value=0, max_value=200))) for key in keys)
    table = {key: draw(hours_per_unit) for key in keys}
    return lines, table


# ============================================================================
# Usage Policy
# ============================================================================


class TestUsagePolicyProperties:
    """Invariants of the usage flags."""

    @given(used=counts, total=counts)
    def test_depleted_iff_nothing_remaining(self, used: int, total: int) -> None:
        assert policy.is_depleted(used, total) == (policy.remaining(used, total) <= 0)

    @given(used=counts, threshold=thresholds)
    def test_zero_total_never_low(self, used: int, threshold: int) -> None:
        assert policy.is_low_usage(used, 0, threshold) is False

    @given(used=counts, total=counts)
    def test_display_remaining_never_negative(self, used: int, total: int) -> None:
        shown = policy.display_remaining(used, total)
        assert shown >= 0
        assert shown == max(0, policy.remaining(used, total))

    @given(total=st.integers(min_value=1, max_value=100_000), threshold=thresholds)
    def test_untouched_allocation_is_not_low(self, total: int, threshold: int) -> None:
        """Nothing used means 100% remaining, which is never below a 0-100 threshold."""
        assert policy.is_low_usage(0, total, threshold) is False

    @given(used=counts, total=st.integers(min_value=1, max_value=100_000))
    def test_percent_used_within_one_of_exact(self, used: int, total: int) -> None:
        exact = Decimal(used) * 100 / Decimal(total)
        assert abs(Decimal(policy.percent_used(used, total)) - exact) <= Decimal("0.5")

    @given(used=counts)
    def test_percent_used_zero_total(self, used: int) -> None:
        assert policy.percent_used(used, 0) == 0


# ============================================================================
# Severity Banding
# ============================================================================


class TestSeverityProperties:
    """Banding is monotonic in the percentage."""

    @given(a=percents, b=percents)
    def test_utilization_severity_monotonic(self, a: int, b: int) -> None:
        order = [UtilizationSeverity.HEALTHY, UtilizationSeverity.WARNING, UtilizationSeverity.CRITICAL]
        low, high = sorted((a, b))
        assert order.index(policy.utilization_severity(low)) <= order.index(
            policy.utilization_severity(high)
        )

    @given(percent=percents)
    def test_utilization_critical_above_80(self, percent: int) -> None:
        is_critical = policy.utilization_severity(percent) is UtilizationSeverity.CRITICAL
        assert is_critical == (percent > 80)


# ============================================================================
# Workload Arithmetic
# ============================================================================


class TestWorkloadProperties:
    """Arithmetic invariants of the allocator."""

    @given(data=allocations(), team=st.integers(min_value=0, max_value=8))
    @settings(max_examples=50)
    def test_sums_match_breakdown(self, data, team: int) -> None:
        lines, table = data
        members = tuple(TeamMemberLoad(f"m{i}", "designer", 50) for i in range(team))
        context = PackageAssignmentContext(uuid4(), None, "Package", lines, members)

        workload = WorkloadAllocator(160).compute_workload(context, table)

        assert workload.total_creative_units == sum(line.quantity for line in lines)
        assert workload.total_hours_required == sum(
            (unit.total_hours for unit in workload.workload_breakdown), Decimal("0")
        )
        assert workload.capacity_hours == team * 160
        assert workload.unstaffed == (team == 0)
        if team == 0:
            assert workload.team_utilization_percent == 0
        assert [u.deliverable_type for u in workload.workload_breakdown] == [
            line.deliverable_type for line in lines
        ]

    @given(data=allocations())
    @settings(max_examples=50)
    def test_line_hours_have_one_fractional_digit(self, data) -> None:
        lines, table = data
        context = PackageAssignmentContext(uuid4(), None, "Package", lines)
        workload = WorkloadAllocator(160).compute_workload(context, table)
        for unit in workload.workload_breakdown:
            assert unit.total_hours == unit.total_hours.quantize(Decimal("0.1"))
            assert abs(unit.total_hours - unit.quantity * unit.hours_per_unit) <= Decimal("0.05")
