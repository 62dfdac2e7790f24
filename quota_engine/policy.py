"""
Quota and utilization policy - pure functions with exact breakpoints.

All percentages round half-up, so 12.5 becomes 13.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from quota_engine.models.enums import UtilizationSeverity

UTILIZATION_CRITICAL_ABOVE = 80
UTILIZATION_WARNING_ABOVE = 60

MEMBER_LOAD_CRITICAL_ABOVE = 85
MEMBER_LOAD_WARNING_ABOVE = 70

ONE_DECIMAL = Decimal("0.1")


def round_half_up(value: Decimal | int, exponent: Decimal = Decimal("1")) -> Decimal:
    """Round to the given exponent, halves away from zero."""
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def floor_hours(value: Decimal) -> int:
    """Whole hours for display; the fractional value is kept for aggregation."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_FLOOR))


def remaining(used: int, total: int) -> int:
    """Raw remaining balance. Negative when over-allocated."""
    return total - used


def display_remaining(used: int, total: int) -> int:
    """Remaining balance clamped at zero for display."""
    return max(0, total - used)


def is_depleted(used: int, total: int) -> bool:
    """Nothing left to confirm against."""
    return total - used <= 0


def is_low_usage(used: int, total: int, warning_threshold: int) -> bool:
    """
    Remaining share has dropped below the warning threshold.

    A zero allocation is never low.
    """
    if total <= 0:
        return False
    # (remaining / total) * 100 < threshold, kept in integers
    return (total - used) * 100 < warning_threshold * total


def percent_used(used: int, total: int) -> int:
    """Share consumed as a whole percentage; 0 when nothing is allocated."""
    if total <= 0:
        return 0
    return int(round_half_up(Decimal(used) * 100 / Decimal(total)))


def utilization_severity(percent: int) -> UtilizationSeverity:
    """Band a team utilization figure: >80 critical, 61-80 warning, <=60 healthy."""
    if percent > UTILIZATION_CRITICAL_ABOVE:
        return UtilizationSeverity.CRITICAL
    if percent > UTILIZATION_WARNING_ABOVE:
        return UtilizationSeverity.WARNING
    return UtilizationSeverity.HEALTHY


def member_load_severity(load_percent: int) -> UtilizationSeverity:
    """Band an individual team member's current load: >85 critical, 71-85 warning."""
    if load_percent > MEMBER_LOAD_CRITICAL_ABOVE:
        return UtilizationSeverity.CRITICAL
    if load_percent > MEMBER_LOAD_WARNING_ABOVE:
        return UtilizationSeverity.WARNING
    return UtilizationSeverity.HEALTHY
