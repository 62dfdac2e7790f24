"""
Metrics Collection with Prometheus.

Exposes quota ledger and workload metrics for monitoring.
"""

from enum import Enum
from typing import Callable

from prometheus_client import Counter, Histogram, Info

from quota_engine.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    OPERATION = "operation"
    OUTCOME = "outcome"
    DELIVERABLE_TYPE = "deliverable_type"
    ERROR_TYPE = "error_type"
    SEVERITY = "severity"


class QuotaMetrics:
    """
    Centralized metrics for the quota engine.

    Covers:
    - Deduction workflow (requests, confirmations, cancellations, refusals)
    - Administrative overrides
    - Assignment lifecycle outcomes
    - Workload computations and utilization distribution
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "quota_engine",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.service_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Deduction Metrics
        # ====================================================================
        self.deductions_total = Counter(
            "quota_deductions_total",
            "Deduction workflow transitions",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.deducted_units = Histogram(
            "quota_deducted_units",
            "Units consumed per confirmed deduction",
            buckets=(1, 2, 3, 5, 10, 20, 50, 100),
        )

        self.confirm_duration_seconds = Histogram(
            "quota_confirm_duration_seconds",
            "Deduction confirmation duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.usage_overrides_total = Counter(
            "quota_usage_overrides_total",
            "Administrative usage overrides",
            ["field"],
        )

        # ====================================================================
        # Assignment Metrics
        # ====================================================================
        self.assignments_total = Counter(
            "quota_assignments_total",
            "Package assignment attempts",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Workload Metrics
        # ====================================================================
        self.workload_computations_total = Counter(
            "quota_workload_computations_total",
            "Workload computations by resulting severity",
            [MetricLabels.SEVERITY],
        )

        self.team_utilization_percent = Histogram(
            "quota_team_utilization_percent",
            "Per-assignment team utilization percentage",
            buckets=(10, 20, 40, 60, 80, 100, 150, 200),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "quota_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_deduction(self, operation: str, outcome: str, quantity: int = 0) -> None:
        """Record a deduction workflow transition."""
        if not settings.metrics_enabled:
            return
        self.deductions_total.labels(operation=operation, outcome=outcome).inc()
        if operation == "confirm" and outcome == "success":
            self.deducted_units.observe(quantity)

    def record_override(self, field: str) -> None:
        """Record an administrative override."""
        if not settings.metrics_enabled:
            return
        self.usage_overrides_total.labels(field=field).inc()

    def record_assignment(self, outcome: str) -> None:
        """Record an assignment lifecycle outcome."""
        if not settings.metrics_enabled:
            return
        self.assignments_total.labels(outcome=outcome).inc()

    def record_workload(self, utilization_percent: int, severity: str) -> None:
        """Record a workload computation."""
        if not settings.metrics_enabled:
            return
        self.workload_computations_total.labels(severity=severity).inc()
        self.team_utilization_percent.observe(utilization_percent)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        if not settings.metrics_enabled:
            return
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = QuotaMetrics()


class track_confirmation:
    """
    Context manager for timing deduction confirmations.

    Usage:
        with track_confirmation():
            await ledger.confirm_deduction(event_id)
    """

    def __init__(self) -> None:
        self.start_time: float = 0.0

    def __enter__(self) -> "track_confirmation":
        """Start tracking."""
        import time

        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record duration."""
        import time

        if settings.metrics_enabled:
            metrics.confirm_duration_seconds.observe(time.perf_counter() - self.start_time)


def get_metrics_handler() -> Callable[[], bytes]:
    """
    Get a Prometheus exposition callable for the host service to mount.

    Usage:
        handler = get_metrics_handler()
        body = handler()
    """
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
