"""
Enumerations shared by the ORM, domain and read models.
"""

from enum import Enum


class AssignmentStatus(str, Enum):
    """Client package assignment status."""

    ACTIVE = "active"
    EXPIRED = "expired"
    PAUSED = "paused"


class DeductionStatus(str, Enum):
    """Usage deduction event status. CONFIRMED and CANCELLED are terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not DeductionStatus.PENDING


class UsageField(str, Enum):
    """Usage record counters that an administrative override may write."""

    USED = "used"
    TOTAL = "total"


class UtilizationSeverity(str, Enum):
    """Alerting band for a utilization or load percentage."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

