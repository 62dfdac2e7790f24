"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
None of these are retried by the engine; retry and escalation are caller decisions.
"""

from uuid import UUID


class QuotaEngineError(Exception):
    """Base exception for all quota engine errors."""

    pass


class DuplicateAssignmentError(QuotaEngineError):
    """Raised when usage rows already exist for an assignment."""

    def __init__(self, assignment_id: UUID) -> None:
        self.assignment_id = assignment_id
        super().__init__(f"Usage already initialized for assignment {assignment_id}")


class UnknownDeliverableError(QuotaEngineError):
    """Raised when an assignment has no usage record for a deliverable type."""

    def __init__(self, assignment_id: UUID, deliverable_type: str) -> None:
        self.assignment_id = assignment_id
        self.deliverable_type = deliverable_type
        super().__init__(
            f"No usage record for deliverable '{deliverable_type}' "
            f"under assignment {assignment_id}"
        )


class UnknownDeliverableTypeError(QuotaEngineError):
    """Raised when a deliverable type key cannot be resolved against the catalog."""

    def __init__(self, type_key: str) -> None:
        self.type_key = type_key
        super().__init__(f"Unknown deliverable type: {type_key}")


class QuotaDepletedError(QuotaEngineError):
    """Raised when a confirmation targets a usage record with nothing remaining."""

    def __init__(self, assignment_id: UUID, deliverable_type: str, used: int, total: int) -> None:
        self.assignment_id = assignment_id
        self.deliverable_type = deliverable_type
        self.used = used
        self.total = total
        super().__init__(
            f"Quota depleted for '{deliverable_type}' under assignment {assignment_id}. "
            f"Used: {used}, Total: {total}"
        )


class InvalidStateError(QuotaEngineError):
    """Raised on an illegal deduction event transition."""

    def __init__(self, event_id: UUID, current_status: str, requested_status: str) -> None:
        self.event_id = event_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Event {event_id} cannot move from {current_status} to {requested_status}"
        )


class PartialAssignmentFailure(QuotaEngineError):
    """
    Raised when the prior assignment was expired but the new one could not be created.

    The client has no active package. Retry only the creation step.
    """

    def __init__(self, client_id: UUID, package_id: UUID, expired_assignment_id: UUID) -> None:
        self.client_id = client_id
        self.package_id = package_id
        self.expired_assignment_id = expired_assignment_id
        super().__init__(
            f"Assignment of package {package_id} to client {client_id} failed after "
            f"expiring assignment {expired_assignment_id}; client has no active package"
        )


class ResourceNotFoundError(QuotaEngineError):
    """Raised when a referenced row doesn't exist."""

    def __init__(self, resource_type: str, resource_id: object) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class DataIntegrityError(QuotaEngineError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class WriteVerificationError(QuotaEngineError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")
