"""
Quota Ledger Service - usage counters and the deduction event workflow.

Every counter change goes through one of two doors:
1. A confirmed deduction event (conditional atomic increment)
2. An administrative override

Confirmation follows the pattern:
1. Claim the event (pending -> confirmed) with a conditional UPDATE
2. Increment used with a conditional UPDATE that re-checks depletion
3. Roll both back if the increment is refused
4. Read back and verify before commit
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine import policy
from quota_engine.config import settings
from quota_engine.db.models import ClientPackage, PackageUsage, UsageDeductionEvent, utc_now
from quota_engine.exceptions import (
    DuplicateAssignmentError,
    InvalidStateError,
    QuotaDepletedError,
    ResourceNotFoundError,
    UnknownDeliverableError,
    WriteVerificationError,
)
from quota_engine.models.domain import (
    DeductionEventData,
    DeductionIntent,
    PackageFeatureSpec,
    PackageTemplateData,
    UsageOverride,
    UsageRecordData,
)
from quota_engine.models.enums import DeductionStatus, UsageField
from quota_engine.observability.logging import get_logger
from quota_engine.observability.metrics import metrics, track_confirmation
from quota_engine.observability.tracing import trace_operation

logger = get_logger(__name__)


class QuotaLedgerService:
    """
    Per-assignment usage accounting.

    Requests are always recorded; depletion only blocks confirmation.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def initialize_usage(
        self,
        assignment_id: UUID,
        template: PackageTemplateData,
        custom_deliverables: tuple[PackageFeatureSpec, ...] | None = None,
    ) -> list[UsageRecordData]:
        """
        Create one usage record per allocation line, starting at used=0.

        Custom deliverables replace the template's allocation for this client.

        Raises:
            ResourceNotFoundError: No such assignment
            DuplicateAssignmentError: Usage rows already exist for the assignment
        """
        if await self.session.get(ClientPackage, assignment_id) is None:
            raise ResourceNotFoundError("ClientPackage", assignment_id)

        existing = await self.session.execute(
            select(func.count())
            .select_from(PackageUsage)
            .where(PackageUsage.client_package_id == assignment_id)
        )
        if existing.scalar_one() > 0:
            raise DuplicateAssignmentError(assignment_id)

        specs = custom_deliverables if custom_deliverables is not None else template.deliverables
        rows = [
            PackageUsage(
                client_package_id=assignment_id,
                deliverable_type=spec.deliverable_type,
                label=spec.label,
                unit_label=spec.unit_label,
                used=0,
                total=spec.total_allocated,
                warning_threshold=(
                    spec.warning_threshold
                    if spec.warning_threshold is not None
                    else settings.default_warning_threshold
                ),
                auto_deduction=spec.auto_deduction,
                sort_order=position,
            )
            for position, spec in enumerate(specs)
        ]
        self.session.add_all(rows)

        try:
            await self.session.flush()
        except IntegrityError as e:
            # Another request initialized the same assignment first
            await self.session.rollback()
            raise DuplicateAssignmentError(assignment_id) from e

        records = await self.get_usage_status(assignment_id)
        if len(records) != len(rows):
            raise WriteVerificationError(
                f"Expected {len(rows)} usage rows for assignment {assignment_id}, found {len(records)}"
            )

        await self.session.commit()

        logger.info(
            "usage_initialized",
            assignment_id=str(assignment_id),
            package_id=str(template.id),
            deliverable_types=[r.deliverable_type for r in records],
            custom=custom_deliverables is not None,
        )
        return records

    async def request_deduction(
        self,
        assignment_id: UUID,
        deliverable_type: str,
        quantity: int,
        requested_by: str,
        deliverable_name: str | None = None,
    ) -> DeductionEventData:
        """
        Record a pending deduction. Never touches used, never blocked by depletion.

        Raises:
            ValueError: quantity <= 0
            UnknownDeliverableError: No usage record for the type under the assignment
        """
        intent = DeductionIntent(
            assignment_id=assignment_id,
            deliverable_type=deliverable_type,
            quantity=quantity,
            requested_by=requested_by,
            deliverable_name=deliverable_name,
        )

        usage = await self._find_usage(intent.assignment_id, intent.deliverable_type)
        if usage is None:
            metrics.record_error("UnknownDeliverableError", "request_deduction")
            raise UnknownDeliverableError(intent.assignment_id, intent.deliverable_type)

        already_depleted = policy.is_depleted(usage.used, usage.total)

        event = UsageDeductionEvent(
            client_package_id=intent.assignment_id,
            deliverable_type=intent.deliverable_type,
            deliverable_name=intent.deliverable_name or usage.label or intent.deliverable_type,
            quantity=intent.quantity,
            status=DeductionStatus.PENDING.value,
            requested_by=intent.requested_by,
        )
        self.session.add(event)
        await self.session.flush()

        verified = await self.session.get(UsageDeductionEvent, event.id)
        if verified is None:
            raise WriteVerificationError(f"Deduction event {event.id} not found after insert")

        event_data = self._event_to_domain(verified)
        await self.session.commit()

        logger.info(
            "deduction_requested",
            event_id=str(event_data.event_id),
            assignment_id=str(intent.assignment_id),
            deliverable_type=intent.deliverable_type,
            quantity=intent.quantity,
            requested_by=intent.requested_by,
            already_depleted=already_depleted,
        )
        metrics.record_deduction("request", "success")
        return event_data

    async def confirm_deduction(
        self, event_id: UUID, confirmed_by: str | None = None
    ) -> DeductionEventData:
        """
        Confirm a pending event and add its quantity to used.

        Depletion is checked here, not at request time. A refused confirmation
        leaves the event pending.

        Raises:
            ResourceNotFoundError: No such event
            InvalidStateError: Event is not pending
            QuotaDepletedError: Nothing remaining on the usage record
        """
        with trace_operation("confirm_deduction", event_id=event_id), track_confirmation():
            event = await self._load_event(event_id)
            if event is None:
                raise ResourceNotFoundError("UsageDeductionEvent", event_id)

            # Plain values survive a rollback; ORM attributes don't
            assignment_id = event.client_package_id
            deliverable_type = event.deliverable_type
            quantity = event.quantity
            current = DeductionStatus(event.status)

            if current is not DeductionStatus.PENDING:
                metrics.record_deduction("confirm", "invalid_state")
                raise InvalidStateError(event_id, current.value, DeductionStatus.CONFIRMED.value)

            claimed = await self.session.execute(
                update(UsageDeductionEvent)
                .where(
                    UsageDeductionEvent.id == event_id,
                    UsageDeductionEvent.status == DeductionStatus.PENDING.value,
                )
                .values(
                    status=DeductionStatus.CONFIRMED.value,
                    resolved_by=confirmed_by,
                    resolved_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                # Lost the race to another confirm or cancel
                await self.session.rollback()
                latest = await self._load_event(event_id, refresh=True)
                metrics.record_deduction("confirm", "invalid_state")
                raise InvalidStateError(
                    event_id,
                    latest.status if latest is not None else "missing",
                    DeductionStatus.CONFIRMED.value,
                )

            incremented = await self.session.execute(
                update(PackageUsage)
                .where(
                    PackageUsage.client_package_id == assignment_id,
                    PackageUsage.deliverable_type == deliverable_type,
                    PackageUsage.total - PackageUsage.used > 0,
                )
                .values(used=PackageUsage.used + quantity)
                .execution_options(synchronize_session=False)
            )
            if incremented.rowcount != 1:
                await self.session.rollback()
                usage = await self._find_usage(assignment_id, deliverable_type, refresh=True)
                if usage is None:
                    raise UnknownDeliverableError(assignment_id, deliverable_type)

                logger.warning(
                    "deduction_refused_depleted",
                    event_id=str(event_id),
                    assignment_id=str(assignment_id),
                    deliverable_type=deliverable_type,
                    used=usage.used,
                    total=usage.total,
                )
                metrics.record_deduction("confirm", "depleted")
                raise QuotaDepletedError(assignment_id, deliverable_type, usage.used, usage.total)

            usage = await self._find_usage(assignment_id, deliverable_type, refresh=True)
            if usage is None:
                raise WriteVerificationError(
                    f"Usage record {assignment_id}/{deliverable_type} disappeared after increment"
                )
            confirmed = await self._load_event(event_id, refresh=True)
            if confirmed is None or confirmed.status != DeductionStatus.CONFIRMED.value:
                raise WriteVerificationError(f"Event {event_id} not confirmed after update")

            record = self._usage_to_domain(usage)
            event_data = self._event_to_domain(confirmed)
            await self.session.commit()

        logger.info(
            "deduction_confirmed",
            event_id=str(event_id),
            assignment_id=str(assignment_id),
            deliverable_type=deliverable_type,
            quantity=quantity,
            used=record.used,
            total=record.total,
            low_usage=record.is_low,
            depleted=record.is_depleted,
        )
        metrics.record_deduction("confirm", "success", quantity)
        return event_data

    async def cancel_deduction(
        self, event_id: UUID, cancelled_by: str | None = None
    ) -> DeductionEventData:
        """
        Cancel a pending event. Cancelling a cancelled event is a no-op.

        Raises:
            ResourceNotFoundError: No such event
            InvalidStateError: Event already confirmed
        """
        event = await self._load_event(event_id)
        if event is None:
            raise ResourceNotFoundError("UsageDeductionEvent", event_id)

        current = DeductionStatus(event.status)
        if current is DeductionStatus.CANCELLED:
            return self._event_to_domain(event)
        if current is DeductionStatus.CONFIRMED:
            metrics.record_deduction("cancel", "invalid_state")
            raise InvalidStateError(event_id, current.value, DeductionStatus.CANCELLED.value)

        result = await self.session.execute(
            update(UsageDeductionEvent)
            .where(
                UsageDeductionEvent.id == event_id,
                UsageDeductionEvent.status == DeductionStatus.PENDING.value,
            )
            .values(
                status=DeductionStatus.CANCELLED.value,
                resolved_by=cancelled_by,
                resolved_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            latest = await self._load_event(event_id, refresh=True)
            if latest is not None and latest.status == DeductionStatus.CANCELLED.value:
                return self._event_to_domain(latest)
            metrics.record_deduction("cancel", "invalid_state")
            raise InvalidStateError(
                event_id,
                latest.status if latest is not None else "missing",
                DeductionStatus.CANCELLED.value,
            )

        cancelled = await self._load_event(event_id, refresh=True)
        if cancelled is None:
            raise WriteVerificationError(f"Event {event_id} disappeared after cancel")
        event_data = self._event_to_domain(cancelled)
        await self.session.commit()

        logger.info(
            "deduction_cancelled",
            event_id=str(event_id),
            assignment_id=str(event_data.assignment_id),
            deliverable_type=event_data.deliverable_type,
            quantity=event_data.quantity,
        )
        metrics.record_deduction("cancel", "success")
        return event_data

    async def record_delivery(
        self,
        assignment_id: UUID,
        deliverable_type: str,
        quantity: int,
        requested_by: str,
        deliverable_name: str | None = None,
    ) -> DeductionEventData:
        """
        Request a deduction and confirm it at once when the record auto-deducts.

        A depleted record leaves the event pending and raises QuotaDepletedError.
        """
        event = await self.request_deduction(
            assignment_id, deliverable_type, quantity, requested_by, deliverable_name
        )
        usage = await self._find_usage(assignment_id, deliverable_type)
        if usage is None or not usage.auto_deduction:
            return event
        return await self.confirm_deduction(event.event_id, confirmed_by=requested_by)

    async def get_usage_status(self, assignment_id: UUID) -> list[UsageRecordData]:
        """Read-only snapshot of every usage record under an assignment, in allocation order."""
        stmt = (
            select(PackageUsage)
            .where(PackageUsage.client_package_id == assignment_id)
            .order_by(PackageUsage.sort_order, PackageUsage.deliverable_type)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._usage_to_domain(row) for row in result.scalars().all()]

    async def override_usage(
        self,
        assignment_id: UUID,
        deliverable_type: str,
        field: UsageField | str,
        value: int,
    ) -> UsageRecordData:
        """
        Administrative direct write of used or total. Only value >= 0 is checked.

        Raises:
            ValueError: Negative value or unknown field
            UnknownDeliverableError: No usage record for the type under the assignment
        """
        override = UsageOverride(
            assignment_id=assignment_id,
            deliverable_type=deliverable_type,
            field=UsageField(field),
            value=value,
        )

        usage = await self._find_usage(override.assignment_id, override.deliverable_type)
        if usage is None:
            raise UnknownDeliverableError(override.assignment_id, override.deliverable_type)

        previous = getattr(usage, override.field.value)
        setattr(usage, override.field.value, override.value)
        await self.session.flush()

        verified = await self._find_usage(
            override.assignment_id, override.deliverable_type, refresh=True
        )
        if verified is None or getattr(verified, override.field.value) != override.value:
            raise WriteVerificationError(
                f"Override of {override.field.value} on {assignment_id}/{deliverable_type} not applied"
            )

        record = self._usage_to_domain(verified)
        await self.session.commit()

        logger.warning(
            "usage_overridden",
            assignment_id=str(assignment_id),
            deliverable_type=deliverable_type,
            field=override.field.value,
            previous=previous,
            value=override.value,
        )
        metrics.record_override(override.field.value)
        return record

    async def list_events(
        self, assignment_id: UUID, status: DeductionStatus | None = None
    ) -> list[DeductionEventData]:
        """Deduction events for an assignment, newest first."""
        stmt = select(UsageDeductionEvent).where(
            UsageDeductionEvent.client_package_id == assignment_id
        )
        if status is not None:
            stmt = stmt.where(UsageDeductionEvent.status == DeductionStatus(status).value)
        stmt = stmt.order_by(UsageDeductionEvent.created_at.desc()).execution_options(
            populate_existing=True
        )
        result = await self.session.execute(stmt)
        return [self._event_to_domain(row) for row in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_usage(
        self, assignment_id: UUID, deliverable_type: str, refresh: bool = False
    ) -> PackageUsage | None:
        """Find the usage record keyed by (assignment, deliverable type)."""
        stmt = select(PackageUsage).where(
            PackageUsage.client_package_id == assignment_id,
            PackageUsage.deliverable_type == deliverable_type,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _load_event(
        self, event_id: UUID, refresh: bool = False
    ) -> UsageDeductionEvent | None:
        """Load a deduction event, optionally bypassing the identity map."""
        stmt = select(UsageDeductionEvent).where(UsageDeductionEvent.id == event_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _usage_to_domain(self, usage: PackageUsage) -> UsageRecordData:
        """Convert ORM usage row to domain model."""
        return UsageRecordData(
            assignment_id=usage.client_package_id,
            deliverable_type=usage.deliverable_type,
            label=usage.label,
            unit_label=usage.unit_label,
            used=usage.used,
            total=usage.total,
            warning_threshold=usage.warning_threshold,
            auto_deduction=usage.auto_deduction,
        )

    def _event_to_domain(self, event: UsageDeductionEvent) -> DeductionEventData:
        """Convert ORM event to domain model."""
        return DeductionEventData(
            event_id=event.id,
            assignment_id=event.client_package_id,
            deliverable_type=event.deliverable_type,
            deliverable_name=event.deliverable_name,
            quantity=event.quantity,
            status=DeductionStatus(event.status),
            requested_by=event.requested_by,
            resolved_by=event.resolved_by,
            created_at=event.created_at,
            resolved_at=event.resolved_at,
        )
