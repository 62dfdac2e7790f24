"""
Deliverable Quota Engine - library entry point for the surrounding application.

Each call runs in its own session: writes on the primary, reads on the
replica when one is configured.
"""

from collections.abc import Mapping, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quota_engine.config import settings
from quota_engine.db import session as db_session
from quota_engine.models.domain import (
    AssignmentMeta,
    ClientPackageData,
    DeductionEventData,
    DeliverableTypeData,
    FleetCapacity,
    PackageAssignmentContext,
    PackageTemplateData,
    PackageWorkload,
    TeamMemberLoad,
    UsageRecordData,
)
from quota_engine.models.enums import DeductionStatus, UsageField
from quota_engine.observability.logging import get_logger, setup_logging
from quota_engine.observability.tracing import setup_tracing
from quota_engine.services.assignments import AssignmentService
from quota_engine.services.capacity import aggregate
from quota_engine.services.catalog import CatalogService, HoursTable
from quota_engine.services.packages import PackageTemplateService
from quota_engine.services.quota_ledger import QuotaLedgerService
from quota_engine.services.workload import WorkloadAllocator

logger = get_logger(__name__)


class DeliverableQuotaEngine:
    """
    Facade over the catalog, ledger, lifecycle and workload services.

    Usage:
        engine = DeliverableQuotaEngine()
        await engine.start(create_tables=True)
        assignment = await engine.on_package_assigned(client_id, package_id, meta)
        event = await engine.request_deduction(assignment.id, "design", 1, "designer@agency")
        await engine.confirm_deduction(event.event_id, confirmed_by="manager@agency")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        read_session_factory: async_sessionmaker[AsyncSession] | None = None,
        allocator: WorkloadAllocator | None = None,
    ) -> None:
        self._owns_engines = session_factory is None
        self._write_factory = session_factory or db_session.get_write_session_factory()
        self._read_factory = read_session_factory or (
            db_session.get_read_session_factory() if self._owns_engines else self._write_factory
        )
        self.allocator = allocator or WorkloadAllocator(settings.standard_monthly_capacity_hours)

    async def start(self, create_tables: bool = False) -> None:
        """Configure logging and tracing; optionally create missing tables."""
        setup_logging()
        setup_tracing()
        if create_tables:
            async with self._write_factory() as session:
                bind = session.bind
            await db_session.create_schema(bind)
        logger.info(
            "engine_starting",
            service=settings.service_name,
            version=settings.service_version,
            standard_monthly_capacity_hours=self.allocator.standard_monthly_capacity_hours,
            tracing_enabled=settings.tracing_enabled,
            metrics_enabled=settings.metrics_enabled,
        )

    async def close(self) -> None:
        """Dispose engines this instance created."""
        logger.info("engine_shutting_down")
        if self._owns_engines:
            await db_session.close_engines()

    # ========================================================================
    # Catalog and Templates
    # ========================================================================

    async def get_deliverable_type(self, type_key: str) -> DeliverableTypeData:
        async with self._read_factory() as session:
            return await CatalogService(session).get_deliverable_type(type_key)

    async def get_hours_table(self) -> HoursTable:
        async with self._read_factory() as session:
            return await CatalogService(session).get_hours_table()

    async def get_package_template(self, package_id: UUID) -> PackageTemplateData:
        async with self._read_factory() as session:
            return await PackageTemplateService(session).get_package_template(package_id)

    # ========================================================================
    # Assignment Events
    # ========================================================================

    async def on_package_assigned(
        self, client_id: UUID, package_id: UUID, assignment_meta: AssignmentMeta
    ) -> ClientPackageData:
        async with self._write_factory() as session:
            return await AssignmentService(session).on_package_assigned(
                client_id, package_id, assignment_meta
            )

    async def on_package_changed(
        self,
        client_id: UUID,
        new_package_id: UUID,
        assignment_meta: AssignmentMeta | None = None,
    ) -> ClientPackageData:
        async with self._write_factory() as session:
            return await AssignmentService(session).on_package_changed(
                client_id, new_package_id, assignment_meta
            )

    async def complete_assignment(
        self, client_id: UUID, package_id: UUID, assignment_meta: AssignmentMeta
    ) -> ClientPackageData:
        """Retry the creation step after a PartialAssignmentFailure."""
        async with self._write_factory() as session:
            return await AssignmentService(session).complete_assignment(
                client_id, package_id, assignment_meta
            )

    async def get_active_assignment(self, client_id: UUID) -> ClientPackageData | None:
        async with self._read_factory() as session:
            return await AssignmentService(session).get_active_assignment(client_id)

    # ========================================================================
    # Quota Ledger
    # ========================================================================

    async def request_deduction(
        self,
        assignment_id: UUID,
        deliverable_type: str,
        quantity: int,
        requested_by: str,
        deliverable_name: str | None = None,
    ) -> DeductionEventData:
        async with self._write_factory() as session:
            return await QuotaLedgerService(session).request_deduction(
                assignment_id, deliverable_type, quantity, requested_by, deliverable_name
            )

    async def confirm_deduction(
        self, event_id: UUID, confirmed_by: str | None = None
    ) -> DeductionEventData:
        async with self._write_factory() as session:
            return await QuotaLedgerService(session).confirm_deduction(event_id, confirmed_by)

    async def cancel_deduction(
        self, event_id: UUID, cancelled_by: str | None = None
    ) -> DeductionEventData:
        async with self._write_factory() as session:
            return await QuotaLedgerService(session).cancel_deduction(event_id, cancelled_by)

    async def record_delivery(
        self,
        assignment_id: UUID,
        deliverable_type: str,
        quantity: int,
        requested_by: str,
        deliverable_name: str | None = None,
    ) -> DeductionEventData:
        async with self._write_factory() as session:
            return await QuotaLedgerService(session).record_delivery(
                assignment_id, deliverable_type, quantity, requested_by, deliverable_name
            )

    async def override_usage(
        self, assignment_id: UUID, deliverable_type: str, field: UsageField | str, value: int
    ) -> UsageRecordData:
        async with self._write_factory() as session:
            return await QuotaLedgerService(session).override_usage(
                assignment_id, deliverable_type, field, value
            )

    async def get_usage_status(self, assignment_id: UUID) -> list[UsageRecordData]:
        async with self._read_factory() as session:
            return await QuotaLedgerService(session).get_usage_status(assignment_id)

    async def list_events(
        self, assignment_id: UUID, status: DeductionStatus | None = None
    ) -> list[DeductionEventData]:
        async with self._read_factory() as session:
            return await QuotaLedgerService(session).list_events(assignment_id, status)

    # ========================================================================
    # Workload and Capacity
    # ========================================================================

    async def compute_workload(
        self, context: PackageAssignmentContext, hours_table: HoursTable | None = None
    ) -> PackageWorkload:
        """Compute workload, loading the catalog's hours table when none is given."""
        if hours_table is None:
            hours_table = await self.get_hours_table()
        return self.allocator.compute_workload(context, hours_table)

    async def workload_for_assignment(
        self, assignment_id: UUID, members: Sequence[TeamMemberLoad] = ()
    ) -> PackageWorkload:
        """Workload of a persisted assignment, quantities taken from its usage totals."""
        async with self._read_factory() as session:
            assignment = await AssignmentService(session).get_assignment(assignment_id)
            template = await PackageTemplateService(session).get_package_template(
                assignment.package_id
            )
            records = await QuotaLedgerService(session).get_usage_status(assignment_id)
            hours_table = await CatalogService(session).get_hours_table()

        context = PackageAssignmentContext.from_usage(
            client_id=assignment.client_id,
            assignment_id=assignment_id,
            package_name=template.name,
            records=records,
            members=tuple(members),
        )
        return self.allocator.compute_workload(context, hours_table)

    def aggregate(
        self,
        workloads: Sequence[PackageWorkload],
        assignment_sizes: Sequence[int] | None = None,
    ) -> FleetCapacity:
        """Fleet roll-up; sizes default to each workload's own team size."""
        sizes = (
            list(assignment_sizes)
            if assignment_sizes is not None
            else [w.team_size for w in workloads]
        )
        return aggregate(workloads, sizes, self.allocator.standard_monthly_capacity_hours)

    async def fleet_capacity(
        self, staffing: Mapping[UUID, Sequence[TeamMemberLoad]]
    ) -> tuple[list[PackageWorkload], FleetCapacity]:
        """
        Workloads of every active assignment plus their roll-up.

        staffing maps assignment id to its team; assignments missing from it
        count as unstaffed.
        """
        async with self._read_factory() as session:
            assignments = await AssignmentService(session).list_active_assignments()
        workloads = [
            await self.workload_for_assignment(a.id, staffing.get(a.id, ()))
            for a in assignments
        ]
        return workloads, self.aggregate(workloads)
