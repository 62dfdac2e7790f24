"""
Assignment Service - binds package templates to clients.

Switching packages is two committed steps:
1. Expire the client's active assignment
2. Create the new assignment together with its usage rows

A failure in step 2 after step 1 leaves the client without an active package
and surfaces as PartialAssignmentFailure; callers retry with complete_assignment.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.db.models import ClientPackage
from quota_engine.exceptions import (
    DataIntegrityError,
    PartialAssignmentFailure,
    ResourceNotFoundError,
    WriteVerificationError,
)
from quota_engine.models.domain import AssignmentMeta, ClientPackageData, PackageTemplateData
from quota_engine.models.enums import AssignmentStatus
from quota_engine.observability.logging import get_logger, log_context
from quota_engine.observability.metrics import metrics
from quota_engine.observability.tracing import trace_operation
from quota_engine.services.packages import PackageTemplateService
from quota_engine.services.quota_ledger import QuotaLedgerService

logger = get_logger(__name__)


class AssignmentService:
    """Client package assignment lifecycle."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with database session."""
        self.session = session
        self.packages = PackageTemplateService(session)
        self.ledger = QuotaLedgerService(session)

    # ========================================================================
    # Collaborator Events
    # ========================================================================

    async def on_package_assigned(
        self, client_id: UUID, package_id: UUID, assignment_meta: AssignmentMeta
    ) -> ClientPackageData:
        """Client management assigned a package."""
        return await self.assign_package(client_id, package_id, assignment_meta)

    async def on_package_changed(
        self,
        client_id: UUID,
        new_package_id: UUID,
        assignment_meta: AssignmentMeta | None = None,
    ) -> ClientPackageData:
        """
        Client management switched the client's package.

        Without explicit details the new assignment starts today and keeps
        the previous renewal date when it is still ahead.
        """
        if assignment_meta is None:
            today = date.today()
            previous = await self._find_active(client_id)
            renewal = previous.renewal_date if previous is not None else None
            assignment_meta = AssignmentMeta(
                start_date=today,
                renewal_date=renewal if renewal is not None and renewal >= today else None,
            )
        return await self.assign_package(client_id, new_package_id, assignment_meta)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def assign_package(
        self, client_id: UUID, package_id: UUID, meta: AssignmentMeta
    ) -> ClientPackageData:
        """
        Make package_id the client's active assignment.

        Raises:
            ResourceNotFoundError: No such package template
            DataIntegrityError: Template is inactive or a concurrent assignment won
            PartialAssignmentFailure: Prior assignment expired, new one not created
        """
        with log_context(client_id=str(client_id), package_id=str(package_id)), trace_operation(
            "assign_package", client_id=client_id, package_id=package_id
        ):
            template = await self._load_assignable_template(package_id, meta)

            expired_id = await self._expire_active(client_id)

            try:
                assignment = await self._create_with_usage(client_id, template, meta)
            except Exception as e:
                await self.session.rollback()
                if expired_id is None:
                    metrics.record_assignment("failed")
                    raise
                logger.error(
                    "partial_assignment_failure",
                    expired_assignment_id=str(expired_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                metrics.record_assignment("partial_failure")
                raise PartialAssignmentFailure(client_id, package_id, expired_id) from e

            metrics.record_assignment("switched" if expired_id is not None else "created")
            return assignment

    async def complete_assignment(
        self, client_id: UUID, package_id: UUID, meta: AssignmentMeta
    ) -> ClientPackageData:
        """
        Retry only the creation step after a PartialAssignmentFailure.

        Raises:
            DataIntegrityError: The client already has an active assignment
        """
        with log_context(client_id=str(client_id), package_id=str(package_id)):
            active = await self._find_active(client_id)
            if active is not None:
                raise DataIntegrityError(
                    f"Client {client_id} already has active assignment {active.id}"
                )

            template = await self._load_assignable_template(package_id, meta)
            try:
                assignment = await self._create_with_usage(client_id, template, meta)
            except Exception:
                await self.session.rollback()
                metrics.record_assignment("failed")
                raise

            logger.info("assignment_completed", assignment_id=str(assignment.id))
            metrics.record_assignment("completed")
            return assignment

    async def update_assignment(
        self,
        assignment_id: UUID,
        status: AssignmentStatus | str | None = None,
        renewal_date: date | None = None,
        notes: str | None = None,
        custom_monthly_fee: Decimal | None = None,
    ) -> ClientPackageData:
        """
        Edit an assignment's status (pause, resume, expire) or details.

        Raises:
            ResourceNotFoundError: No such assignment
            DataIntegrityError: Resuming while another assignment of the client is active
        """
        row = await self._find(assignment_id)
        if row is None:
            raise ResourceNotFoundError("ClientPackage", assignment_id)

        previous_status = row.status
        if status is not None:
            new_status = AssignmentStatus(status)
            if new_status is AssignmentStatus.ACTIVE and row.status != AssignmentStatus.ACTIVE.value:
                other = await self._find_active(row.client_id)
                if other is not None and other.id != row.id:
                    raise DataIntegrityError(
                        f"Client {row.client_id} already has active assignment {other.id}"
                    )
            row.status = new_status.value

        if renewal_date is not None:
            if renewal_date < row.start_date:
                raise ValueError(f"renewal_date {renewal_date} precedes start_date {row.start_date}")
            row.renewal_date = renewal_date
        if notes is not None:
            row.notes = notes
        if custom_monthly_fee is not None:
            if Decimal(custom_monthly_fee) < 0:
                raise ValueError(f"custom_monthly_fee cannot be negative: {custom_monthly_fee}")
            row.custom_monthly_fee = Decimal(custom_monthly_fee)

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise DataIntegrityError(
                f"Assignment {assignment_id} conflicts with another active assignment"
            ) from e

        verified = await self._find(assignment_id, refresh=True)
        if verified is None:
            raise WriteVerificationError(f"Assignment {assignment_id} disappeared after update")
        data = self._to_domain(verified)
        await self.session.commit()

        logger.info(
            "assignment_updated",
            assignment_id=str(assignment_id),
            previous_status=previous_status,
            status=data.status.value,
        )
        return data

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_assignment(self, assignment_id: UUID) -> ClientPackageData:
        """
        Get an assignment by id.

        Raises:
            ResourceNotFoundError: No such assignment
        """
        row = await self._find(assignment_id)
        if row is None:
            raise ResourceNotFoundError("ClientPackage", assignment_id)
        return self._to_domain(row)

    async def get_active_assignment(self, client_id: UUID) -> ClientPackageData | None:
        """The client's active assignment, if any."""
        row = await self._find_active(client_id)
        return self._to_domain(row) if row is not None else None

    async def list_active_assignments(self) -> list[ClientPackageData]:
        """Every active assignment across clients."""
        stmt = (
            select(ClientPackage)
            .where(ClientPackage.status == AssignmentStatus.ACTIVE.value)
            .order_by(ClientPackage.created_at)
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(row) for row in result.scalars().all()]

    async def list_client_assignments(self, client_id: UUID) -> list[ClientPackageData]:
        """A client's assignment history, newest first."""
        stmt = (
            select(ClientPackage)
            .where(ClientPackage.client_id == client_id)
            .order_by(ClientPackage.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(row) for row in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _load_assignable_template(
        self, package_id: UUID, meta: AssignmentMeta
    ) -> PackageTemplateData:
        """Resolve everything step 2 needs before step 1 writes anything."""
        template = await self.packages.get_package_template(package_id)
        if not template.is_active:
            raise DataIntegrityError(f"Package template {package_id} is inactive")
        if meta.custom_deliverables is not None:
            await self.packages.catalog.resolve_type_keys(
                d.deliverable_type for d in meta.custom_deliverables
            )
        return template

    async def _expire_active(self, client_id: UUID) -> UUID | None:
        """Step 1: expire and commit the active assignment. Returns its id."""
        active = await self._find_active(client_id)
        if active is None:
            return None

        expired_id = active.id
        active.status = AssignmentStatus.EXPIRED.value
        await self.session.flush()
        await self.session.commit()

        logger.info("assignment_expired", assignment_id=str(expired_id))
        return expired_id

    async def _create_with_usage(
        self, client_id: UUID, template: PackageTemplateData, meta: AssignmentMeta
    ) -> ClientPackageData:
        """Step 2: insert the assignment and its usage rows in one commit."""
        assignment = ClientPackage(
            client_id=client_id,
            package_id=template.id,
            start_date=meta.start_date,
            renewal_date=meta.renewal_date,
            custom_monthly_fee=(
                Decimal(meta.custom_monthly_fee) if meta.custom_monthly_fee is not None else None
            ),
            notes=meta.notes,
            status=AssignmentStatus.ACTIVE.value,
        )
        self.session.add(assignment)

        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DataIntegrityError(
                f"Client {client_id} already has an active assignment"
            ) from e

        assignment_id = assignment.id
        # Commits the assignment row with the usage rows
        await self.ledger.initialize_usage(assignment_id, template, meta.custom_deliverables)

        verified = await self._find(assignment_id, refresh=True)
        if verified is None:
            raise WriteVerificationError(f"Assignment {assignment_id} not found after insert")

        logger.info(
            "assignment_created",
            assignment_id=str(assignment_id),
            package_name=template.name,
            custom_deliverables=meta.custom_deliverables is not None,
        )
        return self._to_domain(verified)

    async def _find(self, assignment_id: UUID, refresh: bool = False) -> ClientPackage | None:
        stmt = select(ClientPackage).where(ClientPackage.id == assignment_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_active(self, client_id: UUID) -> ClientPackage | None:
        stmt = select(ClientPackage).where(
            ClientPackage.client_id == client_id,
            ClientPackage.status == AssignmentStatus.ACTIVE.value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _to_domain(self, row: ClientPackage) -> ClientPackageData:
        return ClientPackageData(
            id=row.id,
            client_id=row.client_id,
            package_id=row.package_id,
            start_date=row.start_date,
            renewal_date=row.renewal_date,
            custom_monthly_fee=(
                Decimal(row.custom_monthly_fee) if row.custom_monthly_fee is not None else None
            ),
            notes=row.notes,
            status=AssignmentStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
