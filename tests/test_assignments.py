"""
Tests for AssignmentService.

Covers the two-step package switch, its partial-failure state and
assignment edits.
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from conftest import make_template_intent

from quota_engine.exceptions import (
    DataIntegrityError,
    PartialAssignmentFailure,
    ResourceNotFoundError,
    UnknownDeliverableTypeError,
    WriteVerificationError,
)
from quota_engine.models.domain import AssignmentMeta, PackageFeatureSpec
from quota_engine.models.enums import AssignmentStatus
from quota_engine.services.assignments import AssignmentService
from quota_engine.services.packages import PackageTemplateService
from quota_engine.services.quota_ledger import QuotaLedgerService

META = AssignmentMeta(start_date=date(2026, 3, 1))


async def create_second_template(session):
    return await PackageTemplateService(session).create_package_template(
        make_template_intent(
            "Scale",
            deliverables=(PackageFeatureSpec("video", 8), PackageFeatureSpec("caption", 40)),
        )
    )


# ============================================================================
# Mocked Session
# ============================================================================


class TestPartialFailureUnit:
    """Failure handling of the creation step without a database."""

    async def test_failure_after_expiry_is_partial(self, db_session: AsyncMock) -> None:
        service = AssignmentService(db_session)
        client_id, package_id, expired_id = uuid4(), uuid4(), uuid4()

        with (
            patch.object(service, "_load_assignable_template", new_callable=AsyncMock),
            patch.object(service, "_expire_active", new_callable=AsyncMock) as mock_expire,
            patch.object(service, "_create_with_usage", new_callable=AsyncMock) as mock_create,
        ):
            mock_expire.return_value = expired_id
            mock_create.side_effect = WriteVerificationError("usage rows missing")

            with pytest.raises(PartialAssignmentFailure) as exc_info:
                await service.assign_package(client_id, package_id, META)

        assert exc_info.value.client_id == client_id
        assert exc_info.value.package_id == package_id
        assert exc_info.value.expired_assignment_id == expired_id
        assert isinstance(exc_info.value.__cause__, WriteVerificationError)
        db_session.rollback.assert_awaited_once()

    @pytest.mark.parametrize("error", [OSError("connection reset"), TimeoutError(), ValueError("bad row")])
    async def test_non_database_failure_after_expiry_is_partial(
        self, db_session: AsyncMock, error: Exception
    ) -> None:
        service = AssignmentService(db_session)
        expired_id = uuid4()

        with (
            patch.object(service, "_load_assignable_template", new_callable=AsyncMock),
            patch.object(service, "_expire_active", new_callable=AsyncMock) as mock_expire,
            patch.object(service, "_create_with_usage", new_callable=AsyncMock) as mock_create,
        ):
            mock_expire.return_value = expired_id
            mock_create.side_effect = error

            with pytest.raises(PartialAssignmentFailure) as exc_info:
                await service.assign_package(uuid4(), uuid4(), META)

        assert exc_info.value.expired_assignment_id == expired_id
        assert exc_info.value.__cause__ is error
        db_session.rollback.assert_awaited_once()

    async def test_failure_without_prior_propagates(self, db_session: AsyncMock) -> None:
        service = AssignmentService(db_session)

        with (
            patch.object(service, "_load_assignable_template", new_callable=AsyncMock),
            patch.object(service, "_expire_active", new_callable=AsyncMock) as mock_expire,
            patch.object(service, "_create_with_usage", new_callable=AsyncMock) as mock_create,
        ):
            mock_expire.return_value = None
            mock_create.side_effect = DataIntegrityError("conflict")

            with pytest.raises(DataIntegrityError):
                await service.assign_package(uuid4(), uuid4(), META)

    async def test_lookup_failure_expires_nothing(self, db_session: AsyncMock) -> None:
        service = AssignmentService(db_session)

        with (
            patch.object(service, "_load_assignable_template", new_callable=AsyncMock) as mock_load,
            patch.object(service, "_expire_active", new_callable=AsyncMock) as mock_expire,
        ):
            mock_load.side_effect = ResourceNotFoundError("PackageTemplate", "missing")
            with pytest.raises(ResourceNotFoundError):
                await service.assign_package(uuid4(), uuid4(), META)

        mock_expire.assert_not_awaited()


# ============================================================================
# SQLite Lifecycle
# ============================================================================


class TestAssignPackage:
    """First assignment and switches."""

    async def test_first_assignment(self, session, assignment, template, client_id) -> None:
        assert assignment.status is AssignmentStatus.ACTIVE
        assert assignment.client_id == client_id
        assert assignment.package_id == template.id

        active = await AssignmentService(session).get_active_assignment(client_id)
        assert active is not None
        assert active.id == assignment.id

    async def test_switch_expires_previous(self, session, assignment, client_id) -> None:
        second = await create_second_template(session)
        service = AssignmentService(session)

        switched = await service.assign_package(client_id, second.id, META)

        previous = await service.get_assignment(assignment.id)
        assert previous.status is AssignmentStatus.EXPIRED
        assert switched.status is AssignmentStatus.ACTIVE
        assert (await service.get_active_assignment(client_id)).id == switched.id

        records = await QuotaLedgerService(session).get_usage_status(switched.id)
        assert [(r.deliverable_type, r.total) for r in records] == [("video", 8), ("caption", 40)]
        # Old counters are kept for history
        assert len(await QuotaLedgerService(session).get_usage_status(assignment.id)) == 2

    async def test_partial_failure_then_complete(self, session, assignment, client_id) -> None:
        second = await create_second_template(session)
        service = AssignmentService(session)

        with patch.object(
            service.ledger,
            "initialize_usage",
            new=AsyncMock(side_effect=WriteVerificationError("usage rows missing")),
        ):
            with pytest.raises(PartialAssignmentFailure) as exc_info:
                await service.assign_package(client_id, second.id, META)

        assert exc_info.value.expired_assignment_id == assignment.id
        assert await service.get_active_assignment(client_id) is None
        history = await service.list_client_assignments(client_id)
        assert [a.status for a in history] == [AssignmentStatus.EXPIRED]

        completed = await service.complete_assignment(client_id, second.id, META)

        assert completed.status is AssignmentStatus.ACTIVE
        assert len(await QuotaLedgerService(session).get_usage_status(completed.id)) == 2

    async def test_complete_refused_while_active(self, session, assignment, template, client_id) -> None:
        with pytest.raises(DataIntegrityError, match="already has active assignment"):
            await AssignmentService(session).complete_assignment(client_id, template.id, META)

    async def test_unknown_package_keeps_current(self, session, assignment, client_id) -> None:
        service = AssignmentService(session)
        with pytest.raises(ResourceNotFoundError):
            await service.assign_package(client_id, uuid4(), META)
        assert (await service.get_active_assignment(client_id)).id == assignment.id

    async def test_inactive_template_keeps_current(self, session, assignment, client_id) -> None:
        second = await create_second_template(session)
        await PackageTemplateService(session).deactivate_package_template(second.id)
        service = AssignmentService(session)

        with pytest.raises(DataIntegrityError, match="inactive"):
            await service.assign_package(client_id, second.id, META)

        assert (await service.get_active_assignment(client_id)).id == assignment.id

    async def test_unknown_custom_type_keeps_current(self, session, assignment, template, client_id) -> None:
        service = AssignmentService(session)
        meta = AssignmentMeta(
            start_date=date(2026, 3, 1),
            custom_deliverables=(PackageFeatureSpec("podcast", 2),),
        )

        with pytest.raises(UnknownDeliverableTypeError):
            await service.assign_package(client_id, template.id, meta)

        assert (await service.get_active_assignment(client_id)).id == assignment.id

    async def test_list_active_assignments(self, session, assignment, template) -> None:
        service = AssignmentService(session)
        other = await service.assign_package(uuid4(), template.id, META)

        active = await service.list_active_assignments()

        assert {a.id for a in active} == {assignment.id, other.id}


class TestCollaboratorEvents:
    """Events from client management."""

    async def test_on_package_assigned(self, session, template) -> None:
        client_id = uuid4()
        created = await AssignmentService(session).on_package_assigned(
            client_id, template.id, AssignmentMeta(date(2026, 1, 1), notes="Onboarded in January")
        )
        assert created.notes == "Onboarded in January"

    async def test_on_package_changed_keeps_future_renewal(self, session, template) -> None:
        client_id = uuid4()
        service = AssignmentService(session)
        await service.assign_package(
            client_id, template.id, AssignmentMeta(date(2026, 1, 1), renewal_date=date(2099, 1, 1))
        )
        second = await create_second_template(session)

        switched = await service.on_package_changed(client_id, second.id)

        assert switched.package_id == second.id
        assert switched.start_date == date.today()
        assert switched.renewal_date == date(2099, 1, 1)

    async def test_on_package_changed_without_prior(self, session, template) -> None:
        switched = await AssignmentService(session).on_package_changed(uuid4(), template.id)
        assert switched.status is AssignmentStatus.ACTIVE
        assert switched.renewal_date is None


class TestUpdateAssignment:
    """Status and detail edits."""

    async def test_pause_and_resume(self, session, assignment, client_id) -> None:
        service = AssignmentService(session)

        paused = await service.update_assignment(assignment.id, status=AssignmentStatus.PAUSED)
        assert paused.status is AssignmentStatus.PAUSED
        assert await service.get_active_assignment(client_id) is None

        resumed = await service.update_assignment(assignment.id, status="active")
        assert resumed.status is AssignmentStatus.ACTIVE

    async def test_resume_refused_while_other_active(self, session, assignment, client_id) -> None:
        service = AssignmentService(session)
        await service.update_assignment(assignment.id, status=AssignmentStatus.PAUSED)
        second = await create_second_template(session)
        await service.assign_package(client_id, second.id, META)

        with pytest.raises(DataIntegrityError):
            await service.update_assignment(assignment.id, status=AssignmentStatus.ACTIVE)

    async def test_details(self, session, assignment) -> None:
        updated = await AssignmentService(session).update_assignment(
            assignment.id, renewal_date=date(2026, 12, 31), notes="Renewed early"
        )
        assert updated.renewal_date == date(2026, 12, 31)
        assert updated.notes == "Renewed early"

    async def test_renewal_before_start_rejected(self, session, assignment) -> None:
        with pytest.raises(ValueError, match="precedes"):
            await AssignmentService(session).update_assignment(
                assignment.id, renewal_date=date(2025, 12, 31)
            )

    async def test_unknown_assignment(self, session) -> None:
        with pytest.raises(ResourceNotFoundError):
            await AssignmentService(session).update_assignment(uuid4(), notes="x")


class TestAssignmentReadsUnit:
    """Reads without a database."""

    async def test_get_assignment_missing(self, db_session: AsyncMock) -> None:
        with pytest.raises(ResourceNotFoundError):
            await AssignmentService(db_session).get_assignment(uuid4())

    async def test_no_active_assignment(self, db_session: AsyncMock) -> None:
        assert await AssignmentService(db_session).get_active_assignment(uuid4()) is None

    async def test_list_active_empty(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = MagicMock(
            scalars=MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
        )
        assert await AssignmentService(db_session).list_active_assignments() == []
