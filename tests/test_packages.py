"""
Tests for PackageTemplateService.
"""

from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from conftest import make_template_intent

from quota_engine.exceptions import ResourceNotFoundError, UnknownDeliverableTypeError
from quota_engine.models.domain import PackageFeatureSpec
from quota_engine.services.packages import PackageTemplateService
from quota_engine.services.quota_ledger import QuotaLedgerService


class TestPackageTemplates:
    """Template reads and administration."""

    async def test_created_template_round_trips(self, session, template) -> None:
        loaded = await PackageTemplateService(session).get_package_template(template.id)

        assert loaded.name == "Growth"
        assert loaded.monthly_fee == Decimal("25000")
        assert loaded.currency == "BDT"
        assert [(d.deliverable_type, d.total_allocated) for d in loaded.deliverables] == [
            ("design", 10),
            ("video", 4),
        ]
        # No explicit threshold takes the configured default
        assert all(d.warning_threshold == 20 for d in loaded.deliverables)

    async def test_unknown_template(self, session) -> None:
        with pytest.raises(ResourceNotFoundError):
            await PackageTemplateService(session).get_package_template(uuid4())

    async def test_unknown_deliverable_type_rejected(self, session, seeded_catalog) -> None:
        intent = make_template_intent(deliverables=(PackageFeatureSpec("podcast", 2),))
        with pytest.raises(UnknownDeliverableTypeError):
            await PackageTemplateService(session).create_package_template(intent)

    async def test_list_hides_inactive(self, session, template) -> None:
        service = PackageTemplateService(session)
        second = await service.create_package_template(make_template_intent("Scale"))
        await service.deactivate_package_template(template.id)

        active = await service.list_package_templates()
        every = await service.list_package_templates(include_inactive=True)

        assert [t.id for t in active] == [second.id]
        assert {t.id for t in every} == {template.id, second.id}

    async def test_replace_deliverables(self, session, template) -> None:
        replaced = await PackageTemplateService(session).replace_deliverables(
            template.id,
            (
                PackageFeatureSpec("caption", 60, warning_threshold=15),
                PackageFeatureSpec("design", 12),
            ),
        )

        assert [(d.deliverable_type, d.total_allocated) for d in replaced.deliverables] == [
            ("caption", 60),
            ("design", 12),
        ]
        assert replaced.deliverables[0].warning_threshold == 15

    async def test_replace_leaves_existing_usage(self, session, template, assignment) -> None:
        await PackageTemplateService(session).replace_deliverables(
            template.id, (PackageFeatureSpec("design", 1),)
        )

        records = await QuotaLedgerService(session).get_usage_status(assignment.id)
        assert [(r.deliverable_type, r.total) for r in records] == [("design", 10), ("video", 4)]

    async def test_replace_rejects_duplicates(self, db_session: AsyncMock) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            await PackageTemplateService(db_session).replace_deliverables(
                uuid4(), (PackageFeatureSpec("design", 1), PackageFeatureSpec("design", 2))
            )
        db_session.execute.assert_not_awaited()

    async def test_replace_missing_template(self, db_session: AsyncMock) -> None:
        with pytest.raises(ResourceNotFoundError):
            await PackageTemplateService(db_session).replace_deliverables(uuid4(), ())


class TestUpdatePackageTemplate:
    """Attribute edits with optional allocation replacement."""

    async def test_attributes_only(self, session, template) -> None:
        service = PackageTemplateService(session)

        updated = await service.update_package_template(
            template.id,
            name="Growth Plus",
            monthly_fee=Decimal("30000"),
            category="Social",
            features=["Monthly report", "Two revisions"],
            recommended=True,
        )

        assert updated.name == "Growth Plus"
        assert updated.monthly_fee == Decimal("30000")
        assert updated.category == "Social"
        assert updated.features == ("Monthly report", "Two revisions")
        assert updated.recommended is True
        # Untouched fields and allocation lines survive
        assert updated.tier == template.tier
        assert updated.deliverables == template.deliverables

    async def test_category_can_be_cleared(self, session, template) -> None:
        service = PackageTemplateService(session)
        await service.update_package_template(template.id, category="Social")

        cleared = await service.update_package_template(template.id, category=None)

        assert cleared.category is None

    async def test_with_deliverables(self, session, template) -> None:
        updated = await PackageTemplateService(session).update_package_template(
            template.id,
            platform_count=3,
            deliverables=(PackageFeatureSpec("caption", 40), PackageFeatureSpec("video", 6)),
        )

        assert updated.platform_count == 3
        assert [(d.deliverable_type, d.total_allocated) for d in updated.deliverables] == [
            ("caption", 40),
            ("video", 6),
        ]

    async def test_invalid_value_writes_nothing(self, session, template) -> None:
        service = PackageTemplateService(session)

        with pytest.raises(ValueError, match="monthly_fee"):
            await service.update_package_template(
                template.id, name="Cheap", monthly_fee=Decimal("-1")
            )

        loaded = await service.get_package_template(template.id)
        assert loaded.name == "Growth"
        assert loaded.monthly_fee == Decimal("25000")

    async def test_unknown_deliverable_type_writes_nothing(self, session, template) -> None:
        service = PackageTemplateService(session)

        with pytest.raises(UnknownDeliverableTypeError):
            await service.update_package_template(
                template.id, name="Pods", deliverables=(PackageFeatureSpec("podcast", 2),)
            )

        loaded = await service.get_package_template(template.id)
        assert loaded.name == "Growth"
        assert [d.deliverable_type for d in loaded.deliverables] == ["design", "video"]

    async def test_unknown_field_rejected(self, db_session: AsyncMock) -> None:
        with pytest.raises(ValueError, match="is_active"):
            await PackageTemplateService(db_session).update_package_template(
                uuid4(), is_active=False
            )
        db_session.execute.assert_not_awaited()

    async def test_missing_template(self, db_session: AsyncMock) -> None:
        with pytest.raises(ResourceNotFoundError):
            await PackageTemplateService(db_session).update_package_template(uuid4(), name="X")
