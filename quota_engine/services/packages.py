"""
Package Template Service - reusable bundles of deliverable allocations.

Feature lists are replaced wholesale (delete then insert), never patched line by line.
"""

from dataclasses import fields
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.config import settings
from quota_engine.db.models import Package, PackageFeature
from quota_engine.exceptions import ResourceNotFoundError, WriteVerificationError
from quota_engine.models.domain import (
    PackageFeatureSpec,
    PackageTemplateData,
    PackageTemplateIntent,
    ensure_unique_types,
)
from quota_engine.observability.logging import get_logger
from quota_engine.services.catalog import CatalogService

logger = get_logger(__name__)

# Template attributes an edit may change; everything else is managed by the service
EDITABLE_FIELDS = frozenset(f.name for f in fields(PackageTemplateIntent))


def feature_rows(
    specs: tuple[PackageFeatureSpec, ...], package_id: UUID | None = None
) -> list[PackageFeature]:
    """Build ORM feature rows in allocation order, filling configured defaults."""
    return [
        PackageFeature(
            package_id=package_id,
            deliverable_type=spec.deliverable_type,
            label=spec.label,
            total_allocated=spec.total_allocated,
            unit_label=spec.unit_label,
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


class PackageTemplateService:
    """Package template reads and administration."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.catalog = CatalogService(session)

    async def get_package_template(self, package_id: UUID) -> PackageTemplateData:
        """
        Get a package template with its allocations in order.

        Raises:
            ResourceNotFoundError: No such package
        """
        package = await self._find_package(package_id)
        if package is None:
            raise ResourceNotFoundError("PackageTemplate", package_id)
        return self._package_to_domain(package)

    async def list_package_templates(self, include_inactive: bool = False) -> list[PackageTemplateData]:
        """List package templates, newest first."""
        stmt = select(Package).order_by(Package.created_at.desc())
        if not include_inactive:
            stmt = stmt.where(Package.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [self._package_to_domain(package) for package in result.scalars().all()]

    async def create_package_template(self, intent: PackageTemplateIntent) -> PackageTemplateData:
        """
        Create a package template and its allocation lines.

        Raises:
            UnknownDeliverableTypeError: An allocation names a type the catalog doesn't know
        """
        await self.catalog.resolve_type_keys(d.deliverable_type for d in intent.deliverables)

        package = Package(
            name=intent.name,
            plan_type=intent.plan_type,
            category=intent.category,
            tier=intent.tier,
            monthly_fee=Decimal(intent.monthly_fee),
            currency=intent.currency,
            platform_count=intent.platform_count,
            correction_limit=intent.correction_limit,
            description=intent.description,
            features=list(intent.features),
            recommended=intent.recommended,
            is_active=True,
        )
        package.package_features = feature_rows(intent.deliverables)
        self.session.add(package)
        await self.session.flush()

        verified = await self._find_package(package.id)
        if verified is None:
            raise WriteVerificationError(f"Package {package.id} not found after insert")

        await self.session.commit()
        logger.info(
            "package_template_created",
            package_id=str(package.id),
            name=intent.name,
            deliverable_count=len(intent.deliverables),
        )
        return self._package_to_domain(verified)

    async def replace_deliverables(
        self, package_id: UUID, deliverables: tuple[PackageFeatureSpec, ...]
    ) -> PackageTemplateData:
        """
        Replace a template's allocation lines.

        Existing client usage rows are untouched; only future assignments see the change.
        """
        ensure_unique_types([d.deliverable_type for d in deliverables])
        package = await self._find_package(package_id)
        if package is None:
            raise ResourceNotFoundError("PackageTemplate", package_id)

        await self.catalog.resolve_type_keys(d.deliverable_type for d in deliverables)

        await self._write_features(package, deliverables)
        await self.session.flush()
        await self.session.commit()

        refreshed = await self._find_package(package_id, refresh=True)
        if refreshed is None:
            raise WriteVerificationError(f"Package {package_id} disappeared after update")

        logger.info(
            "package_template_deliverables_replaced",
            package_id=str(package_id),
            deliverable_count=len(deliverables),
        )
        return self._package_to_domain(refreshed)

    async def update_package_template(self, package_id: UUID, **changes: Any) -> PackageTemplateData:
        """
        Edit a template's attributes; passing deliverables also replaces its allocation lines.

        Only the named fields change. The merged template is validated the
        same way a new one is, so an invalid edit writes nothing.

        Raises:
            ResourceNotFoundError: No such package
            UnknownDeliverableTypeError: An allocation names a type the catalog doesn't know
            ValueError: Unknown field or invalid merged template
        """
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown package template fields: {', '.join(unknown)}")

        package = await self._find_package(package_id)
        if package is None:
            raise ResourceNotFoundError("PackageTemplate", package_id)

        current = self._package_to_domain(package)
        merged = PackageTemplateIntent(
            **{**{name: getattr(current, name) for name in EDITABLE_FIELDS}, **changes}
        )
        replace_lines = "deliverables" in changes
        if replace_lines:
            await self.catalog.resolve_type_keys(d.deliverable_type for d in merged.deliverables)

        package.name = merged.name
        package.plan_type = merged.plan_type
        package.category = merged.category
        package.tier = merged.tier
        package.monthly_fee = Decimal(merged.monthly_fee)
        package.currency = merged.currency
        package.platform_count = merged.platform_count
        package.correction_limit = merged.correction_limit
        package.description = merged.description
        package.features = list(merged.features)
        package.recommended = merged.recommended
        if replace_lines:
            await self._write_features(package, tuple(merged.deliverables))

        await self.session.flush()
        await self.session.commit()

        refreshed = await self._find_package(package_id, refresh=True)
        if refreshed is None:
            raise WriteVerificationError(f"Package {package_id} disappeared after update")

        logger.info(
            "package_template_updated",
            package_id=str(package_id),
            fields=sorted(changes),
            deliverables_replaced=replace_lines,
        )
        return self._package_to_domain(refreshed)

    async def deactivate_package_template(self, package_id: UUID) -> PackageTemplateData:
        """Soft-delete a template; existing assignments keep referencing it."""
        package = await self._find_package(package_id)
        if package is None:
            raise ResourceNotFoundError("PackageTemplate", package_id)

        package.is_active = False
        await self.session.flush()
        await self.session.commit()
        logger.info("package_template_deactivated", package_id=str(package_id))
        return self._package_to_domain(package)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_package(self, package_id: UUID, refresh: bool = False) -> Package | None:
        stmt = select(Package).where(Package.id == package_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _write_features(
        self, package: Package, deliverables: tuple[PackageFeatureSpec, ...]
    ) -> None:
        """Delete the template's allocation lines and insert the new ones."""
        await self.session.execute(
            delete(PackageFeature)
            .where(PackageFeature.package_id == package.id)
            .execution_options(synchronize_session=False)
        )
        self.session.expire(package, ["package_features"])
        self.session.add_all(feature_rows(deliverables, package_id=package.id))

    def _package_to_domain(self, package: Package) -> PackageTemplateData:
        return PackageTemplateData(
            id=package.id,
            name=package.name,
            tier=package.tier,
            plan_type=package.plan_type,
            category=package.category,
            monthly_fee=Decimal(package.monthly_fee),
            currency=package.currency,
            platform_count=package.platform_count,
            correction_limit=package.correction_limit,
            description=package.description,
            features=tuple(package.features or ()),
            recommended=package.recommended,
            is_active=package.is_active,
            deliverables=tuple(
                PackageFeatureSpec(
                    deliverable_type=feature.deliverable_type,
                    total_allocated=feature.total_allocated,
                    unit_label=feature.unit_label,
                    label=feature.label,
                    warning_threshold=feature.warning_threshold,
                    auto_deduction=feature.auto_deduction,
                )
                for feature in package.package_features
            ),
            created_at=package.created_at,
        )
