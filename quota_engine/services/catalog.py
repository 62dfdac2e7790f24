"""
Catalog Service - deliverable types and service categories.

Read paths resolve type keys for the ledger and the workload allocator;
admin paths register, retune and soft-deactivate entries.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quota_engine.db.models import DeliverableType, ServiceCategory
from quota_engine.exceptions import (
    DataIntegrityError,
    ResourceNotFoundError,
    UnknownDeliverableTypeError,
    WriteVerificationError,
)
from quota_engine.models.domain import (
    DeliverableTypeData,
    DeliverableTypeDefinition,
    ServiceCategoryData,
)
from quota_engine.observability.logging import get_logger

logger = get_logger(__name__)

HoursTable = dict[str, Decimal]


class CatalogService:
    """Catalog access over an async session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Deliverable Types
    # ========================================================================

    async def get_deliverable_type(self, type_key: str) -> DeliverableTypeData:
        """
        Get a deliverable type by key.

        Inactive types still resolve so existing allocations stay computable.

        Raises:
            UnknownDeliverableTypeError: No such type key
        """
        row = await self._find_type(type_key)
        if row is None:
            raise UnknownDeliverableTypeError(type_key)
        return self._type_to_domain(row)

    async def list_deliverable_types(self, include_inactive: bool = False) -> list[DeliverableTypeData]:
        """List deliverable types in display order."""
        stmt = select(DeliverableType).order_by(DeliverableType.sort_order, DeliverableType.label)
        if not include_inactive:
            stmt = stmt.where(DeliverableType.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [self._type_to_domain(row) for row in result.scalars().all()]

    async def get_hours_table(self) -> HoursTable:
        """Map every known type key to its current hours-per-unit."""
        result = await self.session.execute(
            select(DeliverableType.type_key, DeliverableType.hours_per_unit)
        )
        return {type_key: Decimal(hours) for type_key, hours in result.all()}

    async def resolve_type_keys(self, type_keys: Iterable[str]) -> None:
        """
        Check that every key exists in the catalog.

        Raises:
            UnknownDeliverableTypeError: First key that doesn't resolve
        """
        wanted = list(type_keys)
        if not wanted:
            return
        result = await self.session.execute(
            select(DeliverableType.type_key).where(DeliverableType.type_key.in_(wanted))
        )
        known = set(result.scalars().all())
        for type_key in wanted:
            if type_key not in known:
                raise UnknownDeliverableTypeError(type_key)

    async def register_deliverable_type(
        self, definition: DeliverableTypeDefinition
    ) -> DeliverableTypeData:
        """
        Add a deliverable type to the catalog.

        Raises:
            DataIntegrityError: type_key already registered
        """
        row = DeliverableType(
            type_key=definition.type_key,
            label=definition.label,
            icon=definition.icon,
            unit_label=definition.unit_label,
            hours_per_unit=Decimal(definition.hours_per_unit),
            sort_order=definition.sort_order,
            is_active=True,
        )
        self.session.add(row)

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise DataIntegrityError(
                f"Deliverable type '{definition.type_key}' already exists"
            ) from e

        verified = await self._find_type(definition.type_key)
        if verified is None:
            raise WriteVerificationError(f"Deliverable type {definition.type_key} not found after insert")

        await self.session.commit()
        logger.info(
            "deliverable_type_registered",
            type_key=definition.type_key,
            hours_per_unit=str(definition.hours_per_unit),
        )
        return self._type_to_domain(verified)

    async def update_hours_per_unit(self, type_key: str, hours_per_unit: Decimal) -> DeliverableTypeData:
        """
        Retune a type's hours-per-unit. Only future workload computations see it.

        Raises:
            UnknownDeliverableTypeError: No such type key
        """
        if Decimal(hours_per_unit) <= 0:
            raise ValueError(f"hours_per_unit must be positive: {hours_per_unit}")

        row = await self._find_type(type_key)
        if row is None:
            raise UnknownDeliverableTypeError(type_key)

        previous = row.hours_per_unit
        row.hours_per_unit = Decimal(hours_per_unit)
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "deliverable_type_hours_updated",
            type_key=type_key,
            previous=str(previous),
            current=str(hours_per_unit),
        )
        return self._type_to_domain(row)

    async def deactivate_deliverable_type(self, type_key: str) -> DeliverableTypeData:
        """Hide a type from new packages; existing allocations keep resolving."""
        row = await self._find_type(type_key)
        if row is None:
            raise UnknownDeliverableTypeError(type_key)

        row.is_active = False
        await self.session.flush()
        await self.session.commit()
        logger.info("deliverable_type_deactivated", type_key=type_key)
        return self._type_to_domain(row)

    # ========================================================================
    # Service Categories
    # ========================================================================

    async def list_service_categories(self, include_inactive: bool = False) -> list[ServiceCategoryData]:
        """List service categories in display order."""
        stmt = select(ServiceCategory).order_by(ServiceCategory.sort_order, ServiceCategory.name)
        if not include_inactive:
            stmt = stmt.where(ServiceCategory.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [self._category_to_domain(row) for row in result.scalars().all()]

    async def create_service_category(
        self,
        name: str,
        icon: str = "",
        color: str = "",
        description: str = "",
        sort_order: int = 0,
    ) -> ServiceCategoryData:
        """
        Create a service category.

        Raises:
            DataIntegrityError: Name already taken
        """
        if not name:
            raise ValueError("Category name cannot be empty")

        row = ServiceCategory(
            name=name,
            icon=icon,
            color=color,
            description=description,
            sort_order=sort_order,
            is_active=True,
        )
        self.session.add(row)

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise DataIntegrityError(f"Service category '{name}' already exists") from e

        await self.session.commit()
        logger.info("service_category_created", name=name)
        return self._category_to_domain(row)

    async def deactivate_service_category(self, category_id: UUID) -> ServiceCategoryData:
        """Soft-delete a service category."""
        row = await self.session.get(ServiceCategory, category_id)
        if row is None:
            raise ResourceNotFoundError("ServiceCategory", category_id)

        row.is_active = False
        await self.session.flush()
        await self.session.commit()
        logger.info("service_category_deactivated", category_id=str(category_id))
        return self._category_to_domain(row)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_type(self, type_key: str) -> DeliverableType | None:
        stmt = select(DeliverableType).where(DeliverableType.type_key == type_key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _type_to_domain(self, row: DeliverableType) -> DeliverableTypeData:
        return DeliverableTypeData(
            id=row.id,
            type_key=row.type_key,
            label=row.label,
            unit_label=row.unit_label,
            hours_per_unit=Decimal(row.hours_per_unit),
            icon=row.icon,
            sort_order=row.sort_order,
            is_active=row.is_active,
        )

    def _category_to_domain(self, row: ServiceCategory) -> ServiceCategoryData:
        return ServiceCategoryData(
            id=row.id,
            name=row.name,
            icon=row.icon,
            color=row.color,
            description=row.description,
            sort_order=row.sort_order,
            is_active=row.is_active,
        )
