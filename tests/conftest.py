"""
Pytest Configuration and Centralized Fixtures.

Provides reusable mocks and fixtures for testing:
- Mocked AsyncSession for service unit tests
- SQLite-backed sessions (aiosqlite) for ledger, lifecycle and concurrency tests
- Seeded catalog, package template and assignment
- Mock ORM rows for usage records and deduction events
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import DateTime, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

# Set required environment variables BEFORE importing engine modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from quota_engine.db.models import Base, PackageUsage, UsageDeductionEvent
from quota_engine.models.domain import (
    AssignmentMeta,
    ClientPackageData,
    DeliverableTypeDefinition,
    PackageFeatureSpec,
    PackageTemplateData,
    PackageTemplateIntent,
)
from quota_engine.models.enums import DeductionStatus
from quota_engine.services.assignments import AssignmentService
from quota_engine.services.catalog import CatalogService
from quota_engine.services.packages import PackageTemplateService

# ============================================================================
# SQLite Compatibility
# ============================================================================


class _UTCAwareDateTime(TypeDecorator):
    """SQLite returns naive datetimes; coerce them back to UTC-aware."""

    impl = DateTime
    cache_ok = True

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _patch_columns_for_sqlite() -> None:
    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


# The suite never runs against PostgreSQL, so patch the shared metadata once
_patch_columns_for_sqlite()


# ============================================================================
# Database Session Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    # Basic operations
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    session.expire = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalar_one = MagicMock(return_value=0)
    mock_result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    mock_result.all = MagicMock(return_value=[])
    mock_result.rowcount = 1
    session.execute = AsyncMock(return_value=mock_result)

    return session


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def fk_session(tmp_path) -> AsyncIterator[AsyncSession]:
    """SQLite session with foreign key enforcement switched on."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quota_fk.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as s:
        yield s
    await engine.dispose()


# ============================================================================
# Seeded Data Fixtures
# ============================================================================

CATALOG = (
    DeliverableTypeDefinition("design", "Static Design", "designs", Decimal("2"), sort_order=1),
    DeliverableTypeDefinition("video", "Video Edit", "videos", Decimal("5"), sort_order=2),
    DeliverableTypeDefinition("caption", "Caption", "captions", Decimal("0.25"), sort_order=3),
)


@pytest_asyncio.fixture
async def seeded_catalog(session: AsyncSession) -> CatalogService:
    """Catalog with design (2h), video (5h) and caption (0.25h)."""
    catalog = CatalogService(session)
    for definition in CATALOG:
        await catalog.register_deliverable_type(definition)
    return catalog


def make_template_intent(name: str = "Growth", **overrides) -> PackageTemplateIntent:
    fields = {
        "name": name,
        "tier": "standard",
        "plan_type": "monthly",
        "monthly_fee": Decimal("25000"),
        "deliverables": (
            PackageFeatureSpec("design", 10, unit_label="designs", label="Static Design"),
            PackageFeatureSpec("video", 4, unit_label="videos", label="Video Edit"),
        ),
    }
    fields.update(overrides)
    return PackageTemplateIntent(**fields)


@pytest_asyncio.fixture
async def template(session: AsyncSession, seeded_catalog: CatalogService) -> PackageTemplateData:
    """Template allocating 10 designs and 4 videos."""
    return await PackageTemplateService(session).create_package_template(make_template_intent())


@pytest.fixture
def client_id() -> UUID:
    return uuid4()


@pytest_asyncio.fixture
async def assignment(
    session: AsyncSession, template: PackageTemplateData, client_id: UUID
) -> ClientPackageData:
    """Active assignment of the template with fresh usage rows."""
    return await AssignmentService(session).assign_package(
        client_id, template.id, AssignmentMeta(start_date=date(2026, 1, 1))
    )


# ============================================================================
# Mock ORM Rows
# ============================================================================


def create_mock_usage(
    assignment_id: UUID | None = None,
    deliverable_type: str = "design",
    used: int = 0,
    total: int = 10,
    warning_threshold: int = 20,
    auto_deduction: bool = True,
) -> MagicMock:
    """Create a mock PackageUsage row."""
    usage = MagicMock(spec=PackageUsage)
    usage.id = uuid4()
    usage.client_package_id = assignment_id or uuid4()
    usage.deliverable_type = deliverable_type
    usage.label = deliverable_type.title()
    usage.unit_label = f"{deliverable_type}s"
    usage.used = used
    usage.total = total
    usage.warning_threshold = warning_threshold
    usage.auto_deduction = auto_deduction
    usage.sort_order = 0
    return usage


def create_mock_event(
    status: DeductionStatus = DeductionStatus.PENDING,
    assignment_id: UUID | None = None,
    deliverable_type: str = "design",
    quantity: int = 1,
) -> MagicMock:
    """Create a mock UsageDeductionEvent row."""
    event = MagicMock(spec=UsageDeductionEvent)
    event.id = uuid4()
    event.client_package_id = assignment_id or uuid4()
    event.deliverable_type = deliverable_type
    event.deliverable_name = "Launch post"
    event.quantity = quantity
    event.status = status.value
    event.requested_by = "designer@agency.test"
    event.resolved_by = None
    event.created_at = datetime.now(UTC)
    event.resolved_at = None
    return event
