"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


# ============================================================================
# Catalog
# ============================================================================


class ServiceCategory(Base):
    """
    ORM model for service_categories table.

    Groups deliverable types for the package builder.
    """

    __tablename__ = "service_categories"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ServiceCategory(id={self.id}, name={self.name})>"


class DeliverableType(Base):
    """
    ORM model for deliverable_types table.

    type_key is the stable identity referenced by package features and usage rows.
    """

    __tablename__ = "deliverable_types"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type_key: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    unit_label: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    hours_per_unit: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("hours_per_unit > 0", name="ck_hours_per_unit_positive"),
        Index("idx_deliverable_types_active", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<DeliverableType(type_key={self.type_key}, "
            f"hours_per_unit={self.hours_per_unit})>"
        )


# ============================================================================
# Package Templates
# ============================================================================


class Package(Base):
    """
    ORM model for packages table.

    Reusable package template; deactivated rather than deleted.
    """

    __tablename__ = "packages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan_type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tier: Mapped[str] = mapped_column(String(50), nullable=False)
    monthly_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BDT")
    platform_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    correction_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Free-text marketing bullets
    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    recommended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    package_features: Mapped[list["PackageFeature"]] = relationship(
        back_populates="package",
        order_by="PackageFeature.sort_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("monthly_fee >= 0", name="ck_monthly_fee_non_negative"),
        CheckConstraint("platform_count >= 0", name="ck_platform_count_non_negative"),
        CheckConstraint("correction_limit >= 0", name="ck_correction_limit_non_negative"),
        Index("idx_packages_active", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Package(id={self.id}, name={self.name}, tier={self.tier})>"


class PackageFeature(Base):
    """
    ORM model for package_features table.

    One deliverable allocation line of a package template.
    """

    __tablename__ = "package_features"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    package_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    deliverable_type: Mapped[str] = mapped_column(
        String(50), ForeignKey("deliverable_types.type_key"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    total_allocated: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_label: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    warning_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    auto_deduction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    package: Mapped[Package] = relationship(back_populates="package_features")

    __table_args__ = (
        CheckConstraint("total_allocated >= 0", name="ck_total_allocated_non_negative"),
        CheckConstraint(
            "warning_threshold >= 0 AND warning_threshold <= 100",
            name="ck_feature_warning_threshold_range",
        ),
        UniqueConstraint("package_id", "deliverable_type", name="uq_package_feature_type"),
    )


# ============================================================================
# Client Package Assignments
# ============================================================================


class ClientPackage(Base):
    """
    ORM model for client_packages table.

    At most one row per client may be active.
    """

    __tablename__ = "client_packages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    # Clients live in the dashboard's own tables
    client_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    package_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("packages.id"), nullable=False, index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    renewal_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    custom_monthly_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'expired', 'paused')", name="ck_client_package_status"
        ),
        Index(
            "uq_client_packages_one_active",
            "client_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_client_packages_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ClientPackage(id={self.id}, client_id={self.client_id}, "
            f"package_id={self.package_id}, status={self.status})>"
        )


# ============================================================================
# Quota Ledger
# ============================================================================


class PackageUsage(Base):
    """
    ORM model for package_usage table.

    One counter per (assignment, deliverable type). used may exceed total.
    """

    __tablename__ = "package_usage"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_package_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("client_packages.id", ondelete="CASCADE"), nullable=False
    )
    deliverable_type: Mapped[str] = mapped_column(String(50), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    unit_label: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    warning_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    auto_deduction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("used >= 0", name="ck_usage_used_non_negative"),
        CheckConstraint("total >= 0", name="ck_usage_total_non_negative"),
        UniqueConstraint(
            "client_package_id", "deliverable_type", name="uq_package_usage_assignment_type"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PackageUsage(client_package_id={self.client_package_id}, "
            f"deliverable_type={self.deliverable_type}, used={self.used}, total={self.total})>"
        )


class UsageDeductionEvent(Base):
    """
    ORM model for usage_deduction_events table.

    Audit trail of consumption requests. Only pending rows change.
    """

    __tablename__ = "usage_deduction_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_package_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    deliverable_type: Mapped[str] = mapped_column(String(50), nullable=False)
    deliverable_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        ForeignKeyConstraint(
            ["client_package_id", "deliverable_type"],
            ["package_usage.client_package_id", "package_usage.deliverable_type"],
            name="fk_deduction_event_usage",
            ondelete="CASCADE",
        ),
        CheckConstraint("quantity > 0", name="ck_deduction_quantity_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="ck_deduction_status"
        ),
        Index("idx_deduction_events_assignment", "client_package_id", "status"),
        Index("idx_deduction_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UsageDeductionEvent(id={self.id}, deliverable_type={self.deliverable_type}, "
            f"quantity={self.quantity}, status={self.status})>"
        )
