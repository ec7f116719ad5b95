"""
Canteen Service - Catalog and weekly menu models

[CONFIG DATA]        menu_items - the item catalog, edited by admins
[CONFIG DATA]        weekly_menus - one row per Monday-anchored week
[TRANSACTIONAL DATA] weekly_menu_versions - append-only publish snapshots
[DERIVED DATA]       menu_analytics - per-week ordering summaries
"""
import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from canteen.core.utils import utcnow
from canteen.db.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

WEEKDAYS: tuple[str, ...] = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday")


class MealType(str, PyEnum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    SNACK = "snack"
    DRINKS = "drinks"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


MEAL_TYPES: tuple[str, ...] = tuple(m.value for m in MealType)


class PublishStatus(str, PyEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class MenuItem(Base):
    """
    [CONFIG DATA] - A food or drink in the catalog.
    price is in cents. available_days is derived on publish, never edited directly.
    """
    __tablename__ = "menu_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[int] = mapped_column(Integer, nullable=False)  # in cents
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    allergens: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    dietary_labels: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prep_time_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    available_days: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<MenuItem name={self.name!r} available={self.is_available}>"


class WeeklyMenu(Base):
    """
    [CONFIG DATA] - Item ids scheduled per weekday and meal type for one week.
    current_version is the optimistic locking column for publishes.
    """
    __tablename__ = "weekly_menus"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    week_start: Mapped[date] = mapped_column(Date, unique=True, index=True, nullable=False)
    menu_items_by_day: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    publish_status: Mapped[PublishStatus] = mapped_column(
        Enum(PublishStatus, name="publish_status", values_callable=lambda e: [m.value for m in e]),
        default=PublishStatus.DRAFT,
        nullable=False,
        index=True,
    )
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WeeklyMenu week_start={self.week_start} status={self.publish_status} v={self.current_version}>"


class WeeklyMenuVersion(Base):
    """
    [TRANSACTIONAL DATA] - Immutable snapshot written on every publish.
    """
    __tablename__ = "weekly_menu_versions"
    __table_args__ = (UniqueConstraint("weekly_menu_id", "version", name="weekly_menu_versions_unique"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    weekly_menu_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    week_start: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    menu_items_by_day: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class MenuAnalytics(Base):
    """
    [DERIVED DATA] - Ordering pattern summary for one week, recomputed from orders on demand.
    analytics_data: {"popular_items_by_day", "total_order_counts", "order_counts_by_day", "orders_by_meal_type"}
    """
    __tablename__ = "menu_analytics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    week_start: Mapped[date] = mapped_column(Date, unique=True, index=True, nullable=False)
    analytics_data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# Names are unique regardless of case.
Index("menu_items_name_lower_unique", func.lower(MenuItem.name), unique=True)
