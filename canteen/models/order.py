"""
Canteen Service - Order and saved-cart models

[TRANSACTIONAL DATA] orders - items are snapshotted (name, price) at placement
[TRANSACTIONAL DATA] saved_carts - one JSON snapshot per parent
"""
import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import Date, DateTime, Enum, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from canteen.core.utils import utcnow
from canteen.db.database import Base
from canteen.models.menu import JSONType


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class OrderType(str, PyEnum):
    ONE_TIME = "one-time"
    WEEKLY = "weekly"


class Order(Base):
    """
    [TRANSACTIONAL DATA]
    items: [{"menu_item_id", "name", "price" (cents), "quantity"}]
    total_amount is in cents.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("parent_id", "idempotency_key", "batch_index", name="orders_parent_idempotency_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    parent_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    items: Mapped[list[dict]] = mapped_column(JSONType, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)  # in cents
    order_type: Mapped[OrderType] = mapped_column(
        Enum(OrderType, name="order_type", values_callable=lambda e: [m.value for m in e]),
        default=OrderType.ONE_TIME,
        nullable=False,
    )
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    delivery_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    delivery_time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # Position within a multi-order checkout that shared one idempotency key
    batch_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Order number={self.order_number} status={self.status} total={self.total_amount}>"


class SavedCart(Base):
    """
    [TRANSACTIONAL DATA] - Client cart state, stored as-is with no validation.
    daily_cart: list of cart lines; weekly_cart: {"YYYY-MM-DD": [lines]}
    """
    __tablename__ = "saved_carts"

    parent_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    daily_cart: Mapped[list[dict]] = mapped_column(JSONType, nullable=False, default=list)
    weekly_cart: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
