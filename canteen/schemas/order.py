"""
Canteen Service - Order schemas
"""
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from canteen.core.utils import from_cents
from canteen.models.order import Order, OrderStatus, OrderType


class OrderItemRequest(BaseModel):
    menu_item_id: str = Field(..., examples=["item-001"])
    quantity: int = Field(..., ge=1, le=10)


class OrderRequest(BaseModel):
    student_id: str
    delivery_date: date
    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=20)
    total: Decimal = Field(..., gt=0, decimal_places=2)
    delivery_time: str | None = Field(None, max_length=16)
    special_instructions: str | None = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    menu_item_id: str
    name: str
    price: Decimal
    quantity: int


class OrderResponse(BaseModel):
    id: str
    order_number: str
    parent_id: str
    student_id: str
    items: list[OrderItemResponse]
    total_amount: Decimal
    order_type: OrderType
    status: OrderStatus
    delivery_date: date
    delivery_time: str | None
    special_instructions: str | None
    created_at: datetime
    updated_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None

    @classmethod
    def from_model(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            parent_id=order.parent_id,
            student_id=order.student_id,
            items=[
                OrderItemResponse(
                    menu_item_id=line["menu_item_id"],
                    name=line["name"],
                    price=from_cents(line["price"]),
                    quantity=line["quantity"],
                )
                for line in order.items or []
            ],
            total_amount=from_cents(order.total_amount),
            order_type=order.order_type,
            status=order.status,
            delivery_date=order.delivery_date,
            delivery_time=order.delivery_time,
            special_instructions=order.special_instructions,
            created_at=order.created_at,
            updated_at=order.updated_at,
            completed_at=order.completed_at,
            cancelled_at=order.cancelled_at,
        )


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class StatusBucket(BaseModel):
    count: int
    amount: Decimal


class OrderStatisticsResponse(BaseModel):
    total_orders: int
    completed_orders: int
    cancelled_orders: int
    pending_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    by_status: dict[str, StatusBucket]

    @classmethod
    def from_stats(cls, stats: dict) -> "OrderStatisticsResponse":
        return cls(
            total_orders=stats["total_orders"],
            completed_orders=stats["completed_orders"],
            cancelled_orders=stats["cancelled_orders"],
            pending_orders=stats["pending_orders"],
            total_revenue=from_cents(stats["total_revenue"]),
            average_order_value=from_cents(stats["average_order_value"]),
            by_status={
                status: StatusBucket(count=bucket["count"], amount=from_cents(bucket["amount"]))
                for status, bucket in stats["by_status"].items()
            },
        )
