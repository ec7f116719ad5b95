"""
Canteen Service - Cart schemas

Cart lines are client snapshots: name and price are whatever the client saw
when adding. Checkout re-reads both from the catalog.
"""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from canteen.core.utils import utcnow


class CartLine(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    menu_item_id: str
    name: str
    price: Decimal = Field(..., ge=0, decimal_places=2)
    category: str = "Other"
    quantity: int = Field(1, ge=1)
    student_id: str | None = None
    student_name: str | None = None
    delivery_time: str | None = None
    special_instructions: str | None = None
    added_at: datetime = Field(default_factory=utcnow)


class WeeklyCartLine(CartLine):
    meal_type: str | None = None


class CartState(BaseModel):
    daily: list[CartLine] = Field(default_factory=list)
    weekly: dict[date, list[WeeklyCartLine]] = Field(default_factory=dict)


class CartLineAdd(BaseModel):
    menu_item_id: str
    name: str
    price: Decimal = Field(..., ge=0, decimal_places=2)
    category: str = "Other"
    quantity: int = Field(1, ge=1, le=50)
    student_id: str | None = None
    student_name: str | None = None
    delivery_time: str | None = Field(None, max_length=16)
    special_instructions: str | None = Field(None, max_length=500)


class WeeklyCartLineAdd(CartLineAdd):
    day: date
    meal_type: str | None = None


class QuantityUpdate(BaseModel):
    quantity: int


class CartTotals(BaseModel):
    total: Decimal
    item_count: int


class WeeklySummary(BaseModel):
    total_cost: Decimal
    total_items: int
    items_by_category: dict[str, int]
    cost_by_date: dict[date, Decimal]
    days_with_orders: int
    average_cost_per_day: Decimal


class CheckoutRequest(BaseModel):
    student_id: str
    delivery_date: date
    delivery_time: str | None = Field(None, max_length=16)
    special_instructions: str | None = Field(None, max_length=500)


class CopyDayRequest(BaseModel):
    targets: list[date] = Field(..., min_length=1, max_length=5)


class CartResponse(BaseModel):
    daily: list[CartLine]
    weekly: dict[date, list[WeeklyCartLine]]
    daily_totals: CartTotals
    weekly_summary: WeeklySummary
