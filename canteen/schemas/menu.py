"""
Canteen Service - Menu item schemas
Prices cross the API as two-decimal amounts and are stored as cents.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from canteen.core.utils import from_cents
from canteen.models.menu import MenuItem


class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Chicken Adobo"])
    description: str = Field("", max_length=2000)
    price: Decimal = Field(..., ge=0, decimal_places=2, examples=["45.00"])
    category: str = Field(..., min_length=1, max_length=100, examples=["Main Course"])
    allergens: list[str] = Field(default_factory=list)
    dietary_labels: list[str] = Field(default_factory=list)
    is_available: bool = True
    prep_time_minutes: int | None = Field(None, ge=0)
    image_url: str | None = Field(None, max_length=1024)


class MenuItemUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    price: Decimal | None = Field(None, ge=0, decimal_places=2)
    category: str | None = Field(None, min_length=1, max_length=100)
    allergens: list[str] | None = None
    dietary_labels: list[str] | None = None
    is_available: bool | None = None
    prep_time_minutes: int | None = Field(None, ge=0)
    image_url: str | None = Field(None, max_length=1024)


class AvailabilityUpdate(BaseModel):
    is_available: bool


class MenuItemResponse(BaseModel):
    id: str
    name: str
    description: str
    price: Decimal
    category: str
    allergens: list[str]
    dietary_labels: list[str]
    is_available: bool
    prep_time_minutes: int | None
    image_url: str | None
    available_days: list[str]
    created_at: datetime
    updated_at: datetime | None

    @classmethod
    def from_model(cls, item: MenuItem) -> "MenuItemResponse":
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            price=from_cents(item.price),
            category=item.category,
            allergens=list(item.allergens or []),
            dietary_labels=list(item.dietary_labels or []),
            is_available=item.is_available,
            prep_time_minutes=item.prep_time_minutes,
            image_url=item.image_url,
            available_days=list(item.available_days or []),
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class MenuItemCounts(BaseModel):
    total: int
    available: int


class DeleteResponse(BaseModel):
    item_id: str
    deleted: bool
    cleaned_weeks: list[str]
    warnings: list[str]


class ImportRequest(BaseModel):
    headers: list[str] = Field(..., min_length=1)
    rows: list[list[Any]] = Field(default_factory=list)


class ImportFailure(BaseModel):
    row: int
    error: str


class ImportResponse(BaseModel):
    success: int
    duplicates: int
    failed: list[ImportFailure]
