"""
Canteen Service - Weekly menu schemas
"""
from datetime import date, datetime

from pydantic import BaseModel, Field

from canteen.core.utils import week_label
from canteen.db.analytics_ops import WeekAnalytics, WeekComparison
from canteen.models.menu import PublishStatus, WeeklyMenu, WeeklyMenuVersion

MenuByDay = dict[str, dict[str, list[str]]]


class WeeklyMenuWrite(BaseModel):
    menu_items_by_day: MenuByDay = Field(
        default_factory=dict,
        examples=[{"Monday": {"breakfast": [], "lunch": ["item-1"], "snack": [], "drinks": []}}],
    )


class WeeklyMenuResponse(BaseModel):
    id: str
    week_start: date
    week_label: str
    menu_items_by_day: MenuByDay
    publish_status: PublishStatus
    current_version: int
    published_at: datetime | None
    archived_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_model(cls, menu: WeeklyMenu) -> "WeeklyMenuResponse":
        return cls(
            id=menu.id,
            week_start=menu.week_start,
            week_label=week_label(menu.week_start),
            menu_items_by_day=menu.menu_items_by_day or {},
            publish_status=menu.publish_status,
            current_version=menu.current_version,
            published_at=menu.published_at,
            archived_at=menu.archived_at,
            updated_at=menu.updated_at,
        )


class WeeklyMenuVersionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    weekly_menu_id: str
    version: int
    week_start: date
    menu_items_by_day: MenuByDay
    created_by: str | None
    created_at: datetime


class SlotIssueResponse(BaseModel):
    model_config = {"from_attributes": True}

    day: str
    meal_type: str
    message: str


class MenuValidationResponse(BaseModel):
    is_valid: bool
    errors: list[SlotIssueResponse]
    warnings: list[SlotIssueResponse]


class AvailabilityResponse(BaseModel):
    is_valid: bool
    warnings: list[str]
    unavailable_item_ids: list[str]


class CopyWeekRequest(BaseModel):
    target_week_start: date


def version_list(versions: list[WeeklyMenuVersion]) -> list[WeeklyMenuVersionResponse]:
    return [WeeklyMenuVersionResponse.model_validate(v) for v in versions]


class ItemCount(BaseModel):
    menu_item_id: str
    quantity: int


class WeekAnalyticsResponse(BaseModel):
    week_start: date
    week_label: str
    total_orders: int
    average_orders_per_day: float
    popular_items_by_day: dict[str, list[str]]
    total_order_counts: dict[str, int]
    order_counts_by_day: dict[str, dict[str, int]]
    orders_by_meal_type: dict[str, int]
    top_items: list[ItemCount]
    calculated_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_result(cls, analytics: WeekAnalytics, top: int = 5) -> "WeekAnalyticsResponse":
        return cls(
            week_start=analytics.week_start,
            week_label=week_label(analytics.week_start),
            total_orders=analytics.total_orders,
            average_orders_per_day=round(analytics.average_orders_per_day, 2),
            popular_items_by_day=analytics.popular_items_by_day,
            total_order_counts=analytics.total_order_counts,
            order_counts_by_day=analytics.order_counts_by_day,
            orders_by_meal_type=analytics.orders_by_meal_type,
            top_items=[ItemCount(menu_item_id=i, quantity=q) for i, q in analytics.top_items(top)],
            calculated_at=analytics.calculated_at,
            updated_at=analytics.updated_at,
        )


class WeekComparisonResponse(BaseModel):
    week1: WeekAnalyticsResponse
    week2: WeekAnalyticsResponse
    order_difference: int
    percentage_change: float

    @classmethod
    def from_result(cls, comparison: WeekComparison) -> "WeekComparisonResponse":
        return cls(
            week1=WeekAnalyticsResponse.from_result(comparison.week1),
            week2=WeekAnalyticsResponse.from_result(comparison.week2),
            order_difference=comparison.order_difference,
            percentage_change=comparison.percentage_change,
        )
