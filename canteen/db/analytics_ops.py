"""
Canteen Service - Weekly menu analytics

Ordering patterns for one Monday-anchored week, computed from the orders
delivered that week:
  - quantity ordered per item, per weekday and per meal type
  - items per weekday ranked by quantity
Cancelled orders are left out. Meal types come from the week's menu slot
holding the item on that weekday; items not on the menu count as "unknown".

Results are stored in menu_analytics so dashboards can list and compare weeks
without re-scanning orders. refresh_week_analytics recomputes and overwrites.
"""
import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import NotFoundError
from canteen.core.retry import with_transient_retry
from canteen.core.utils import monday_of, utcnow
from canteen.models.menu import MEAL_TYPES, WEEKDAYS, MenuAnalytics, MenuItem, WeeklyMenu
from canteen.models.order import Order, OrderStatus

logger = logging.getLogger(__name__)

DAY_NAMES: tuple[str, ...] = WEEKDAYS + ("Saturday", "Sunday")
UNKNOWN_MEAL_TYPE = "unknown"


@dataclass
class WeekAnalytics:
    week_start: date
    popular_items_by_day: dict[str, list[str]] = field(default_factory=dict)
    total_order_counts: dict[str, int] = field(default_factory=dict)
    order_counts_by_day: dict[str, dict[str, int]] = field(default_factory=dict)
    orders_by_meal_type: dict[str, int] = field(default_factory=dict)
    total_orders: int = 0
    calculated_at: datetime | None = None
    updated_at: datetime | None = None

    def top_items(self, n: int) -> list[tuple[str, int]]:
        return _ranked(self.total_order_counts)[:n]

    def orders_for_day(self, day: str) -> int:
        return sum((self.order_counts_by_day.get(day) or {}).values())

    @property
    def average_orders_per_day(self) -> float:
        """Quantity per weekday that had any orders."""
        if not self.order_counts_by_day:
            return 0.0
        return self.total_orders / len(self.order_counts_by_day)

    def top_by_category(self, items: Mapping[str, MenuItem], limit: int) -> dict[str, list[tuple[str, int]]]:
        """Best sellers per catalog category; items no longer in the catalog are skipped."""
        grouped: dict[str, dict[str, int]] = defaultdict(dict)
        for item_id, count in self.total_order_counts.items():
            item = items.get(item_id)
            if item is not None:
                grouped[item.category][item_id] = count
        return {category: _ranked(counts)[:limit] for category, counts in grouped.items()}

    def to_data(self) -> dict[str, Any]:
        return {
            "popular_items_by_day": self.popular_items_by_day,
            "total_order_counts": self.total_order_counts,
            "order_counts_by_day": self.order_counts_by_day,
            "orders_by_meal_type": self.orders_by_meal_type,
        }

    @classmethod
    def from_model(cls, row: MenuAnalytics) -> "WeekAnalytics":
        data = row.analytics_data or {}
        return cls(
            week_start=row.week_start,
            popular_items_by_day={k: list(v) for k, v in (data.get("popular_items_by_day") or {}).items()},
            total_order_counts=dict(data.get("total_order_counts") or {}),
            order_counts_by_day={k: dict(v) for k, v in (data.get("order_counts_by_day") or {}).items()},
            orders_by_meal_type=dict(data.get("orders_by_meal_type") or {}),
            total_orders=row.total_orders,
            calculated_at=row.calculated_at,
            updated_at=row.updated_at,
        )


@dataclass
class WeekComparison:
    week1: WeekAnalytics
    week2: WeekAnalytics

    @property
    def order_difference(self) -> int:
        return self.week2.total_orders - self.week1.total_orders

    @property
    def percentage_change(self) -> float:
        if self.week1.total_orders == 0:
            return 0.0
        return round(self.order_difference / self.week1.total_orders * 100, 2)


def _ranked(counts: Mapping[str, int]) -> list[tuple[str, int]]:
    # Highest quantity first; ties keep a stable order by item id.
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))


def _meal_type_index(menu: WeeklyMenu | None) -> dict[str, dict[str, str]]:
    """{weekday: {item_id: meal_type}} for the first slot holding each item."""
    index: dict[str, dict[str, str]] = {}
    for day, meals in ((menu.menu_items_by_day if menu else None) or {}).items():
        slots = index.setdefault(day, {})
        for meal_type in MEAL_TYPES:
            for item_id in (meals or {}).get(meal_type) or []:
                slots.setdefault(item_id, meal_type)
    return index


def summarize_orders(week_start: date, orders: Iterable[Order], menu: WeeklyMenu | None = None) -> WeekAnalytics:
    """Pure aggregation over order rows; cancelled orders are ignored."""
    meal_types = _meal_type_index(menu)
    totals: Counter[str] = Counter()
    by_day: dict[str, Counter[str]] = {}
    by_meal: Counter[str] = Counter()

    for order in orders:
        if OrderStatus(order.status) == OrderStatus.CANCELLED:
            continue
        day = DAY_NAMES[order.delivery_date.weekday()]
        for line in order.items or []:
            item_id = line.get("menu_item_id")
            if not item_id:
                continue
            quantity = int(line.get("quantity") or 1)
            totals[item_id] += quantity
            by_day.setdefault(day, Counter())[item_id] += quantity
            by_meal[meal_types.get(day, {}).get(item_id, UNKNOWN_MEAL_TYPE)] += quantity

    ordered_days = [d for d in DAY_NAMES if d in by_day]
    return WeekAnalytics(
        week_start=week_start,
        popular_items_by_day={d: [item_id for item_id, _ in _ranked(by_day[d])] for d in ordered_days},
        total_order_counts=dict(totals),
        order_counts_by_day={d: dict(by_day[d]) for d in ordered_days},
        orders_by_meal_type=dict(by_meal),
        total_orders=sum(totals.values()),
    )


async def compute_week_analytics(db: AsyncSession, week_start: date) -> WeekAnalytics:
    monday = monday_of(week_start)
    orders = (await db.execute(
        select(Order).where(
            Order.delivery_date >= monday,
            Order.delivery_date < monday + timedelta(days=7),
        )
    )).scalars()
    menu = (await db.execute(select(WeeklyMenu).where(WeeklyMenu.week_start == monday))).scalar_one_or_none()
    return summarize_orders(monday, orders, menu)


async def refresh_week_analytics(db: AsyncSession, week_start: date) -> WeekAnalytics:
    """Recompute from orders and store, replacing any earlier result for the week."""
    analytics = await compute_week_analytics(db, week_start)
    now = utcnow()
    for attempt in (1, 2):
        row = (await db.execute(
            select(MenuAnalytics).where(MenuAnalytics.week_start == analytics.week_start)
        )).scalar_one_or_none()
        if row is None:
            row = MenuAnalytics(week_start=analytics.week_start, calculated_at=now)
            db.add(row)
        else:
            row.updated_at = now
        row.analytics_data = analytics.to_data()
        row.total_orders = analytics.total_orders
        try:
            await db.commit()
            break
        except IntegrityError:
            # Another refresh inserted the week first; overwrite its row instead.
            await db.rollback()
            if attempt == 2:
                raise

    logger.info("Analytics for week %s: %d items ordered", analytics.week_start, analytics.total_orders)
    return WeekAnalytics.from_model(row)


@with_transient_retry()
async def get_week_analytics(db: AsyncSession, week_start: date) -> WeekAnalytics | None:
    row = (await db.execute(
        select(MenuAnalytics).where(MenuAnalytics.week_start == monday_of(week_start))
    )).scalar_one_or_none()
    return WeekAnalytics.from_model(row) if row else None


@with_transient_retry()
async def analytics_for_weeks(db: AsyncSession, week_starts: Iterable[date]) -> list[WeekAnalytics]:
    """Stored results for the given weeks, in the order asked; weeks never calculated are skipped."""
    mondays = list(dict.fromkeys(monday_of(w) for w in week_starts))
    rows = (await db.execute(select(MenuAnalytics).where(MenuAnalytics.week_start.in_(mondays)))).scalars()
    by_week = {row.week_start: row for row in rows}
    return [WeekAnalytics.from_model(by_week[m]) for m in mondays if m in by_week]


@with_transient_retry()
async def recent_analytics(db: AsyncSession, weeks: int) -> list[WeekAnalytics]:
    rows = (await db.execute(
        select(MenuAnalytics).order_by(MenuAnalytics.week_start.desc()).limit(weeks)
    )).scalars()
    return [WeekAnalytics.from_model(row) for row in rows]


async def compare_weeks(db: AsyncSession, week1: date, week2: date) -> WeekComparison:
    first = await get_week_analytics(db, week1)
    second = await get_week_analytics(db, week2)
    for monday, found in ((monday_of(week1), first), (monday_of(week2), second)):
        if found is None:
            raise NotFoundError("MenuAnalytics", monday.isoformat())
    return WeekComparison(week1=first, week2=second)


async def delete_week_analytics(db: AsyncSession, week_start: date) -> None:
    await db.execute(delete(MenuAnalytics).where(MenuAnalytics.week_start == monday_of(week_start)))
    await db.commit()
