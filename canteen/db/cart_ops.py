"""
Canteen Service - Carts and checkout

Cart functions are pure: they take a list (or a date -> list map) of lines
and return a new one. Saved carts are stored per parent exactly as given.
Checkout is where cart lines meet the database: the student, the delivery
date and every item are validated against the published weekly menu, and
name/price are re-read from the catalog before the order is placed.
"""
import logging
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import NotFoundError, ValidationError
from canteen.core.utils import CENT, utcnow
from canteen.db.catalog_ops import get_menu_items_by_ids
from canteen.db.order_ops import OrderDraft, OrderLine, orders_for_key, place_order, place_orders
from canteen.db.student_ops import require_linked_student
from canteen.db.weekly_menu_ops import get_published_menu
from canteen.models.menu import MEAL_TYPES, WEEKDAYS
from canteen.models.order import Order, OrderType, SavedCart
from canteen.schemas.cart import CartLine, CartState, WeeklyCartLine, WeeklySummary

logger = logging.getLogger(__name__)

WeeklyCart = dict[date, list[WeeklyCartLine]]


# ── Daily cart ────────────────────────────────────────────────

def _daily_key(line: CartLine) -> tuple:
    return (line.menu_item_id, line.student_id, line.delivery_time, line.special_instructions or "")


def add_line(lines: Sequence[CartLine], new_line: CartLine) -> list[CartLine]:
    """Add a line, or bump the quantity of an identical one."""
    result = list(lines)
    key = _daily_key(new_line)
    for index, line in enumerate(result):
        if _daily_key(line) == key:
            result[index] = line.model_copy(update={"quantity": line.quantity + new_line.quantity})
            return result
    result.append(new_line)
    return result


def update_quantity(lines: Sequence[CartLine], line_id: str, quantity: int) -> list:
    """Set a line's quantity; zero or less removes it."""
    if not any(line.id == line_id for line in lines):
        raise NotFoundError("CartItem", line_id)
    if quantity <= 0:
        return remove_line(lines, line_id)
    return [line.model_copy(update={"quantity": quantity}) if line.id == line_id else line for line in lines]


def remove_line(lines: Sequence[CartLine], line_id: str) -> list:
    return [line for line in lines if line.id != line_id]


def remove_student_lines(lines: Sequence[CartLine], student_id: str) -> list:
    return [line for line in lines if line.student_id != student_id]


def cart_total(lines: Iterable[CartLine]) -> Decimal:
    return sum((line.price * line.quantity for line in lines), Decimal("0")).quantize(CENT)


def item_count(lines: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in lines)


# ── Weekly cart ───────────────────────────────────────────────

def _weekly_key(line: WeeklyCartLine) -> tuple:
    return (line.menu_item_id, line.student_id, line.meal_type, line.delivery_time)


def add_weekly_line(weekly: WeeklyCart, day: date, new_line: WeeklyCartLine) -> WeeklyCart:
    lines = list(weekly.get(day, []))
    key = _weekly_key(new_line)
    for index, line in enumerate(lines):
        if _weekly_key(line) == key:
            lines[index] = line.model_copy(update={"quantity": line.quantity + new_line.quantity})
            break
    else:
        lines.append(new_line)
    return {**weekly, day: lines}


def update_weekly_quantity(weekly: WeeklyCart, day: date, line_id: str, quantity: int) -> WeeklyCart:
    lines = update_quantity(weekly.get(day, []), line_id, quantity)
    return _with_day(weekly, day, lines)


def remove_weekly_line(weekly: WeeklyCart, day: date, line_id: str) -> WeeklyCart:
    return _with_day(weekly, day, remove_line(weekly.get(day, []), line_id))


def clear_day(weekly: WeeklyCart, day: date) -> WeeklyCart:
    return {d: lines for d, lines in weekly.items() if d != day}


def copy_day(weekly: WeeklyCart, source: date, targets: Iterable[date]) -> WeeklyCart:
    """Copy one day's lines onto other days, merging by menu item."""
    source_lines = weekly.get(source, [])
    result = dict(weekly)
    for target in targets:
        if target == source:
            continue
        merged = list(result.get(target, []))
        for line in source_lines:
            for index, existing in enumerate(merged):
                if existing.menu_item_id == line.menu_item_id and existing.student_id == line.student_id:
                    merged[index] = existing.model_copy(update={"quantity": existing.quantity + line.quantity})
                    break
            else:
                merged.append(WeeklyCartLine(**line.model_dump(exclude={"id", "added_at"})))
        result[target] = merged
    return result


def _with_day(weekly: WeeklyCart, day: date, lines: list) -> WeeklyCart:
    if not lines:
        return clear_day(weekly, day)
    return {**weekly, day: lines}


def weekly_summary(weekly: WeeklyCart) -> WeeklySummary:
    by_category: dict[str, int] = {}
    cost_by_date: dict[date, Decimal] = {}
    for day in sorted(weekly):
        lines = weekly[day]
        if not lines:
            continue
        cost_by_date[day] = cart_total(lines)
        for line in lines:
            by_category[line.category] = by_category.get(line.category, 0) + line.quantity

    total_cost = sum(cost_by_date.values(), Decimal("0")).quantize(CENT)
    days = len(cost_by_date)
    return WeeklySummary(
        total_cost=total_cost,
        total_items=sum(item_count(lines) for lines in weekly.values()),
        items_by_category=by_category,
        cost_by_date=cost_by_date,
        days_with_orders=days,
        average_cost_per_day=(total_cost / days).quantize(CENT) if days else Decimal("0.00"),
    )


# ── Persistence ───────────────────────────────────────────────

async def load_cart(db: AsyncSession, parent_id: str) -> CartState:
    saved = await db.get(SavedCart, parent_id)
    if saved is None:
        return CartState()
    return CartState.model_validate({"daily": saved.daily_cart or [], "weekly": saved.weekly_cart or {}})


async def save_cart(db: AsyncSession, parent_id: str, state: CartState) -> CartState:
    data = state.model_dump(mode="json")
    saved = await db.get(SavedCart, parent_id)
    if saved is None:
        db.add(SavedCart(parent_id=parent_id, daily_cart=data["daily"], weekly_cart=data["weekly"]))
    else:
        saved.daily_cart = data["daily"]
        saved.weekly_cart = data["weekly"]
        saved.updated_at = utcnow()
    await db.commit()
    return state


async def clear_cart(db: AsyncSession, parent_id: str) -> None:
    saved = await db.get(SavedCart, parent_id)
    if saved is not None:
        await db.delete(saved)
        await db.commit()


# ── Checkout ──────────────────────────────────────────────────

async def price_order_lines(
    db: AsyncSession, parent_id: str, student_id: str, delivery_date: date, lines: Sequence,
) -> list[OrderLine]:
    """
    Validate a student's lines for one delivery date and price them from the catalog.
    lines need menu_item_id and quantity; cart lines also carry the name the client saw.
    """
    await require_linked_student(db, parent_id, student_id)

    if delivery_date.weekday() >= len(WEEKDAYS):
        raise ValidationError(f"{delivery_date.isoformat()} is not a school day.")
    if delivery_date < utcnow().date():
        raise ValidationError(f"{delivery_date.isoformat()} is in the past.")

    menu = await get_published_menu(db, delivery_date)
    if menu is None:
        raise ValidationError(f"No published menu for the week of {delivery_date.isoformat()}.")

    day_name = WEEKDAYS[delivery_date.weekday()]
    meals = (menu.menu_items_by_day or {}).get(day_name) or {}
    scheduled = {i for meal in MEAL_TYPES for i in (meals.get(meal) or [])}
    catalog = await get_menu_items_by_ids(db, [line.menu_item_id for line in lines])

    problems: list[str] = []
    priced: list[OrderLine] = []
    for line in lines:
        item = catalog.get(line.menu_item_id)
        if item is None:
            problems.append(f'"{getattr(line, "name", line.menu_item_id)}" no longer exists')
        elif line.menu_item_id not in scheduled:
            problems.append(f'"{item.name}" is not on the menu for {day_name}')
        elif not item.is_available:
            problems.append(f'"{item.name}" is unavailable')
        else:
            priced.append(OrderLine(menu_item_id=item.id, name=item.name, price=item.price, quantity=line.quantity))
    if problems:
        raise ValidationError("Some items cannot be ordered.", details={"items": problems})
    return priced


def _instructions(lines: Sequence[CartLine], override: str | None) -> str | None:
    if override:
        return override
    notes = list(dict.fromkeys(line.special_instructions for line in lines if line.special_instructions))
    return "; ".join(notes) or None


async def _store_remaining(db: AsyncSession, parent_id: str, state: CartState) -> None:
    # The order is already committed; a failed cart write only leaves stale lines behind.
    try:
        await save_cart(db, parent_id, state)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Could not clear checked-out cart lines for %s: %s", parent_id, exc)


async def checkout(
    db: AsyncSession,
    parent_id: str,
    student_id: str,
    delivery_date: date,
    *,
    delivery_time: str | None = None,
    special_instructions: str | None = None,
    idempotency_key: str | None = None,
) -> Order:
    """
    Order the daily cart lines for one student.

    A repeated idempotency_key returns the order it already placed, even
    though that checkout has since emptied the cart.
    """
    if idempotency_key:
        placed = await orders_for_key(db, parent_id, idempotency_key)
        if placed:
            return placed[0]

    state = await load_cart(db, parent_id)
    lines = [line for line in state.daily if line.student_id == student_id]
    if not lines:
        raise ValidationError("The cart has no items for this student.")

    priced = await price_order_lines(db, parent_id, student_id, delivery_date, lines)
    order = await place_order(
        db, parent_id, student_id, priced, sum(line.subtotal for line in priced), delivery_date,
        delivery_time=delivery_time or next((line.delivery_time for line in lines if line.delivery_time), None),
        special_instructions=_instructions(lines, special_instructions),
        idempotency_key=idempotency_key,
        order_type=OrderType.ONE_TIME,
    )
    await _store_remaining(db, parent_id, state.model_copy(update={"daily": remove_student_lines(state.daily, student_id)}))
    return order


async def checkout_weekly(db: AsyncSession, parent_id: str, *, idempotency_key: str | None = None) -> list[Order]:
    """One order per (date, student) in the weekly cart, charged as a single ledger entry."""
    if idempotency_key:
        placed = await orders_for_key(db, parent_id, idempotency_key)
        if placed:
            return placed

    state = await load_cart(db, parent_id)
    groups: dict[tuple[date, str], list[WeeklyCartLine]] = {}
    for day in sorted(state.weekly):
        for line in state.weekly[day]:
            if not line.student_id:
                raise ValidationError(f'"{line.name}" on {day.isoformat()} has no student selected.')
            groups.setdefault((day, line.student_id), []).append(line)
    if not groups:
        raise ValidationError("The weekly cart is empty.")

    drafts: list[OrderDraft] = []
    for (day, student_id), lines in groups.items():
        priced = await price_order_lines(db, parent_id, student_id, day, lines)
        drafts.append(OrderDraft(
            student_id=student_id,
            delivery_date=day,
            items=priced,
            delivery_time=next((line.delivery_time for line in lines if line.delivery_time), None),
            special_instructions=_instructions(lines, None),
        ))

    orders = await place_orders(
        db, parent_id, drafts, order_type=OrderType.WEEKLY, idempotency_key=idempotency_key,
    )
    await _store_remaining(db, parent_id, state.model_copy(update={"weekly": {}}))
    return orders
