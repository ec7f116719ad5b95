"""
Canteen Service - Cart API (parents only)

Every mutation loads the saved snapshot, applies one pure cart function and
saves the result. Checkout turns cart lines into orders.
"""
from datetime import date

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, require_parent
from canteen.core.events import TOPIC_ORDERS, ChangeFeed, get_change_feed, wallet_topic
from canteen.db import cart_ops
from canteen.db.database import get_db
from canteen.schemas.cart import (
    CartLine,
    CartLineAdd,
    CartResponse,
    CartState,
    CartTotals,
    CheckoutRequest,
    CopyDayRequest,
    QuantityUpdate,
    WeeklyCartLine,
    WeeklyCartLineAdd,
    WeeklySummary,
)
from canteen.schemas.order import OrderResponse

router = APIRouter(prefix="/carts", tags=["carts"])


def _response(state: CartState) -> CartResponse:
    return CartResponse(
        daily=state.daily,
        weekly=state.weekly,
        daily_totals=CartTotals(total=cart_ops.cart_total(state.daily), item_count=cart_ops.item_count(state.daily)),
        weekly_summary=cart_ops.weekly_summary(state.weekly),
    )


@router.get("/me", response_model=CartResponse)
async def get_cart(
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    return _response(await cart_ops.load_cart(db, parent.id))


@router.put("/me", response_model=CartResponse)
async def replace_cart(
    payload: CartState,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    """Store the client's cart snapshot as-is."""
    return _response(await cart_ops.save_cart(db, parent.id, payload))


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    await cart_ops.clear_cart(db, parent.id)


# ── Daily cart ────────────────────────────────────────────────

@router.post("/me/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    payload: CartLineAdd,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.daily = cart_ops.add_line(state.daily, CartLine(**payload.model_dump()))
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.patch("/me/items/{line_id}", response_model=CartResponse)
async def update_item_quantity(
    line_id: str,
    payload: QuantityUpdate,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.daily = cart_ops.update_quantity(state.daily, line_id, payload.quantity)
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.delete("/me/items/{line_id}", response_model=CartResponse)
async def remove_item(
    line_id: str,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.daily = cart_ops.remove_line(state.daily, line_id)
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.delete("/me/students/{student_id}", response_model=CartResponse)
async def remove_student_items(
    student_id: str,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.daily = cart_ops.remove_student_lines(state.daily, student_id)
    return _response(await cart_ops.save_cart(db, parent.id, state))


# ── Weekly cart ───────────────────────────────────────────────

@router.get("/me/weekly/summary", response_model=WeeklySummary)
async def weekly_summary(
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    return cart_ops.weekly_summary(state.weekly)


@router.post("/me/weekly/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_weekly_item(
    payload: WeeklyCartLineAdd,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    line = WeeklyCartLine(**payload.model_dump(exclude={"day"}))
    state.weekly = cart_ops.add_weekly_line(state.weekly, payload.day, line)
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.patch("/me/weekly/{day}/items/{line_id}", response_model=CartResponse)
async def update_weekly_quantity(
    day: date,
    line_id: str,
    payload: QuantityUpdate,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.weekly = cart_ops.update_weekly_quantity(state.weekly, day, line_id, payload.quantity)
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.delete("/me/weekly/{day}/items/{line_id}", response_model=CartResponse)
async def remove_weekly_item(
    day: date,
    line_id: str,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.weekly = cart_ops.remove_weekly_line(state.weekly, day, line_id)
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.delete("/me/weekly/{day}", response_model=CartResponse)
async def clear_weekly_day(
    day: date,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.weekly = cart_ops.clear_day(state.weekly, day)
    return _response(await cart_ops.save_cart(db, parent.id, state))


@router.post("/me/weekly/{day}/copy", response_model=CartResponse)
async def copy_weekly_day(
    day: date,
    payload: CopyDayRequest,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    state = await cart_ops.load_cart(db, parent.id)
    state.weekly = cart_ops.copy_day(state.weekly, day, payload.targets)
    return _response(await cart_ops.save_cart(db, parent.id, state))


# ── Checkout ──────────────────────────────────────────────────

@router.post("/me/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
    feed: ChangeFeed = Depends(get_change_feed),
):
    order = await cart_ops.checkout(
        db, parent.id, payload.student_id, payload.delivery_date,
        delivery_time=payload.delivery_time,
        special_instructions=payload.special_instructions,
        idempotency_key=request.headers.get("Idempotency-Key"),
    )
    await feed.publish(TOPIC_ORDERS, {"action": "placed", "ids": [order.id]})
    await feed.publish(wallet_topic(parent.id), {"action": "debited"})
    return OrderResponse.from_model(order)


@router.post("/me/checkout-weekly", response_model=list[OrderResponse], status_code=status.HTTP_201_CREATED)
async def checkout_weekly(
    request: Request,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
    feed: ChangeFeed = Depends(get_change_feed),
):
    orders = await cart_ops.checkout_weekly(
        db, parent.id, idempotency_key=request.headers.get("Idempotency-Key"),
    )
    await feed.publish(TOPIC_ORDERS, {"action": "placed", "ids": [o.id for o in orders]})
    await feed.publish(wallet_topic(parent.id), {"action": "debited"})
    return [OrderResponse.from_model(o) for o in orders]
