"""
Canteen Service - Orders API

Flow for POST /orders:
  1. JWT validated by middleware (request.state.user set)
  2. Idempotency-Key replayed from Redis by IdempotencyMiddleware if seen before
  3. Items validated against the published menu and priced from the catalog
  4. Wallet debit + order + ledger row committed in one transaction
  5. Change messages published for the order and wallet streams
"""
from datetime import date

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, check_owner, get_current_user, require_admin, require_parent
from canteen.core.events import TOPIC_ORDERS, ChangeFeed, get_change_feed, wallet_topic
from canteen.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from canteen.core.utils import from_cents, to_cents
from canteen.db import order_ops
from canteen.db.cart_ops import price_order_lines
from canteen.db.database import get_db
from canteen.models.order import OrderStatus
from canteen.schemas.order import OrderRequest, OrderResponse, OrderStatisticsResponse, OrderStatusUpdate

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Place an order paid from the wallet. `total` is what the client expects
    to pay; a mismatch with current catalog prices is rejected.
    """
    idempotency_key = request.headers.get("Idempotency-Key")
    if idempotency_key:
        # Replays must not be re-validated: the date may have passed or an item sold out since.
        placed = await order_ops.orders_for_key(db, parent.id, idempotency_key)
        if placed:
            return OrderResponse.from_model(placed[0])

    lines = await price_order_lines(db, parent.id, payload.student_id, payload.delivery_date, payload.items)
    expected = to_cents(payload.total)
    actual = sum(line.subtotal for line in lines)
    if expected != actual:
        raise ValidationError(
            "Prices have changed since the order was prepared.",
            details={"expected": str(payload.total), "current": str(from_cents(actual))},
        )

    order = await order_ops.place_order(
        db, parent.id, payload.student_id, lines, actual, payload.delivery_date,
        delivery_time=payload.delivery_time,
        special_instructions=payload.special_instructions,
        idempotency_key=idempotency_key,
    )
    await feed.publish(TOPIC_ORDERS, {"action": "placed", "ids": [order.id]})
    await feed.publish(wallet_topic(parent.id), {"action": "debited"})
    return OrderResponse.from_model(order)


@router.get("", response_model=list[OrderResponse])
async def list_orders(
    parent_id: str | None = None,
    student_id: str | None = None,
    order_status: OrderStatus | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 200,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Admins see every order; parents only their own."""
    if not user.is_admin:
        parent_id = user.id
    orders = await order_ops.list_orders(
        db, parent_id=parent_id, student_id=student_id, status=order_status, start=start, end=end, limit=limit,
    )
    return [OrderResponse.from_model(o) for o in orders]


@router.get("/statistics", response_model=OrderStatisticsResponse)
async def order_statistics(
    start: date | None = None,
    end: date | None = None,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return OrderStatisticsResponse.from_stats(await order_ops.order_statistics(db, start, end))


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    order = await order_ops.get_order(db, order_id)
    if order is None or (not user.is_admin and order.parent_id != user.id):
        raise NotFoundError("Order", order_id)
    return OrderResponse.from_model(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    order = await order_ops.update_order_status(db, order_id, payload.status)
    await feed.publish(TOPIC_ORDERS, {"action": "status", "ids": [order.id], "status": order.status.value})
    return OrderResponse.from_model(order)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Admins may cancel any open order; parents only their own pending ones. No refund is issued."""
    if not user.is_admin:
        order = await order_ops.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        check_owner(user, order.parent_id)
        if order.status != OrderStatus.PENDING:
            raise ForbiddenError("Only pending orders can be cancelled by parents.")
    # Parents race the kitchen: the cancel only lands while the order is still pending.
    from_statuses = None if user.is_admin else (OrderStatus.PENDING,)
    order = await order_ops.cancel_order(db, order_id, from_statuses=from_statuses)
    await feed.publish(TOPIC_ORDERS, {"action": "cancelled", "ids": [order.id]})
    return OrderResponse.from_model(order)
