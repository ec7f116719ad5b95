"""
Canteen Service - Order placement and lifecycle

place_orders is the only path that creates orders. The wallet debit, the
order rows and the ledger row share one transaction: if any of them fails
nothing is written.

Status machine:
  pending → confirmed → preparing → ready → completed
  any non-terminal → cancelled
completed and cancelled are terminal.
"""
import logging
import uuid
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import CanteenError, InvalidTransitionError, NotFoundError, ValidationError
from canteen.core.retry import with_transient_retry
from canteen.core.utils import utcnow
from canteen.db.wallet_ops import REASON_SINGLE_ORDER, REASON_WEEKLY_ORDER, record_adjustment
from canteen.models.order import Order, OrderStatus, OrderType

logger = logging.getLogger(__name__)


@dataclass
class OrderLine:
    menu_item_id: str
    name: str
    price: int  # cents, snapshotted at placement
    quantity: int

    @property
    def subtotal(self) -> int:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
        }


@dataclass
class OrderDraft:
    student_id: str
    delivery_date: date
    items: list[OrderLine] = field(default_factory=list)
    delivery_time: str | None = None
    special_instructions: str | None = None

    @property
    def total(self) -> int:
        return sum(line.subtotal for line in self.items)


def generate_order_number(now: datetime, sequence: int = 0) -> str:
    """ORD-YYYYMMDDHHMMSSmmm, with a -n suffix for later orders of the same batch."""
    number = f"ORD-{now.strftime('%Y%m%d%H%M%S')}{now.microsecond // 1000:03d}"
    return f"{number}-{sequence + 1}" if sequence else number


def _validate_draft(draft: OrderDraft) -> None:
    if not draft.student_id:
        raise ValidationError("Order must name a student.")
    if not draft.items:
        raise ValidationError("Order must contain at least one item.")
    for line in draft.items:
        if line.quantity <= 0:
            raise ValidationError(f"Quantity for '{line.name}' must be positive.")
        if line.price < 0:
            raise ValidationError(f"Price for '{line.name}' must not be negative.")
    if draft.total <= 0:
        raise ValidationError("Order total must be positive.")


async def orders_for_key(db: AsyncSession, parent_id: str, idempotency_key: str) -> list[Order]:
    """Orders a previous call created under this key, in batch order."""
    result = await db.execute(
        select(Order)
        .where(Order.parent_id == parent_id, Order.idempotency_key == idempotency_key)
        .order_by(Order.batch_index)
    )
    return list(result.scalars())


async def place_orders(
    db: AsyncSession,
    parent_id: str,
    drafts: Sequence[OrderDraft],
    *,
    order_type: OrderType = OrderType.ONE_TIME,
    idempotency_key: str | None = None,
    actor_id: str | None = None,
) -> list[Order]:
    """
    Debit the wallet for every draft and create the orders atomically.

    One ledger row is written for the whole batch, referencing every order id.
    Repeating an idempotency key returns the orders created the first time
    without charging again.
    """
    if not drafts:
        raise ValidationError("Nothing to order.")
    for draft in drafts:
        _validate_draft(draft)

    if idempotency_key:
        existing = await orders_for_key(db, parent_id, idempotency_key)
        if existing:
            logger.info("Idempotent replay for %s key=%s", parent_id, idempotency_key)
            return existing

    total = sum(d.total for d in drafts)
    now = utcnow()
    order_ids = [str(uuid.uuid4()) for _ in drafts]
    reason = REASON_WEEKLY_ORDER if order_type == OrderType.WEEKLY else REASON_SINGLE_ORDER

    try:
        await record_adjustment(
            db, parent_id, -total,
            reason=reason, order_ids=order_ids, actor_id=actor_id or parent_id,
        )
        orders = [
            Order(
                id=order_id,
                order_number=generate_order_number(now, index),
                parent_id=parent_id,
                student_id=draft.student_id,
                items=[line.to_dict() for line in draft.items],
                total_amount=draft.total,
                order_type=order_type,
                status=OrderStatus.PENDING,
                delivery_date=draft.delivery_date,
                delivery_time=draft.delivery_time,
                special_instructions=draft.special_instructions,
                idempotency_key=idempotency_key or None,
                batch_index=index,
                created_at=now,
            )
            for index, (order_id, draft) in enumerate(zip(order_ids, drafts))
        ]
        db.add_all(orders)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if idempotency_key:
            # A concurrent request with the same key committed first.
            existing = await orders_for_key(db, parent_id, idempotency_key)
            if existing:
                return existing
        raise
    except CanteenError:
        await db.rollback()
        raise

    logger.info(
        "Placed %d order(s) for parent %s, total %d cents: %s",
        len(orders), parent_id, total, ", ".join(o.order_number for o in orders),
    )
    return orders


async def place_order(
    db: AsyncSession,
    parent_id: str,
    student_id: str,
    items: Sequence[OrderLine],
    total: int,
    delivery_date: date,
    *,
    delivery_time: str | None = None,
    special_instructions: str | None = None,
    idempotency_key: str | None = None,
    order_type: OrderType = OrderType.ONE_TIME,
    actor_id: str | None = None,
) -> Order:
    """Place a single order. total must equal the sum of the item lines."""
    draft = OrderDraft(
        student_id=student_id,
        delivery_date=delivery_date,
        items=list(items),
        delivery_time=delivery_time,
        special_instructions=special_instructions,
    )
    if total != draft.total:
        raise ValidationError(
            "Order total does not match its items.",
            details={"total": total, "computed": draft.total},
        )
    orders = await place_orders(
        db, parent_id, [draft],
        order_type=order_type, idempotency_key=idempotency_key, actor_id=actor_id,
    )
    return orders[0]


# ── Status ────────────────────────────────────────────────────

async def update_order_status(
    db: AsyncSession,
    order_id: str,
    status: OrderStatus,
    *,
    from_statuses: Collection[OrderStatus] | None = None,
) -> Order:
    """
    Move an order to status with a single conditional UPDATE.

    The row only changes while it is still non-terminal (and, when given, in
    one of from_statuses), so two concurrent admins can never move a
    completed order to cancelled. Asking for the status an order already has
    is a no-op.
    """
    allowed = [s for s in (from_statuses or OrderStatus) if not s.is_terminal and s != status]
    now = utcnow()
    values: dict[str, Any] = {"status": status, "updated_at": now}
    if status == OrderStatus.COMPLETED:
        values["completed_at"] = now
    elif status == OrderStatus.CANCELLED:
        values["cancelled_at"] = now

    try:
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await db.scalar(select(Order.status).where(Order.id == order_id))
            if current is None:
                raise NotFoundError("Order", order_id)
            current = OrderStatus(current)
            if current.is_terminal or current != status or (from_statuses and current not in from_statuses):
                raise InvalidTransitionError("order", current.value, status.value)
        await db.commit()
    except CanteenError:
        await db.rollback()
        raise

    order = await db.get(Order, order_id, populate_existing=True)
    logger.info("Order %s is now %s", order.order_number, OrderStatus(order.status).value)
    return order


async def cancel_order(
    db: AsyncSession, order_id: str, *, from_statuses: Collection[OrderStatus] | None = None,
) -> Order:
    """Cancel without refunding. Refunds are explicit wallet adjustments."""
    return await update_order_status(db, order_id, OrderStatus.CANCELLED, from_statuses=from_statuses)


# ── Queries ───────────────────────────────────────────────────

@with_transient_retry()
async def get_order(db: AsyncSession, order_id: str) -> Order | None:
    return await db.get(Order, order_id)


@with_transient_retry()
async def list_orders(
    db: AsyncSession,
    *,
    parent_id: str | None = None,
    student_id: str | None = None,
    status: OrderStatus | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 200,
) -> list[Order]:
    stmt = select(Order).order_by(Order.delivery_date.desc(), Order.created_at.desc())
    if parent_id:
        stmt = stmt.where(Order.parent_id == parent_id)
    if student_id:
        stmt = stmt.where(Order.student_id == student_id)
    if status:
        stmt = stmt.where(Order.status == status)
    if start:
        stmt = stmt.where(Order.delivery_date >= start)
    if end:
        stmt = stmt.where(Order.delivery_date <= end)
    return list((await db.execute(stmt.limit(limit))).scalars())


@with_transient_retry()
async def order_statistics(db: AsyncSession, start: date | None = None, end: date | None = None) -> dict[str, Any]:
    """
    Counts and amounts per status over a delivery-date range.
    Revenue counts completed orders only; average order value is revenue / completed.
    """
    stmt = select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
    if start:
        stmt = stmt.where(Order.delivery_date >= start)
    if end:
        stmt = stmt.where(Order.delivery_date <= end)
    rows = (await db.execute(stmt.group_by(Order.status))).all()

    by_status = {s.value: {"count": 0, "amount": 0} for s in OrderStatus}
    for status, count, amount in rows:
        by_status[OrderStatus(status).value] = {"count": count, "amount": int(amount)}

    total_orders = sum(v["count"] for v in by_status.values())
    completed = by_status[OrderStatus.COMPLETED.value]
    cancelled = by_status[OrderStatus.CANCELLED.value]
    revenue = completed["amount"]
    return {
        "total_orders": total_orders,
        "completed_orders": completed["count"],
        "cancelled_orders": cancelled["count"],
        "pending_orders": total_orders - completed["count"] - cancelled["count"],
        "total_revenue": revenue,
        "average_order_value": round(revenue / completed["count"]) if completed["count"] else 0,
        "by_status": by_status,
    }
