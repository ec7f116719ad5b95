"""
Order engine tests

  1. Idempotency keys replay instead of charging twice
  2. Batches share one ledger row
  3. Status machine and terminal states
  4. Cancellation never refunds on its own
  5. Statistics
"""
from datetime import datetime, timedelta, timezone

import pytest

from canteen.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from canteen.db import order_ops, wallet_ops
from canteen.db.order_ops import OrderDraft, OrderLine
from canteen.models.order import OrderStatus, OrderType


def _rice_line(rice, quantity=1) -> OrderLine:
    return OrderLine(menu_item_id=rice.id, name=rice.name, price=rice.price, quantity=quantity)


async def _order(db, parent, student, rice, day, quantity=1, **kwargs):
    line = _rice_line(rice, quantity)
    return await order_ops.place_order(db, parent.user_id, student.id, [line], line.subtotal, day, **kwargs)


# ─── Numbers ───────────────────────────────────────────────────────────────────
def test_order_number_format():
    now = datetime(2025, 1, 6, 9, 30, 15, 123456, tzinfo=timezone.utc)
    assert order_ops.generate_order_number(now) == "ORD-20250106093015123"
    assert order_ops.generate_order_number(now, 2) == "ORD-20250106093015123-3"


# ─── Idempotency ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_repeated_key_returns_first_order_without_charging(db, parent, student, rice, next_monday):
    first = await _order(db, parent, student, rice, next_monday, idempotency_key="tap-1")
    second = await _order(db, parent, student, rice, next_monday, idempotency_key="tap-1")

    assert second.id == first.id
    assert await wallet_ops.get_balance(db, parent.user_id) == 8000
    assert len(await order_ops.list_orders(db, parent_id=parent.user_id)) == 1


@pytest.mark.asyncio
async def test_different_keys_place_separate_orders(db, parent, student, rice, next_monday):
    await _order(db, parent, student, rice, next_monday, idempotency_key="tap-1")
    await _order(db, parent, student, rice, next_monday, idempotency_key="tap-2")
    assert await wallet_ops.get_balance(db, parent.user_id) == 6000


@pytest.mark.asyncio
async def test_key_with_like_wildcards_does_not_match_other_keys(db, parent, student, rice, next_monday):
    await _order(db, parent, student, rice, next_monday, idempotency_key="a_c")
    other = await _order(db, parent, student, rice, next_monday, idempotency_key="a%c")
    assert other.idempotency_key == "a%c"
    assert len(await order_ops.list_orders(db, parent_id=parent.user_id)) == 2


@pytest.mark.asyncio
async def test_key_that_looks_like_a_batch_position_is_its_own_key(db, parent, student, rice, next_monday):
    first = await _order(db, parent, student, rice, next_monday, idempotency_key="k#1")
    second = await _order(db, parent, student, rice, next_monday, idempotency_key="k")

    assert second.id != first.id
    assert await wallet_ops.get_balance(db, parent.user_id) == 6000


# ─── Batches ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_weekly_batch_is_one_ledger_entry(db, parent, student, rice, juice, next_monday):
    drafts = [
        OrderDraft(student_id=student.id, delivery_date=next_monday + timedelta(days=n), items=[_rice_line(rice)])
        for n in range(3)
    ]

    orders = await order_ops.place_orders(
        db, parent.user_id, drafts, order_type=OrderType.WEEKLY, idempotency_key="week-1",
    )

    assert len(orders) == 3
    assert all(o.order_type == OrderType.WEEKLY for o in orders)
    assert orders[0].order_number != orders[1].order_number
    assert [o.batch_index for o in orders] == [0, 1, 2]
    assert {o.idempotency_key for o in orders} == {"week-1"}
    debit = (await wallet_ops.list_transactions(db, parent.user_id, limit=1))[0]
    assert debit.amount == -6000
    assert debit.reason == wallet_ops.REASON_WEEKLY_ORDER
    assert sorted(debit.order_ids) == sorted(o.id for o in orders)

    replay = await order_ops.place_orders(
        db, parent.user_id, drafts, order_type=OrderType.WEEKLY, idempotency_key="week-1",
    )
    assert [o.id for o in replay] == [o.id for o in orders]
    assert await wallet_ops.get_balance(db, parent.user_id) == 4000


@pytest.mark.asyncio
async def test_empty_orders_rejected(db, parent, student, rice, next_monday):
    with pytest.raises(ValidationError):
        await order_ops.place_orders(db, parent.user_id, [])
    with pytest.raises(ValidationError):
        await order_ops.place_orders(db, parent.user_id, [OrderDraft(student.id, next_monday, [])])
    with pytest.raises(ValidationError):
        await order_ops.place_orders(
            db, parent.user_id, [OrderDraft(student.id, next_monday, [_rice_line(rice, 0)])],
        )


# ─── Status ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_status_walk_to_completed(db, parent, student, rice, next_monday):
    order = await _order(db, parent, student, rice, next_monday)
    assert order.status == OrderStatus.PENDING

    for status in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED):
        order = await order_ops.update_order_status(db, order.id, status)
    assert order.status == OrderStatus.COMPLETED
    assert order.completed_at is not None

    with pytest.raises(InvalidTransitionError):
        await order_ops.update_order_status(db, order.id, OrderStatus.CANCELLED)


@pytest.mark.asyncio
async def test_cancel_does_not_refund(db, parent, student, rice, next_monday):
    order = await _order(db, parent, student, rice, next_monday, quantity=2)

    cancelled = await order_ops.cancel_order(db, order.id)

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert await wallet_ops.get_balance(db, parent.user_id) == 6000

    refund = await wallet_ops.adjust_balance(
        db, parent.user_id, order.total_amount,
        reason=wallet_ops.REASON_REFUND, order_ids=[order.id], actor_id="admin-001",
    )
    assert refund.balance_after == 10000
    assert (await wallet_ops.audit_ledger(db, parent.user_id)).consistent

    with pytest.raises(InvalidTransitionError):
        await order_ops.cancel_order(db, order.id)


@pytest.mark.asyncio
async def test_stale_cancel_cannot_overwrite_completion(db, session_factory, parent, student, rice, next_monday):
    order = await _order(db, parent, student, rice, next_monday)
    await order_ops.update_order_status(db, order.id, OrderStatus.READY)
    order_id = order.id

    async with session_factory() as kitchen, session_factory() as counter:
        seen = await order_ops.get_order(counter, order_id)
        assert seen.status == OrderStatus.READY

        await order_ops.update_order_status(kitchen, order_id, OrderStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            await order_ops.cancel_order(counter, order_id)

    async with session_factory() as fresh:
        final = await order_ops.get_order(fresh, order_id)
        assert final.status == OrderStatus.COMPLETED
        assert final.completed_at is not None
        assert final.cancelled_at is None


@pytest.mark.asyncio
async def test_cancel_from_pending_only(db, session_factory, parent, student, rice, next_monday):
    order = await _order(db, parent, student, rice, next_monday)
    order_id = order.id
    await order_ops.update_order_status(db, order_id, OrderStatus.CONFIRMED)

    with pytest.raises(InvalidTransitionError):
        await order_ops.cancel_order(db, order_id, from_statuses=(OrderStatus.PENDING,))

    async with session_factory() as fresh:
        assert (await order_ops.get_order(fresh, order_id)).status == OrderStatus.CONFIRMED
        cancelled = await order_ops.cancel_order(fresh, order_id)
        assert cancelled.status == OrderStatus.CANCELLED


@pytest.mark.asyncio
async def test_status_of_missing_order(db):
    with pytest.raises(NotFoundError):
        await order_ops.update_order_status(db, "missing", OrderStatus.READY)


# ─── Queries ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_list_filters_by_date_and_status(db, parent, student, rice, next_monday):
    monday = await _order(db, parent, student, rice, next_monday)
    tuesday = await _order(db, parent, student, rice, next_monday + timedelta(days=1))
    await order_ops.cancel_order(db, monday.id)

    assert [o.id for o in await order_ops.list_orders(db, start=next_monday + timedelta(days=1))] == [tuesday.id]
    assert [o.id for o in await order_ops.list_orders(db, status=OrderStatus.CANCELLED)] == [monday.id]
    assert await order_ops.list_orders(db, parent_id="someone-else") == []


@pytest.mark.asyncio
async def test_statistics(db, parent, student, rice, next_monday):
    done_a = await _order(db, parent, student, rice, next_monday, quantity=1)
    done_b = await _order(db, parent, student, rice, next_monday, quantity=2)
    dropped = await _order(db, parent, student, rice, next_monday, quantity=1)
    await _order(db, parent, student, rice, next_monday + timedelta(days=1), quantity=1)

    for order in (done_a, done_b):
        await order_ops.update_order_status(db, order.id, OrderStatus.COMPLETED)
    await order_ops.cancel_order(db, dropped.id)

    stats = await order_ops.order_statistics(db)
    assert stats["total_orders"] == 4
    assert stats["completed_orders"] == 2
    assert stats["cancelled_orders"] == 1
    assert stats["pending_orders"] == 1
    assert stats["total_revenue"] == 6000
    assert stats["average_order_value"] == 3000
    assert stats["by_status"]["cancelled"] == {"count": 1, "amount": 2000}

    monday_only = await order_ops.order_statistics(db, next_monday, next_monday)
    assert monday_only["total_orders"] == 3
    assert monday_only["pending_orders"] == 0
