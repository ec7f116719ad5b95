"""
Wallet ledger tests

  1. Every balance change writes exactly one ledger row
  2. Debits never cross zero unless explicitly allowed
  3. Concurrent orders for one parent never overdraw the wallet
"""
import asyncio

import pytest
from sqlalchemy import func, select

from canteen.core.exceptions import ConflictError, InsufficientBalanceError, NotFoundError, ValidationError
from canteen.db import order_ops, wallet_ops
from canteen.db.order_ops import OrderLine
from canteen.models.order import Order


def _lunch(rice, juice) -> list[OrderLine]:
    """2x Rice @ 20.00 + 1x Juice @ 10.00 = 50.00"""
    return [
        OrderLine(menu_item_id=rice.id, name=rice.name, price=rice.price, quantity=2),
        OrderLine(menu_item_id=juice.id, name=juice.name, price=juice.price, quantity=1),
    ]


# ─── Accounts ──────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_opening_balance_goes_through_the_ledger(db, parent):
    assert parent.balance == 10000

    txns = await wallet_ops.list_transactions(db, parent.user_id)
    assert len(txns) == 1
    assert txns[0].reason == wallet_ops.REASON_OPENING_BALANCE
    assert (txns[0].amount, txns[0].balance_before, txns[0].balance_after) == (10000, 0, 10000)
    assert txns[0].created_by == "admin-001"


@pytest.mark.asyncio
async def test_create_parent_twice_conflicts(db, parent):
    with pytest.raises(ConflictError):
        await wallet_ops.create_parent(db, parent.user_id)


@pytest.mark.asyncio
async def test_ensure_parent_creates_empty_wallet_once(db):
    first = await wallet_ops.ensure_parent(db, "new-parent")
    again = await wallet_ops.ensure_parent(db, "new-parent")

    assert first.user_id == again.user_id == "new-parent"
    assert await wallet_ops.get_balance(db, "new-parent") == 0
    assert await wallet_ops.list_transactions(db, "new-parent") == []


# ─── Orders debit the wallet ───────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_order_debits_exactly_once(db, parent, student, rice, juice, next_monday):
    order = await order_ops.place_order(db, parent.user_id, student.id, _lunch(rice, juice), 5000, next_monday)

    assert order.id
    assert order.total_amount == 5000
    assert await wallet_ops.get_balance(db, parent.user_id) == 5000

    debits = [t for t in await wallet_ops.list_transactions(db, parent.user_id) if t.amount < 0]
    assert len(debits) == 1
    debit = debits[0]
    assert (debit.amount, debit.balance_before, debit.balance_after) == (-5000, 10000, 5000)
    assert debit.order_ids == [order.id]
    assert debit.reason == wallet_ops.REASON_SINGLE_ORDER

    audit = await wallet_ops.audit_ledger(db, parent.user_id)
    assert audit.consistent
    assert audit.transaction_count == 2


@pytest.mark.asyncio
async def test_insufficient_balance_writes_nothing(db, parent, student, rice, next_monday):
    lines = [OrderLine(menu_item_id=rice.id, name=rice.name, price=rice.price, quantity=6)]

    with pytest.raises(InsufficientBalanceError) as exc:
        await order_ops.place_order(db, parent.user_id, student.id, lines, 12000, next_monday)

    assert exc.value.status_code == 402
    assert await wallet_ops.get_balance(db, parent.user_id) == 10000
    assert len(await wallet_ops.list_transactions(db, parent.user_id)) == 1
    assert await db.scalar(select(func.count()).select_from(Order)) == 0


@pytest.mark.asyncio
async def test_order_total_must_match_lines(db, parent, student, rice, juice, next_monday):
    with pytest.raises(ValidationError):
        await order_ops.place_order(db, parent.user_id, student.id, _lunch(rice, juice), 4000, next_monday)
    assert await wallet_ops.get_balance(db, parent.user_id) == 10000


# ─── Adjustments ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_adjustments_credit_and_debit(db, parent):
    credit = await wallet_ops.adjust_balance(db, parent.user_id, 2500, actor_id="admin-001")
    debit = await wallet_ops.adjust_balance(db, parent.user_id, -12500, actor_id="admin-001")

    assert (credit.balance_before, credit.balance_after) == (10000, 12500)
    assert (debit.balance_before, debit.balance_after) == (12500, 0)
    assert credit.reason == wallet_ops.REASON_ADJUSTMENT

    with pytest.raises(InsufficientBalanceError):
        await wallet_ops.adjust_balance(db, parent.user_id, -1)


@pytest.mark.asyncio
async def test_negative_balance_only_when_allowed(db, parent):
    txn = await wallet_ops.adjust_balance(db, parent.user_id, -15000, allow_negative=True)
    assert txn.balance_after == -5000
    assert (await wallet_ops.audit_ledger(db, parent.user_id)).consistent


@pytest.mark.asyncio
async def test_zero_adjustment_rejected(db, parent):
    with pytest.raises(ValidationError):
        await wallet_ops.adjust_balance(db, parent.user_id, 0)


@pytest.mark.asyncio
async def test_adjusting_unknown_parent(db):
    with pytest.raises(NotFoundError):
        await wallet_ops.adjust_balance(db, "nobody", 100)


@pytest.mark.asyncio
async def test_low_balance_report(db, parent):
    await wallet_ops.create_parent(db, "parent-low", opening_balance=300)
    await wallet_ops.create_parent(db, "parent-empty")

    low = await wallet_ops.list_parents(db, max_balance=500)
    assert [p.user_id for p in low] == ["parent-empty", "parent-low"]
    assert len(await wallet_ops.list_parents(db)) == 3


# ─── Concurrency ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_concurrent_orders_never_overdraw(session_factory, parent, student, rice, next_monday):
    """Balance 100.00, each order 30.00: at most three of eight can succeed."""
    lines = [OrderLine(menu_item_id=rice.id, name=rice.name, price=1500, quantity=2)]

    async def attempt():
        async with session_factory() as session:
            return await order_ops.place_order(session, parent.user_id, student.id, lines, 3000, next_monday)

    results = await asyncio.gather(*(attempt() for _ in range(8)), return_exceptions=True)

    placed = [r for r in results if isinstance(r, Order)]
    refused = [r for r in results if isinstance(r, InsufficientBalanceError)]
    assert len(placed) == 3
    assert len(refused) == 5

    async with session_factory() as session:
        assert await wallet_ops.get_balance(session, parent.user_id) == 1000
        audit = await wallet_ops.audit_ledger(session, parent.user_id)
        assert audit.consistent
        assert audit.transaction_count == 4
