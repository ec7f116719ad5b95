"""
Canteen Service - Wallet ledger

Every balance change is one conditional UPDATE on parents plus one
append-only parent_transactions row, written in the same transaction.
The UPDATE is issued before any read so concurrent debits for a parent
serialize on the row lock and the floor check is evaluated against the
committed balance.
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import ConflictError, InsufficientBalanceError, NotFoundError, ValidationError
from canteen.core.retry import with_transient_retry
from canteen.core.utils import utcnow
from canteen.models.wallet import Parent, ParentTransaction

logger = logging.getLogger(__name__)

REASON_OPENING_BALANCE = "opening_balance"
REASON_ADJUSTMENT = "admin_adjustment"
REASON_TOPUP = "topup"
REASON_SINGLE_ORDER = "single_order"
REASON_WEEKLY_ORDER = "weekly_order"
REASON_REFUND = "refund"


@dataclass
class LedgerAudit:
    parent_id: str
    balance: int
    ledger_total: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


async def record_adjustment(
    db: AsyncSession,
    parent_id: str,
    delta: int,
    *,
    reason: str,
    order_ids: Sequence[str] = (),
    actor_id: str | None = None,
    allow_negative: bool = False,
) -> ParentTransaction:
    """
    Apply delta cents to the parent's balance and stage the ledger row.

    Does not commit. Callers that need more writes in the same transaction
    (order placement, top-up approval) add them and commit themselves.
    Raises InsufficientBalanceError when a debit would cross zero and
    allow_negative is False; nothing is applied in that case.
    """
    if delta == 0:
        raise ValidationError("Adjustment amount must not be zero.")

    stmt = (
        update(Parent)
        .where(Parent.user_id == parent_id)
        .values(balance=Parent.balance + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if delta < 0 and not allow_negative:
        stmt = stmt.where(Parent.balance >= -delta)

    result = await db.execute(stmt)
    if result.rowcount == 0:
        exists = await db.scalar(select(Parent.user_id).where(Parent.user_id == parent_id))
        if exists is None:
            raise NotFoundError("Parent", parent_id)
        raise InsufficientBalanceError(parent_id, -delta)

    balance_after = await db.scalar(select(Parent.balance).where(Parent.user_id == parent_id))
    txn = ParentTransaction(
        parent_id=parent_id,
        amount=delta,
        balance_before=balance_after - delta,
        balance_after=balance_after,
        order_ids=list(order_ids),
        reason=reason,
        created_by=actor_id,
    )
    db.add(txn)
    return txn


async def adjust_balance(
    db: AsyncSession,
    parent_id: str,
    delta: int,
    *,
    reason: str = REASON_ADJUSTMENT,
    order_ids: Sequence[str] = (),
    actor_id: str | None = None,
    allow_negative: bool = False,
) -> ParentTransaction:
    """Apply one balance change and its ledger row atomically."""
    try:
        txn = await record_adjustment(
            db, parent_id, delta,
            reason=reason, order_ids=order_ids, actor_id=actor_id, allow_negative=allow_negative,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Balance adjusted for %s: %+d cents (%s), now %d",
        parent_id, delta, reason, txn.balance_after,
    )
    return txn


async def create_parent(
    db: AsyncSession,
    user_id: str,
    *,
    address: str | None = None,
    phone: str | None = None,
    opening_balance: int = 0,
    actor_id: str | None = None,
) -> Parent:
    """Create a parent account. A non-zero opening balance is written through the ledger."""
    if opening_balance < 0:
        raise ValidationError("Opening balance must not be negative.")
    if await db.get(Parent, user_id) is not None:
        raise ConflictError(f"Parent '{user_id}' already exists.")

    parent = Parent(user_id=user_id, balance=0, address=address, phone=phone, children=[])
    db.add(parent)
    try:
        await db.flush()
        if opening_balance:
            await record_adjustment(
                db, user_id, opening_balance, reason=REASON_OPENING_BALANCE, actor_id=actor_id,
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Parent '{user_id}' already exists.")
    await db.refresh(parent)
    logger.info("Parent account created: %s (opening balance %d)", user_id, opening_balance)
    return parent


async def ensure_parent(db: AsyncSession, user_id: str) -> Parent:
    """Return the parent account, creating an empty one on first use."""
    parent = await db.get(Parent, user_id)
    if parent is not None:
        return parent
    try:
        return await create_parent(db, user_id)
    except ConflictError:
        # Created by a concurrent first request.
        return await db.get(Parent, user_id)


@with_transient_retry()
async def get_parent(db: AsyncSession, user_id: str) -> Parent | None:
    return await db.get(Parent, user_id)


@with_transient_retry()
async def get_balance(db: AsyncSession, user_id: str) -> int:
    balance = await db.scalar(select(Parent.balance).where(Parent.user_id == user_id))
    if balance is None:
        raise NotFoundError("Parent", user_id)
    return balance


async def update_parent_contact(
    db: AsyncSession, user_id: str, *, address: str | None = None, phone: str | None = None,
) -> Parent:
    parent = await db.get(Parent, user_id)
    if parent is None:
        raise NotFoundError("Parent", user_id)
    if address is not None:
        parent.address = address
    if phone is not None:
        parent.phone = phone
    parent.updated_at = utcnow()
    await db.commit()
    return parent


@with_transient_retry()
async def list_parents(db: AsyncSession, *, max_balance: int | None = None) -> list[Parent]:
    """All parents, or only those at or below max_balance cents (low-balance report)."""
    stmt = select(Parent).order_by(Parent.balance, Parent.user_id)
    if max_balance is not None:
        stmt = stmt.where(Parent.balance <= max_balance)
    return list((await db.execute(stmt)).scalars())


@with_transient_retry()
async def list_transactions(db: AsyncSession, parent_id: str, *, limit: int = 100) -> list[ParentTransaction]:
    result = await db.execute(
        select(ParentTransaction)
        .where(ParentTransaction.parent_id == parent_id)
        .order_by(ParentTransaction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars())


@with_transient_retry()
async def audit_ledger(db: AsyncSession, parent_id: str) -> LedgerAudit:
    balance = await db.scalar(select(Parent.balance).where(Parent.user_id == parent_id))
    if balance is None:
        raise NotFoundError("Parent", parent_id)
    row = (await db.execute(
        select(func.coalesce(func.sum(ParentTransaction.amount), 0), func.count(ParentTransaction.id))
        .where(ParentTransaction.parent_id == parent_id)
    )).one()
    audit = LedgerAudit(parent_id=parent_id, balance=balance, ledger_total=int(row[0]), transaction_count=row[1])
    if not audit.consistent:
        logger.error(
            "Ledger mismatch for %s: balance=%d ledger=%d", parent_id, audit.balance, audit.ledger_total,
        )
    return audit
