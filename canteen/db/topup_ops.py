"""
Canteen Service - Top-up approval queue

pending → approved → completed (ledger credited), or pending → declined.
The pending check is a conditional UPDATE so two admins approving the same
request cannot both credit the wallet.
"""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import CanteenError, InvalidTransitionError, NotFoundError, ValidationError
from canteen.core.retry import with_transient_retry
from canteen.core.utils import utcnow
from canteen.db.wallet_ops import REASON_TOPUP, record_adjustment
from canteen.models.wallet import Parent, PaymentMethod, Topup, TopupStatus

logger = logging.getLogger(__name__)


async def request_topup(
    db: AsyncSession,
    parent_id: str,
    amount: int,
    *,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    transaction_reference: str | None = None,
    notes: str | None = None,
) -> Topup:
    if amount <= 0:
        raise ValidationError("Top-up amount must be positive.")
    if await db.get(Parent, parent_id) is None:
        raise NotFoundError("Parent", parent_id)

    topup = Topup(
        parent_id=parent_id,
        amount=amount,
        status=TopupStatus.PENDING,
        payment_method=payment_method,
        transaction_reference=transaction_reference,
        notes=notes,
    )
    db.add(topup)
    await db.commit()
    logger.info("Top-up requested by %s: %d cents (%s)", parent_id, amount, topup.id)
    return topup


async def _claim_pending(
    db: AsyncSession, topup_id: str, target: TopupStatus, admin_id: str, admin_notes: str | None,
) -> None:
    """Move a pending top-up to target, or explain why it cannot move."""
    now = utcnow()
    result = await db.execute(
        update(Topup)
        .where(Topup.id == topup_id, Topup.status == TopupStatus.PENDING)
        .values(status=target, processed_by=admin_id, processed_at=now, admin_notes=admin_notes, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = await db.scalar(select(Topup.status).where(Topup.id == topup_id))
        if current is None:
            raise NotFoundError("Topup", topup_id)
        raise InvalidTransitionError("top-up", TopupStatus(current).value, target.value)


async def approve_topup(db: AsyncSession, topup_id: str, admin_id: str, admin_notes: str | None = None) -> Topup:
    """Credit the wallet and complete the request, all in one transaction."""
    try:
        await _claim_pending(db, topup_id, TopupStatus.APPROVED, admin_id, admin_notes)
        topup_row = (await db.execute(
            select(Topup.parent_id, Topup.amount).where(Topup.id == topup_id)
        )).one()
        await record_adjustment(
            db, topup_row.parent_id, topup_row.amount, reason=REASON_TOPUP, actor_id=admin_id,
        )
        await db.execute(
            update(Topup)
            .where(Topup.id == topup_id)
            .values(status=TopupStatus.COMPLETED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except CanteenError:
        await db.rollback()
        raise

    topup = await db.get(Topup, topup_id, populate_existing=True)
    logger.info("Top-up %s approved by %s: %d cents to %s", topup_id, admin_id, topup.amount, topup.parent_id)
    return topup


async def decline_topup(db: AsyncSession, topup_id: str, admin_id: str, reason: str) -> Topup:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to decline a top-up.")
    try:
        await _claim_pending(db, topup_id, TopupStatus.DECLINED, admin_id, reason)
        await db.commit()
    except CanteenError:
        await db.rollback()
        raise
    topup = await db.get(Topup, topup_id, populate_existing=True)
    logger.info("Top-up %s declined by %s", topup_id, admin_id)
    return topup


@with_transient_retry()
async def get_topup(db: AsyncSession, topup_id: str) -> Topup | None:
    return await db.get(Topup, topup_id)


@with_transient_retry()
async def list_topups(
    db: AsyncSession,
    *,
    status: TopupStatus | None = None,
    parent_id: str | None = None,
    limit: int = 200,
) -> list[Topup]:
    stmt = select(Topup).order_by(Topup.requested_at.desc()).limit(limit)
    if status:
        stmt = stmt.where(Topup.status == status)
    if parent_id:
        stmt = stmt.where(Topup.parent_id == parent_id)
    return list((await db.execute(stmt)).scalars())


@with_transient_retry()
async def topup_statistics(
    db: AsyncSession, start: datetime | None = None, end: datetime | None = None,
) -> dict[str, Any]:
    """Counts per status plus requested and credited amounts over requested_at."""
    stmt = select(Topup.status, func.count(Topup.id), func.coalesce(func.sum(Topup.amount), 0))
    if start:
        stmt = stmt.where(Topup.requested_at >= start)
    if end:
        stmt = stmt.where(Topup.requested_at <= end)
    rows = (await db.execute(stmt.group_by(Topup.status))).all()

    counts = {s.value: 0 for s in TopupStatus}
    amounts = {s.value: 0 for s in TopupStatus}
    for status, count, amount in rows:
        counts[TopupStatus(status).value] = count
        amounts[TopupStatus(status).value] = int(amount)

    credited = amounts[TopupStatus.APPROVED.value] + amounts[TopupStatus.COMPLETED.value]
    return {
        "total_requests": sum(counts.values()),
        "by_status": counts,
        "total_amount": sum(amounts.values()),
        "approved_amount": credited,
        "pending_amount": amounts[TopupStatus.PENDING.value],
    }
