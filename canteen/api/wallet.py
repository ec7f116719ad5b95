"""
Canteen Service - Wallet API
"""
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, require_admin, require_parent
from canteen.core.events import ChangeFeed, get_change_feed, wallet_topic
from canteen.core.exceptions import NotFoundError
from canteen.core.utils import to_cents
from canteen.db import wallet_ops
from canteen.db.database import get_db
from canteen.schemas.wallet import (
    AdjustmentRequest,
    AuditResponse,
    ParentContactUpdate,
    ParentCreate,
    ParentResponse,
    TransactionResponse,
)

router = APIRouter(prefix="/wallet", tags=["wallet"])


async def _parent_or_404(db: AsyncSession, parent_id: str):
    parent = await wallet_ops.get_parent(db, parent_id)
    if parent is None:
        raise NotFoundError("Parent", parent_id)
    await db.refresh(parent)
    return parent


# ── Parent self-service ───────────────────────────────────────

@router.get("/me", response_model=ParentResponse)
async def my_wallet(
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    return ParentResponse.from_model(await _parent_or_404(db, parent.id))


@router.patch("/me", response_model=ParentResponse)
async def update_my_contact(
    payload: ParentContactUpdate,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    updated = await wallet_ops.update_parent_contact(db, parent.id, address=payload.address, phone=payload.phone)
    return ParentResponse.from_model(updated)


@router.get("/me/transactions", response_model=list[TransactionResponse])
async def my_transactions(
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
):
    txns = await wallet_ops.list_transactions(db, parent.id, limit=limit)
    return [TransactionResponse.from_model(t) for t in txns]


# ── Admin ─────────────────────────────────────────────────────

@router.get("/parents", response_model=list[ParentResponse])
async def list_parents(
    max_balance: Decimal | None = None,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """All parents, or those at or below max_balance for low-balance follow-up."""
    cap = to_cents(max_balance) if max_balance is not None else None
    return [ParentResponse.from_model(p) for p in await wallet_ops.list_parents(db, max_balance=cap)]


@router.post("/parents", response_model=ParentResponse, status_code=status.HTTP_201_CREATED)
async def create_parent(
    payload: ParentCreate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    parent = await wallet_ops.create_parent(
        db, payload.user_id,
        address=payload.address,
        phone=payload.phone,
        opening_balance=to_cents(payload.opening_balance),
        actor_id=admin.id,
    )
    await feed.publish(wallet_topic(parent.user_id), {"action": "created"})
    return ParentResponse.from_model(parent)


@router.get("/parents/{parent_id}", response_model=ParentResponse)
async def get_parent(
    parent_id: str,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return ParentResponse.from_model(await _parent_or_404(db, parent_id))


@router.get("/parents/{parent_id}/transactions", response_model=list[TransactionResponse])
async def parent_transactions(
    parent_id: str,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    txns = await wallet_ops.list_transactions(db, parent_id, limit=limit)
    return [TransactionResponse.from_model(t) for t in txns]


@router.post("/parents/{parent_id}/adjust", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def adjust_balance(
    parent_id: str,
    payload: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Manual credit or debit. Refunds for cancelled orders go through here with reason 'refund'."""
    txn = await wallet_ops.adjust_balance(
        db, parent_id, to_cents(payload.amount),
        reason=payload.reason,
        order_ids=payload.order_ids,
        actor_id=admin.id,
        allow_negative=payload.allow_negative,
    )
    await feed.publish(wallet_topic(parent_id), {"action": "adjusted"})
    return TransactionResponse.from_model(txn)


@router.get("/parents/{parent_id}/audit", response_model=AuditResponse)
async def audit(
    parent_id: str,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return AuditResponse.from_audit(await wallet_ops.audit_ledger(db, parent_id))
