"""
Canteen Service - Top-up API
Parents request, admins approve or decline.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, get_current_user, require_admin, require_parent
from canteen.core.events import TOPIC_TOPUPS, ChangeFeed, get_change_feed, wallet_topic
from canteen.core.exceptions import NotFoundError
from canteen.core.utils import to_cents
from canteen.db import topup_ops
from canteen.db.database import get_db
from canteen.models.wallet import TopupStatus
from canteen.schemas.wallet import (
    TopupApprove,
    TopupCreate,
    TopupDecline,
    TopupResponse,
    TopupStatisticsResponse,
)

router = APIRouter(prefix="/topups", tags=["topups"])


@router.post("", response_model=TopupResponse, status_code=status.HTTP_201_CREATED)
async def request_topup(
    payload: TopupCreate,
    db: AsyncSession = Depends(get_db),
    parent: CurrentUser = Depends(require_parent),
    feed: ChangeFeed = Depends(get_change_feed),
):
    topup = await topup_ops.request_topup(
        db, parent.id, to_cents(payload.amount),
        payment_method=payload.payment_method,
        transaction_reference=payload.transaction_reference,
        notes=payload.notes,
    )
    await feed.publish(TOPIC_TOPUPS, {"action": "requested", "id": topup.id})
    return TopupResponse.from_model(topup)


@router.get("", response_model=list[TopupResponse])
async def list_topups(
    topup_status: TopupStatus | None = None,
    parent_id: str | None = None,
    limit: int = 200,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    if not user.is_admin:
        parent_id = user.id
    topups = await topup_ops.list_topups(db, status=topup_status, parent_id=parent_id, limit=limit)
    return [TopupResponse.from_model(t) for t in topups]


@router.get("/statistics", response_model=TopupStatisticsResponse)
async def topup_statistics(
    start: datetime | None = None,
    end: datetime | None = None,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return TopupStatisticsResponse.from_stats(await topup_ops.topup_statistics(db, start, end))


@router.get("/{topup_id}", response_model=TopupResponse)
async def get_topup(
    topup_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    topup = await topup_ops.get_topup(db, topup_id)
    if topup is None or (not user.is_admin and topup.parent_id != user.id):
        raise NotFoundError("Topup", topup_id)
    return TopupResponse.from_model(topup)


@router.post("/{topup_id}/approve", response_model=TopupResponse)
async def approve_topup(
    topup_id: str,
    payload: TopupApprove | None = None,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    notes = payload.admin_notes if payload else None
    topup = await topup_ops.approve_topup(db, topup_id, admin.id, notes)
    await feed.publish(TOPIC_TOPUPS, {"action": "approved", "id": topup.id})
    await feed.publish(wallet_topic(topup.parent_id), {"action": "credited"})
    return TopupResponse.from_model(topup)


@router.post("/{topup_id}/decline", response_model=TopupResponse)
async def decline_topup(
    topup_id: str,
    payload: TopupDecline,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    topup = await topup_ops.decline_topup(db, topup_id, admin.id, payload.reason)
    await feed.publish(TOPIC_TOPUPS, {"action": "declined", "id": topup.id})
    return TopupResponse.from_model(topup)
