"""
Canteen Service - SSE query streams with Redis pub/sub

Architecture:
  - Write endpoints publish a change message to canteen:changes:<topic>
  - Each stream subscribes to its topic and, on every message, re-runs its
    query in a fresh session and emits the full snapshot as one SSE event
  - The first snapshot is sent immediately on connect
"""
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from redis.exceptions import RedisError

from canteen.api.deps import CurrentUser, get_current_user, require_parent
from canteen.core.config import get_settings
from canteen.core.events import TOPIC_ORDERS, TOPIC_WEEKLY_MENUS, channel_for, wallet_topic
from canteen.core.redis_client import subscription
from canteen.core.utils import utcnow
from canteen.db import order_ops, wallet_ops, weekly_menu_ops
from canteen.db.database import async_session
from canteen.schemas.order import OrderResponse
from canteen.schemas.wallet import ParentResponse, TransactionResponse
from canteen.schemas.weekly_menu import WeeklyMenuResponse

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/streams", tags=["streams"])

Snapshot = Callable[[], Awaitable[Any]]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable Nginx buffering
    "Connection": "keep-alive",
}


def _event(name: str, payload: Any) -> str:
    return f"event: {name}\ndata: {json.dumps(payload, default=str)}\n\n"


async def _sse_generator(
    request: Request, topic: str, event_name: str, snapshot: Snapshot,
) -> AsyncGenerator[str, None]:
    """Emit a snapshot now and again after every change message on topic."""
    channel = channel_for(topic)
    try:
        async with subscription(channel) as pubsub:
            yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"
            yield _event(event_name, await snapshot())

            idle = 0.0
            while not await request.is_disconnected():
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "message":
                    idle = 0.0
                    yield _event(event_name, await snapshot())
                    continue
                idle += 1.0
                if idle >= settings.SSE_KEEPALIVE_INTERVAL_SECONDS:
                    idle = 0.0
                    yield ": keepalive\n\n"
    except RedisError as exc:
        logger.warning("Stream on %s lost its Redis subscription: %s", channel, exc)
        yield _event("error", {"detail": "Change feed unavailable, reconnect to resume."})


def _stream(request: Request, topic: str, event_name: str, snapshot: Snapshot) -> StreamingResponse:
    return StreamingResponse(
        _sse_generator(request, topic, event_name, snapshot),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/weekly-menu/current")
async def stream_current_menu(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
):
    """The published menu for this week; null while none is published."""
    async def snapshot():
        async with async_session() as db:
            menu = await weekly_menu_ops.get_published_menu(db, utcnow().date())
            return WeeklyMenuResponse.from_model(menu).model_dump(mode="json") if menu else None

    return _stream(request, TOPIC_WEEKLY_MENUS, "weekly_menu", snapshot)


@router.get("/orders")
async def stream_orders(
    request: Request,
    start: date | None = None,
    end: date | None = None,
    user: CurrentUser = Depends(get_current_user),
):
    """Orders in a delivery-date range. Parents only see their own."""
    parent_id = None if user.is_admin else user.id

    async def snapshot():
        async with async_session() as db:
            orders = await order_ops.list_orders(db, parent_id=parent_id, start=start, end=end)
            return [OrderResponse.from_model(o).model_dump(mode="json") for o in orders]

    return _stream(request, TOPIC_ORDERS, "orders", snapshot)


@router.get("/wallet/me")
async def stream_wallet(
    request: Request,
    parent: CurrentUser = Depends(require_parent),
):
    """Balance plus the latest transactions for the signed-in parent."""
    async def snapshot():
        async with async_session() as db:
            account = await wallet_ops.get_parent(db, parent.id)
            txns = await wallet_ops.list_transactions(db, parent.id, limit=20)
            return {
                "parent": ParentResponse.from_model(account).model_dump(mode="json") if account else None,
                "transactions": [TransactionResponse.from_model(t).model_dump(mode="json") for t in txns],
            }

    return _stream(request, wallet_topic(parent.id), "wallet", snapshot)
