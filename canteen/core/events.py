"""
Canteen Service - Change feed (Redis pub/sub)

Write endpoints publish a small message per affected topic; the SSE streams
in api/streams.py subscribe and re-query on every message.
Publishing is best-effort: a Redis outage must not fail the write that
already committed.
"""
import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from canteen.core.config import get_settings
from canteen.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

TOPIC_MENU_ITEMS = "menu_items"
TOPIC_WEEKLY_MENUS = "weekly_menus"
TOPIC_ORDERS = "orders"
TOPIC_TOPUPS = "topups"


def wallet_topic(parent_id: str) -> str:
    return f"wallet:{parent_id}"


def channel_for(topic: str) -> str:
    return f"{settings.CHANGE_CHANNEL_PREFIX}{topic}"


class ChangeFeed:
    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def publish(self, topic: str, payload: dict[str, Any] | None = None) -> bool:
        message = {"topic": topic, **(payload or {})}
        try:
            await self._redis.publish(channel_for(topic), json.dumps(message, default=str))
            return True
        except (RedisError, OSError) as exc:
            logger.warning("Change feed publish failed for %s: %s", topic, exc)
            return False


def get_change_feed() -> ChangeFeed:
    return ChangeFeed(get_redis())
