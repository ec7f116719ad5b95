"""
Canteen Service - Shared Redis connection

One client per process serves the idempotency cache, change publishing and
health checks. Streams open their own pub/sub connection per subscriber
through subscription().
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from canteen.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """Lazily connect; the first command pays for the handshake."""
    global _client
    if _client is None:
        _client = aioredis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
            health_check_interval=30,
        )
    return _client


@asynccontextmanager
async def subscription(channel: str) -> AsyncIterator[aioredis.client.PubSub]:
    pubsub = get_redis().pubsub()
    await pubsub.subscribe(channel)
    try:
        yield pubsub
    finally:
        try:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        except (RedisError, OSError) as exc:
            logger.debug("Pub/sub cleanup failed for %s: %s", channel, exc)


async def close_redis() -> None:
    global _client
    if _client is not None:
        client, _client = _client, None
        await client.aclose()
