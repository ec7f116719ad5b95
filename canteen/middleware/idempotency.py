"""
Canteen Service - Idempotency-Key replay for order placement

A POST to an order-creating route that carries an Idempotency-Key is cached
in Redis per (user, path, key) for IDEMPOTENCY_KEY_TTL_SECONDS once it
succeeds. A repeat returns the stored body with X-Idempotency-Replay: true.

The key is also written to the order row, so when Redis is down or the entry
has expired the ordering code still finds the first order instead of
charging the wallet again.
"""
import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from canteen.core.config import get_settings
from canteen.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

ORDER_CREATING_PATHS = frozenset({
    "/orders",
    "/orders/",
    "/carts/me/checkout",
    "/carts/me/checkout-weekly",
})


def cache_key_for(request: Request, idem_key: str) -> str:
    claims = getattr(request.state, "user", None) or {}
    return f"idempotent:{claims.get('sub', 'anonymous')}:{request.url.path}:{idem_key}"


def _replay(cached: str) -> JSONResponse:
    stored = json.loads(cached)
    return JSONResponse(
        content=stored["body"],
        status_code=stored["status_code"],
        headers={"X-Idempotency-Replay": "true"},
    )


async def _read_body(response: Response) -> bytes:
    chunks = [chunk async for chunk in response.body_iterator]
    return b"".join(chunk if isinstance(chunk, bytes) else chunk.encode() for chunk in chunks)


class IdempotencyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        idem_key = request.headers.get("Idempotency-Key")
        if request.method != "POST" or request.url.path not in ORDER_CREATING_PATHS or not idem_key:
            return await call_next(request)

        cache_key = cache_key_for(request, idem_key)
        redis = get_redis()
        try:
            cached = await redis.get(cache_key)
        except (RedisError, OSError) as exc:
            logger.warning("Idempotency cache unavailable, relying on the order table: %s", exc)
            return await call_next(request)
        if cached:
            return _replay(cached)

        response = await call_next(request)
        raw = await _read_body(response)

        # Failures are not cached; a retry after a top-up must be able to succeed.
        if 200 <= response.status_code < 300:
            try:
                body = json.loads(raw)
            except ValueError:
                body = raw.decode("utf-8", errors="replace")
            try:
                await redis.setex(
                    cache_key,
                    settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                    json.dumps({"body": body, "status_code": response.status_code}),
                )
            except (RedisError, OSError) as exc:
                logger.warning("Could not cache response for %s: %s", cache_key, exc)

        return Response(
            content=raw,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
