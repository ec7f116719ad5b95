"""
Canteen Service - FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import DBAPIError, PendingRollbackError

from canteen.api import (
    carts,
    health,
    menu_analytics,
    menu_items,
    orders,
    streams,
    students,
    topups,
    wallet,
    weekly_menus,
)
from canteen.core.config import get_settings
from canteen.core.exceptions import CanteenError, TransientBackendError
from canteen.core.redis_client import close_redis
from canteen.core.retry import StaleDataError, is_transient
from canteen.db.database import engine
from canteen.db.init_db import create_tables
from canteen.middleware.auth import JWTAuthMiddleware
from canteen.middleware.idempotency import IdempotencyMiddleware

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables (migrations are out of scope)
    await create_tables(engine)
    yield
    # Shutdown
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="School Canteen Service",
    description="Menu catalog, weekly menus, carts, wallet-paid orders and top-up approvals.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production via env var
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Idempotency + Auth ────────────────────────────────────────────────────────
# The last middleware added runs first: Auth sets request.state.user, then
# Idempotency scopes its cache keys to that user.
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(JWTAuthMiddleware)

# ── Prometheus Metrics ────────────────────────────────────────────────────────
if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


# ── Error mapping ─────────────────────────────────────────────────────────────
@app.exception_handler(CanteenError)
async def canteen_error_handler(request: Request, exc: CanteenError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    return JSONResponse(
        status_code=409,
        content={"detail": "The record was changed concurrently, please retry.", "code": "conflict"},
    )


@app.exception_handler(DBAPIError)
async def dbapi_error_handler(request: Request, exc: DBAPIError):
    if is_transient(exc):
        logger.error("Database unavailable during %s %s: %s", request.method, request.url.path, exc)
        err = TransientBackendError("Database unavailable, please retry.")
        return JSONResponse(status_code=err.status_code, content=err.to_dict())
    logger.exception("Database error during %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal database error.", "code": "database_error"})


@app.exception_handler(PendingRollbackError)
async def pending_rollback_handler(request: Request, exc: PendingRollbackError):
    logger.error("Session lost its connection during %s %s: %s", request.method, request.url.path, exc)
    err = TransientBackendError("Database unavailable, please retry.")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(menu_items.router)
app.include_router(menu_analytics.router)
app.include_router(weekly_menus.router)
app.include_router(carts.router)
app.include_router(orders.router)
app.include_router(wallet.router)
app.include_router(topups.router)
app.include_router(students.router)
app.include_router(streams.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
