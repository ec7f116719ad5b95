"""
Canteen Service test fixtures

Every test gets freshly created tables in a throwaway SQLite file. The HTTP
client drives the ASGI app in-process; the change feed is replaced by a
recorder so no Redis is needed.
"""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="canteen-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'canteen-test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["METRICS_ENABLED"] = "false"
os.environ["OPT_LOCK_BASE_DELAY_MS"] = "1"
os.environ["OPT_LOCK_JITTER_MS"] = "1"
os.environ["READ_RETRY_DELAY_MS"] = "1"

from datetime import timedelta  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from canteen.core.events import get_change_feed  # noqa: E402
from canteen.core.security import Role, create_token  # noqa: E402
from canteen.core.utils import monday_of, utcnow  # noqa: E402
from canteen.db import catalog_ops, student_ops, wallet_ops, weekly_menu_ops  # noqa: E402
from canteen.db.database import async_session, engine  # noqa: E402
from canteen.db.init_db import create_tables, drop_tables  # noqa: E402
from canteen.models.menu import WEEKDAYS  # noqa: E402

PARENT_ID = "parent-001"
OTHER_PARENT_ID = "parent-002"
ADMIN_ID = "admin-001"


class RecordingFeed:
    """Stands in for ChangeFeed; keeps every published message."""

    def __init__(self):
        self.messages: list[tuple[str, dict]] = []

    async def publish(self, topic, payload=None):
        self.messages.append((topic, payload or {}))
        return True

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.messages]


class FakeRedis:
    """The handful of async Redis calls the idempotency middleware makes."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True


# ─── Database ──────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def tables():
    await drop_tables(engine)
    await create_tables(engine)
    yield engine
    # Pooled aiosqlite connections belong to this test's event loop.
    await engine.dispose()


@pytest_asyncio.fixture
async def db(tables):
    async with async_session() as session:
        yield session


@pytest.fixture
def session_factory(tables):
    return async_session


# ─── Domain data ───────────────────────────────────────────────────────────────
@pytest.fixture
def next_monday():
    return monday_of(utcnow().date()) + timedelta(days=7)


@pytest_asyncio.fixture
async def parent(db):
    """Parent with 100.00 in the wallet."""
    return await wallet_ops.create_parent(db, PARENT_ID, opening_balance=10000, actor_id=ADMIN_ID)


@pytest_asyncio.fixture
async def student(db, parent):
    return await student_ops.create_student(
        db, first_name="Amira", last_name="Rahman", grade="Grade 3", parent_id=parent.user_id,
    )


@pytest_asyncio.fixture
async def rice(db):
    return await catalog_ops.create_menu_item(db, name="Rice", price=2000, category="Lunch", description="Steamed")


@pytest_asyncio.fixture
async def juice(db):
    return await catalog_ops.create_menu_item(db, name="Juice", price=1000, category="Drinks")


@pytest_asyncio.fixture
async def published_week(db, next_monday, rice, juice):
    """Next week, published with rice for lunch and juice to drink every day."""
    content = {day: {"lunch": [rice.id], "drinks": [juice.id]} for day in WEEKDAYS}
    return await weekly_menu_ops.publish_weekly_menu(db, next_monday, content, actor_id=ADMIN_ID)


# ─── HTTP ──────────────────────────────────────────────────────────────────────
def bearer(user_id: str, role: Role) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(user_id, role)}"}


@pytest.fixture
def admin_headers():
    return bearer(ADMIN_ID, Role.ADMIN)


@pytest.fixture
def parent_headers():
    return bearer(PARENT_ID, Role.PARENT)


@pytest.fixture
def other_parent_headers():
    return bearer(OTHER_PARENT_ID, Role.PARENT)


@pytest.fixture
def feed():
    return RecordingFeed()


@pytest.fixture
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr("canteen.middleware.idempotency.get_redis", lambda: redis)
    return redis


@pytest_asyncio.fixture
async def client(tables, feed):
    from canteen.main import app

    app.dependency_overrides[get_change_feed] = lambda: feed
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
