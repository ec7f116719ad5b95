"""
Retry decorator tests

Reads that lose their connection are retried on a rolled-back session;
writes that lose an optimistic compare-and-set are retried with backoff.
"""
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, PendingRollbackError

from canteen.core.exceptions import TransientBackendError
from canteen.core.retry import StaleDataError, is_transient, with_optimistic_retry, with_transient_retry
from canteen.db import order_ops
from canteen.db.order_ops import OrderLine


def _disk_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("disk I/O error"))


@pytest.fixture
def rollbacks(db, monkeypatch):
    calls = []
    real_rollback = db.rollback

    async def counting_rollback():
        calls.append(1)
        await real_rollback()

    monkeypatch.setattr(db, "rollback", counting_rollback)
    return calls


def test_transient_classification():
    assert is_transient(_disk_error())
    assert is_transient(PendingRollbackError("connection was invalidated"))
    assert not is_transient(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))


@pytest.mark.asyncio
async def test_read_retried_on_rolled_back_session(db, rollbacks):
    failures = [_disk_error()]

    @with_transient_retry(attempts=3)
    async def flaky_read(db):
        if failures:
            raise failures.pop()
        return "rows"

    assert await flaky_read(db) == "rows"
    assert len(rollbacks) == 1


@pytest.mark.asyncio
async def test_read_gives_up_as_transient_backend_error(db, rollbacks):
    calls = []

    @with_transient_retry(attempts=3)
    async def broken_read(db):
        calls.append(1)
        raise PendingRollbackError("Can't reconnect until invalid transaction is rolled back")

    with pytest.raises(TransientBackendError):
        await broken_read(db=db)
    assert len(calls) == 3
    assert len(rollbacks) == 3


@pytest.mark.asyncio
async def test_non_transient_errors_pass_through(db, rollbacks):
    @with_transient_retry(attempts=3)
    async def bad_read(db):
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        await bad_read(db)
    assert rollbacks == []


@pytest.mark.asyncio
async def test_read_recovers_after_connection_drop(db, parent, student, rice, next_monday):
    line = OrderLine(menu_item_id=rice.id, name=rice.name, price=rice.price, quantity=1)
    order = await order_ops.place_order(db, parent.user_id, student.id, [line], line.subtotal, next_monday)
    order_id, parent_id = order.id, parent.user_id

    conn = await db.connection()
    raw = await conn.get_raw_connection()
    await raw.driver_connection.close()

    orders = await order_ops.list_orders(db, parent_id=parent_id)

    assert [o.id for o in orders] == [order_id]


@pytest.mark.asyncio
async def test_optimistic_retry_reruns_until_version_matches():
    conflicts = [StaleDataError(), StaleDataError()]

    @with_optimistic_retry(max_retries=3)
    async def publish():
        if conflicts:
            raise conflicts.pop()
        return "published"

    assert await publish() == "published"
    assert conflicts == []


@pytest.mark.asyncio
async def test_optimistic_retry_gives_up():
    @with_optimistic_retry(max_retries=2)
    async def publish():
        raise StaleDataError()

    with pytest.raises(StaleDataError):
        await publish()
