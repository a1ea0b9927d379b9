# ============================================================================
# COORDINATION SESSION TESTS
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Tests - PostgreSQL boundary with mocked pools
# PURPOSE: Verify SQL primitives, error translation and session lifecycle
# CREATED: 09 OCT 2026
# ============================================================================
"""
Coordination Session Tests

Covers:
1. Primitive return values and parameters (mocked connection)
2. psycopg errors -> CoordinationUnavailable
3. Invalidated sessions fail fast
4. Connect timeout, cancellation, observers
5. Liveness-driven DISCONNECTED -> EXPIRED

Run with:
    pytest tests/test_coordination.py -v
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest
from psycopg_pool import PoolTimeout

from core.config import CoordinationDefaults
from core.contracts import SessionState
from core.errors import ConnectTimeout, CoordinationUnavailable
from core.models import ClaimRecord
from infrastructure.coordination import CoordinationConnection, CoordinationSession


# ============================================================================
# FIXTURES
# ============================================================================

def make_pool(rows=None, rowcount=1, error=None):
    """Pool double whose connections return the given rows."""
    result = MagicMock()
    result.fetchone = AsyncMock(return_value=(rows or [None])[0])
    result.fetchall = AsyncMock(return_value=rows or [])
    result.rowcount = rowcount

    conn = MagicMock()
    conn.execute = AsyncMock(return_value=result, side_effect=error)

    @asynccontextmanager
    async def transaction():
        yield

    conn.transaction = transaction

    @asynccontextmanager
    async def connection(timeout=None):
        yield conn

    pool = MagicMock()
    pool.closed = False
    pool.connection = connection
    pool.close = AsyncMock()
    return pool, conn


def sql_text(call) -> str:
    """Readable form of the composed query passed to execute()."""
    return repr(call.args[0])


@pytest.fixture
def fast_config():
    return CoordinationDefaults(
        connect_timeout_sec=10,
        connect_wait_sec=0.05,
        session_timeout_sec=0.05,
        liveness_interval_sec=0.01,
    )


# ============================================================================
# PRIMITIVES
# ============================================================================

class TestCounter:
    def test_increment_returns_pre_increment_value(self):
        pool, conn = make_pool(rows=[{"slot_id": 5}])
        session = CoordinationSession(pool)

        slot = asyncio.run(session.increment_counter("/ids/pool/counter", 64))

        assert slot == 5
        params = conn.execute.await_args.args[1]
        assert params == {"path": "/ids/pool/counter", "ceiling": 64}
        assert "ON CONFLICT (path) DO UPDATE" in sql_text(conn.execute.await_args)

    def test_increment_at_ceiling_returns_none(self):
        pool, _ = make_pool(rows=[None])
        session = CoordinationSession(pool)
        assert asyncio.run(session.increment_counter("/ids/pool/counter", 64)) is None

    def test_read_counter_defaults_to_zero(self):
        pool, _ = make_pool(rows=[None])
        session = CoordinationSession(pool)
        assert asyncio.run(session.read_counter("/ids/pool/counter")) == 0


class TestQueue:
    def test_pop_uses_skip_locked(self):
        pool, conn = make_pool(rows=[{"slot_id": 11}])
        session = CoordinationSession(pool)

        assert asyncio.run(session.pop_queue("/ids/queue")) == 11
        assert "SKIP LOCKED" in sql_text(conn.execute.await_args)
        assert conn.execute.await_args.args[1] == ("/ids/queue",)

    def test_pop_empty(self):
        pool, _ = make_pool(rows=[None])
        session = CoordinationSession(pool)
        assert asyncio.run(session.pop_queue("/ids/queue")) is None

    def test_push_is_idempotent_insert(self):
        pool, conn = make_pool()
        session = CoordinationSession(pool)

        asyncio.run(session.push_queue("/ids/queue", 3))

        assert "DO NOTHING" in sql_text(conn.execute.await_args)
        assert conn.execute.await_args.args[1] == ("/ids/queue", 3)


class TestClaims:
    def test_write_claim_params(self):
        pool, conn = make_pool()
        session = CoordinationSession(pool, session_id="owner-1")
        record = ClaimRecord.for_claim("/ids", 4, "claim-1", "owner-1", 1000)

        asyncio.run(session.write_claim(record))

        params = conn.execute.await_args.args[1]
        assert params["path"] == "/ids/claims/4"
        assert params["claim_id"] == "claim-1"
        assert params["deadline"] == record.deadline

    def test_release_is_keyed_on_claim(self):
        pool, conn = make_pool(rowcount=1)
        session = CoordinationSession(pool)

        released = asyncio.run(session.release_slot("/ids", 4, "claim-1"))

        assert released is True
        query = sql_text(conn.execute.await_args)
        assert "ON CONFLICT (claim_id) DO NOTHING" in query
        assert "FROM marked" in query
        params = conn.execute.await_args.args[1]
        assert params["claim_id"] == "claim-1"
        assert params["path"] == "/ids/claims/4"
        assert params["queue_path"] == "/ids/queue"

    def test_repeated_release_reports_nothing_queued(self):
        pool, _ = make_pool(rowcount=0)
        session = CoordinationSession(pool)

        assert asyncio.run(session.release_slot("/ids", 4, "claim-1")) is False

    def test_prune_releases(self):
        pool, conn = make_pool(rowcount=7)
        session = CoordinationSession(pool)

        pruned = asyncio.run(session.prune_releases("/ids", timedelta(days=1)))

        assert pruned == 7
        assert conn.execute.await_args.args[1] == ("/ids", timedelta(days=1))

    def test_list_claims_builds_records(self):
        now = datetime.now(timezone.utc)
        rows = [{
            "base_path": "/ids",
            "slot_id": 1,
            "claim_id": "claim-1",
            "owner_id": "owner-1",
            "claimed_at": now,
            "deadline": now,
        }]
        pool, _ = make_pool(rows=rows)
        session = CoordinationSession(pool)

        records = asyncio.run(session.list_claims("/ids"))

        assert [r.path for r in records] == ["/ids/claims/1"]

    def test_reset_pool_runs_four_statements(self):
        pool, conn = make_pool()
        session = CoordinationSession(pool)

        asyncio.run(session.reset_pool("/ids"))

        assert conn.execute.await_count == 4


class TestErrorTranslation:
    def test_operational_error(self):
        pool, _ = make_pool(error=psycopg.OperationalError("server closed the connection"))
        session = CoordinationSession(pool)

        with pytest.raises(CoordinationUnavailable) as exc_info:
            asyncio.run(session.pop_queue("/ids/queue"))
        assert exc_info.value.operation == "pop_queue"
        assert isinstance(exc_info.value.__cause__, psycopg.OperationalError)

    def test_pool_timeout(self):
        pool, _ = make_pool(error=PoolTimeout("couldn't get a connection"))
        session = CoordinationSession(pool)

        with pytest.raises(CoordinationUnavailable):
            asyncio.run(session.increment_counter("/ids/pool/counter", 8))

    def test_invalidated_session_fails_fast(self):
        pool, conn = make_pool()
        session = CoordinationSession(pool)
        session.invalidate()

        assert session.is_usable is False
        with pytest.raises(CoordinationUnavailable, match="no longer valid"):
            asyncio.run(session.push_queue("/ids/queue", 1))
        conn.execute.assert_not_awaited()

    def test_closed_pool_not_usable(self):
        pool, _ = make_pool()
        pool.closed = True
        assert CoordinationSession(pool).is_usable is False

    def test_ping(self):
        ok_pool, _ = make_pool()
        bad_pool, _ = make_pool(error=psycopg.OperationalError("down"))
        assert asyncio.run(CoordinationSession(ok_pool).ping()) is True
        assert asyncio.run(CoordinationSession(bad_pool).ping()) is False


# ============================================================================
# CONNECTION LIFECYCLE
# ============================================================================

def patched_pool(open_error=None):
    pool, _ = make_pool()
    pool.open = AsyncMock(side_effect=open_error)
    return pool


class Observer:
    def __init__(self):
        self.events = []

    def connected(self):
        self.events.append("connected")

    def disconnected(self):
        self.events.append("disconnected")


class TestConnection:
    def test_unconfigured(self, fast_config):
        connection = CoordinationConnection(config=fast_config)
        with pytest.raises(RuntimeError, match="never configured"):
            asyncio.run(connection.get())

    def test_connect_timeout(self, fast_config):
        pool = patched_pool(open_error=PoolTimeout("timeout"))
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            with pytest.raises(ConnectTimeout) as exc_info:
                asyncio.run(connection.get())

        assert str(exc_info.value) == (
            "Connection to coordination service timed out after 10 seconds."
        )
        assert isinstance(exc_info.value, CoordinationUnavailable)
        pool.close.assert_awaited()
        assert connection.state is SessionState.DISCONNECTED

    def test_connect_returns_false_on_timeout(self, fast_config):
        pool = patched_pool(open_error=PoolTimeout("timeout"))
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            assert asyncio.run(connection.connect()) is False

    def test_cancelled_connect_closes_pool(self, fast_config):
        pool = patched_pool(open_error=asyncio.CancelledError())
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)

        async def scenario():
            with pytest.raises(asyncio.CancelledError):
                await connection.connect()

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            asyncio.run(scenario())
        pool.close.assert_awaited()
        assert connection.session is None

    def test_get_connects_once_and_notifies(self, fast_config):
        pool = patched_pool()
        connection = CoordinationConnection(config=fast_config)
        connection.configure("postgresql://h/db")
        observer = Observer()
        connection.register_observer(observer)

        async def scenario():
            first = await connection.get()
            second = await connection.get()
            state = connection.state
            await connection.shutdown()
            return first, second, state

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool) as factory:
            first, second, state = asyncio.run(scenario())

        assert first is second
        assert factory.call_count == 1
        assert state is SessionState.SYNC_CONNECTED
        assert observer.events == ["connected", "disconnected"]
        assert connection.state is SessionState.DISCONNECTED
        pool.close.assert_awaited()

    def test_failing_observer_does_not_block_others(self, fast_config):
        pool = patched_pool()
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)
        broken = MagicMock()
        broken.connected.side_effect = RuntimeError("observer bug")
        healthy = Observer()
        connection.register_observer(broken)
        connection.register_observer(healthy)

        async def scenario():
            await connection.get()
            await connection.shutdown()

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            asyncio.run(scenario())
        assert healthy.events == ["connected", "disconnected"]

    def test_deregistered_observer_not_notified(self, fast_config):
        pool = patched_pool()
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)
        observer = Observer()
        connection.register_observer(observer)
        connection.deregister_observer(observer)

        async def scenario():
            await connection.get()
            await connection.shutdown()

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            asyncio.run(scenario())
        assert observer.events == []

    def test_reset_forces_new_session(self, fast_config):
        pools = [patched_pool(), patched_pool()]
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)

        async def scenario():
            first = await connection.get()
            connection.reset()
            await asyncio.sleep(0)
            second = await connection.get()
            await connection.shutdown()
            return first, second

        with patch("infrastructure.coordination.AsyncConnectionPool", side_effect=pools):
            first, second = asyncio.run(scenario())

        assert first is not second
        assert first.is_usable is False
        pools[0].close.assert_awaited()

    def test_reset_close_awaited_by_shutdown(self, fast_config):
        pool = patched_pool()
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)

        async def scenario():
            await connection.get()
            connection.reset()
            tracked = len(connection._closing)
            await connection.shutdown()
            return tracked

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            tracked = asyncio.run(scenario())

        assert tracked == 1
        assert connection._closing == set()
        pool.close.assert_awaited()

    def test_failed_reset_close_is_logged(self, fast_config, caplog):
        pool = patched_pool()
        pool.close = AsyncMock(side_effect=RuntimeError("socket already closed"))
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)

        async def scenario():
            await connection.get()
            connection.reset()
            await asyncio.sleep(0.01)

        with caplog.at_level(logging.WARNING, logger="infrastructure.coordination"):
            with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
                asyncio.run(scenario())

        assert "Closing a reset coordination session failed: socket already closed" in caplog.text
        assert connection._closing == set()

    def test_liveness_check_expires_session(self, fast_config):
        pool = patched_pool()
        connection = CoordinationConnection("postgresql://h/db", config=fast_config)
        observer = Observer()
        connection.register_observer(observer)

        async def scenario():
            session = await connection.get()
            with patch.object(CoordinationSession, "ping", AsyncMock(return_value=False)):
                await asyncio.sleep(0.3)
            return session

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            session = asyncio.run(scenario())

        assert connection.state is SessionState.EXPIRED
        assert connection.session is None
        assert session.is_usable is False
        assert observer.events == ["connected", "disconnected"]

    def test_liveness_check_recovers_before_expiry(self):
        config = CoordinationDefaults(
            connect_wait_sec=0.05, session_timeout_sec=5.0, liveness_interval_sec=0.01,
        )
        pool = patched_pool()
        connection = CoordinationConnection("postgresql://h/db", config=config)
        observer = Observer()
        connection.register_observer(observer)

        async def scenario():
            await connection.get()
            with patch.object(CoordinationSession, "ping", AsyncMock(return_value=False)):
                await asyncio.sleep(0.05)
            down = connection.state
            with patch.object(CoordinationSession, "ping", AsyncMock(return_value=True)):
                await asyncio.sleep(0.05)
            up = connection.state
            await connection.shutdown()
            return down, up

        with patch("infrastructure.coordination.AsyncConnectionPool", return_value=pool):
            down, up = asyncio.run(scenario())

        assert down is SessionState.DISCONNECTED
        assert up is SessionState.SYNC_CONNECTED
        assert observer.events == ["connected", "disconnected", "connected", "disconnected"]
