# ============================================================================
# COORDINATION SESSION
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Infrastructure - Coordination backend boundary
# PURPOSE: Atomic counter/queue primitives and session lifecycle on PostgreSQL
# CREATED: 06 OCT 2026
# UPDATED: 17 OCT 2026 - Claim-keyed release markers, tracked session closes
# ============================================================================
"""
Coordination Session

PostgreSQL is the coordination service. Every primitive the allocator and the
lease monitor rely on is a single SQL statement, so each one is linearizable
without client-side locking:

    increment_counter  INSERT .. ON CONFLICT DO UPDATE .. WHERE value < ceiling
    pop_queue          DELETE .. (SELECT .. FOR UPDATE SKIP LOCKED LIMIT 1)
    push_queue         INSERT .. ON CONFLICT DO NOTHING
    release_slot       release marker + DELETE claim record + push, one statement

CoordinationConnection owns the session lifecycle. It is constructed and passed
explicitly; there is no process-wide instance.

    DISCONNECTED -> SYNC_CONNECTED -> DISCONNECTED -> SYNC_CONNECTED
                                                   -> EXPIRED

Observers receive connected() on entering SYNC_CONNECTED and disconnected() on
leaving it. Dispatch order is unspecified and observers must not block.

Usage:
    connection = CoordinationConnection()
    connection.configure("postgresql://user:pw@host/db")

    session = await connection.get()
    slot = await session.increment_counter("/ids/pool/counter", ceiling=64)

    await connection.shutdown()
"""

import asyncio
import logging
import threading
import uuid
from datetime import timedelta
from contextlib import asynccontextmanager
from typing import List, Optional, Protocol, Set

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from core.config import CoordinationDefaults
from core.contracts import SessionState
from core.errors import ConnectTimeout, CoordinationUnavailable
from core.models import ClaimRecord, claim_path, counter_path, queue_path
from infrastructure.postgresql import get_connection_string, mask_conninfo
from infrastructure.schema import CoordinationTables

logger = logging.getLogger(__name__)


class ConnectionObserver(Protocol):
    """Listener for session liveness transitions."""

    def connected(self) -> None:
        ...

    def disconnected(self) -> None:
        ...


# ============================================================================
# SESSION - ATOMIC PRIMITIVES
# ============================================================================

class CoordinationSession:
    """
    One live session against the coordination backend.

    Wraps an open AsyncConnectionPool whose connections run in autocommit
    mode: each primitive is exactly one statement (or one explicit
    transaction) and commits on its own.
    """

    def __init__(
        self,
        pool: AsyncConnectionPool,
        schema: str = "slotcoord",
        session_id: Optional[str] = None,
        request_timeout_sec: float = 10.0,
    ):
        """
        Initialize session.

        Args:
            pool: Open connection pool (autocommit, dict_row)
            schema: Schema holding the coordination tables
            session_id: Owner id recorded on claim records
            request_timeout_sec: Max wait for a pooled connection
        """
        self._pool = pool
        self._tables = CoordinationTables.for_schema(schema)
        self.session_id = session_id or str(uuid.uuid4())
        self._request_timeout = request_timeout_sec
        self._valid = True

    @property
    def schema(self) -> str:
        return self._tables.schema

    @property
    def pool(self) -> AsyncConnectionPool:
        return self._pool

    @property
    def is_usable(self) -> bool:
        """False once the session is invalidated or its pool closed."""
        return self._valid and not self._pool.closed

    def invalidate(self) -> None:
        """Mark the session expired; every further primitive fails fast."""
        self._valid = False

    async def close(self) -> None:
        """Invalidate the session and close its pool."""
        self._valid = False
        await self._pool.close()

    @asynccontextmanager
    async def _connection(self, operation: str):
        """
        Borrow a pooled connection, translating backend failures.

        Raises:
            CoordinationUnavailable: session invalid, pool exhausted,
                or the backend dropped the connection.
        """
        if not self._valid:
            raise CoordinationUnavailable(
                "Coordination session is no longer valid.", operation=operation
            )
        try:
            async with self._pool.connection(timeout=self._request_timeout) as conn:
                yield conn
        except (psycopg.OperationalError, psycopg.InterfaceError) as e:
            # PoolTimeout and PoolClosed are OperationalErrors
            logger.warning(f"Coordination {operation} failed: {e}")
            raise CoordinationUnavailable(
                f"Coordination service unavailable during {operation}: {e}",
                operation=operation,
            ) from e

    async def ping(self) -> bool:
        """Liveness check. Never raises."""
        try:
            async with self._connection("ping") as conn:
                await conn.execute("SELECT 1")
            return True
        except CoordinationUnavailable:
            return False

    # =========================================================================
    # COUNTER
    # =========================================================================

    async def increment_counter(self, path: str, ceiling: int) -> Optional[int]:
        """
        Atomically take the next value of a counter bounded by ceiling.

        A refused increment leaves the counter untouched, so the counter
        never overshoots and never needs to be decremented.

        Args:
            path: Counter path ({base}/pool/counter)
            ceiling: Exclusive upper bound of issued values

        Returns:
            Pre-increment value, or None if the counter is at the ceiling
        """
        async with self._connection("increment_counter") as conn:
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} AS c (path, value) VALUES (%(path)s, 1)
                ON CONFLICT (path) DO UPDATE
                    SET value = c.value + 1, updated_at = now()
                    WHERE c.value < %(ceiling)s
                RETURNING c.value - 1 AS slot_id
                """).format(self._tables.counters),
                {"path": path, "ceiling": ceiling},
            )
            row = await result.fetchone()
            return row["slot_id"] if row else None

    async def read_counter(self, path: str) -> int:
        """Current counter value (0 if never incremented)."""
        async with self._connection("read_counter") as conn:
            result = await conn.execute(
                sql.SQL("SELECT value FROM {} WHERE path = %s").format(self._tables.counters),
                (path,),
            )
            row = await result.fetchone()
            return row["value"] if row else 0

    # =========================================================================
    # QUEUE
    # =========================================================================

    async def pop_queue(self, path: str) -> Optional[int]:
        """
        Atomically remove the oldest entry of a queue.

        SKIP LOCKED lets concurrent poppers take different entries instead of
        waiting on each other; a popper that finds every entry locked sees
        None and falls through to the counter.

        Args:
            path: Queue path ({base}/queue)

        Returns:
            The slot id of the removed entry, or None if nothing was available
        """
        async with self._connection("pop_queue") as conn:
            result = await conn.execute(
                sql.SQL("""
                DELETE FROM {queue}
                WHERE entry_id = (
                    SELECT entry_id FROM {queue}
                    WHERE queue_path = %s
                    ORDER BY entry_id
                    FOR UPDATE SKIP LOCKED
                    LIMIT 1
                )
                RETURNING slot_id
                """).format(queue=self._tables.queue),
                (path,),
            )
            row = await result.fetchone()
            return row["slot_id"] if row else None

    async def push_queue(self, path: str, slot_id: int) -> None:
        """Append a slot to a queue. Pushing a slot already queued is a no-op."""
        async with self._connection("push_queue") as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (queue_path, slot_id) VALUES (%s, %s)
                ON CONFLICT (queue_path, slot_id) DO NOTHING
                """).format(self._tables.queue),
                (path, slot_id),
            )

    async def queue_size(self, path: str) -> int:
        async with self._connection("queue_size") as conn:
            result = await conn.execute(
                sql.SQL("SELECT COUNT(*) AS size FROM {} WHERE queue_path = %s").format(
                    self._tables.queue
                ),
                (path,),
            )
            row = await result.fetchone()
            return row["size"]

    # =========================================================================
    # CLAIM RECORDS
    # =========================================================================

    async def write_claim(self, record: ClaimRecord) -> None:
        """Upsert the claim record for a slot, replacing any stale record."""
        async with self._connection("write_claim") as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    path, base_path, slot_id, claim_id, owner_id, claimed_at, deadline
                ) VALUES (
                    %(path)s, %(base_path)s, %(slot_id)s, %(claim_id)s,
                    %(owner_id)s, %(claimed_at)s, %(deadline)s
                )
                ON CONFLICT (path) DO UPDATE SET
                    claim_id = EXCLUDED.claim_id,
                    owner_id = EXCLUDED.owner_id,
                    claimed_at = EXCLUDED.claimed_at,
                    deadline = EXCLUDED.deadline
                """).format(self._tables.claims),
                {
                    "path": record.path,
                    "base_path": record.base_path,
                    "slot_id": record.slot_id,
                    "claim_id": record.claim_id,
                    "owner_id": record.owner_id,
                    "claimed_at": record.claimed_at,
                    "deadline": record.deadline,
                },
            )

    async def list_claims(self, base_path: str) -> List[ClaimRecord]:
        async with self._connection("list_claims") as conn:
            result = await conn.execute(
                sql.SQL("""
                SELECT base_path, slot_id, claim_id, owner_id, claimed_at, deadline
                FROM {} WHERE base_path = %s ORDER BY slot_id
                """).format(self._tables.claims),
                (base_path,),
            )
            rows = await result.fetchall()
            return [ClaimRecord(**row) for row in rows]

    async def release_slot(self, base_path: str, slot_id: int, claim_id: str) -> bool:
        """
        Give a relinquished slot back to the reuse queue.

        One statement writes the release marker for claim_id, deletes the
        claim record if there is one and pushes the slot. The push only
        happens when the marker is new, so retrying after an ambiguous failure
        can never queue a slot that another process has since claimed.

        Args:
            base_path: Pool namespace
            slot_id: Slot being relinquished
            claim_id: Claim that owned the slot

        Returns:
            True if this call put the slot on the queue
        """
        params = {
            "path": claim_path(base_path, slot_id),
            "base_path": base_path,
            "claim_id": claim_id,
            "queue_path": queue_path(base_path),
            "slot_id": slot_id,
        }
        async with self._connection("release_slot") as conn:
            result = await conn.execute(
                sql.SQL("""
                WITH marked AS (
                    INSERT INTO {releases} (claim_id, base_path, slot_id)
                    VALUES (%(claim_id)s, %(base_path)s, %(slot_id)s)
                    ON CONFLICT (claim_id) DO NOTHING
                    RETURNING slot_id
                ), dropped AS (
                    DELETE FROM {claims}
                    WHERE path = %(path)s AND claim_id = %(claim_id)s
                )
                INSERT INTO {queue} (queue_path, slot_id)
                SELECT %(queue_path)s, slot_id FROM marked
                ON CONFLICT (queue_path, slot_id) DO NOTHING
                """).format(
                    releases=self._tables.releases,
                    claims=self._tables.claims,
                    queue=self._tables.queue,
                ),
                params,
            )
            return result.rowcount > 0

    async def prune_releases(self, base_path: str, older_than: timedelta) -> int:
        """
        Drop release markers older than older_than.

        A marker must outlive every retry of its release; prune only with a
        margin well beyond the lease monitor's retry horizon.

        Returns:
            Number of markers removed
        """
        async with self._connection("prune_releases") as conn:
            result = await conn.execute(
                sql.SQL("""
                DELETE FROM {} WHERE base_path = %s AND released_at < now() - %s
                """).format(self._tables.releases),
                (base_path, older_than),
            )
            return result.rowcount

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    async def reset_pool(self, base_path: str) -> None:
        """Empty the queue, zero the counter, drop claim records and release markers."""
        async with self._connection("reset_pool") as conn:
            async with conn.transaction():
                await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE queue_path = %s").format(self._tables.queue),
                    (queue_path(base_path),),
                )
                await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE base_path = %s").format(self._tables.claims),
                    (base_path,),
                )
                await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE base_path = %s").format(self._tables.releases),
                    (base_path,),
                )
                await conn.execute(
                    sql.SQL("""
                    INSERT INTO {} AS c (path, value) VALUES (%s, 0)
                    ON CONFLICT (path) DO UPDATE SET value = 0, updated_at = now()
                    """).format(self._tables.counters),
                    (counter_path(base_path),),
                )
        logger.info(f"Reset slot pool {base_path}")


# ============================================================================
# CONNECTION - SESSION LIFECYCLE
# ============================================================================

class CoordinationConnection:
    """
    Session lifecycle for the coordination backend.

    - configure(address) sets the backend address
    - get() returns the live session, connecting on demand
    - reset() drops the session; the next get() reconnects
    - shutdown() closes everything

    A background liveness check drives the liveness state machine. A session that
    stays disconnected past session_timeout_sec is expired and reset;
    claim handles already issued are unaffected.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        config: Optional[CoordinationDefaults] = None,
    ):
        """
        Initialize connection.

        Args:
            address: Connection string; if None, configure() or
                configure_from_env() must be called before get()
            config: Timeouts and pool sizing; defaults from environment
        """
        self._address = address
        self._config = config or CoordinationDefaults.from_env()
        self._session: Optional[CoordinationSession] = None
        self._state = SessionState.DISCONNECTED
        self._disconnected_since: Optional[float] = None
        self._liveness_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._observers: List[ConnectionObserver] = []
        self._observers_lock = threading.Lock()
        # Pools of reset sessions still closing
        self._closing: Set[asyncio.Task] = set()

    def configure(self, address: str) -> None:
        """Set the backend address used by the next connect."""
        self._address = address

    def configure_from_env(self) -> None:
        self._address = get_connection_string()

    @property
    def config(self) -> CoordinationDefaults:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[CoordinationSession]:
        """The current session without connecting (None if there is none)."""
        session = self._session
        if session is not None and session.is_usable:
            return session
        return None

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def register_observer(self, observer: ConnectionObserver) -> None:
        with self._observers_lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def deregister_observer(self, observer: ConnectionObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _notify(self, callback_name: str) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                getattr(observer, callback_name)()
            except Exception as e:
                logger.error(
                    f"Observer {observer!r} failed in {callback_name}(): {e}",
                    exc_info=True,
                )

    def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(f"Coordination session {old_state.value} -> {new_state.value}")

        if new_state == SessionState.SYNC_CONNECTED:
            self._notify("connected")
        elif old_state == SessionState.SYNC_CONNECTED:
            self._notify("disconnected")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(self, timeout: Optional[float] = None) -> bool:
        """
        Open a new session and wait until it is usable.

        Args:
            timeout: Seconds to wait (defaults to connect_wait_sec)

        Returns:
            True if connected, False if the wait timed out

        Raises:
            RuntimeError: The address was never configured
            asyncio.CancelledError: Re-raised after closing the half-open pool
        """
        if self._address is None:
            raise RuntimeError("Coordination service address was never configured.")

        if self._session is not None:
            self.reset()

        wait = timeout if timeout is not None else self._config.connect_wait_sec
        logger.info(f"Connecting to coordination service: {mask_conninfo(self._address)}")

        pool = AsyncConnectionPool(
            conninfo=self._address,
            min_size=self._config.pool_min_size,
            max_size=self._config.pool_max_size,
            kwargs={"autocommit": True, "row_factory": dict_row},
            open=False,
            name="slotcoord",
        )
        try:
            await pool.open(wait=True, timeout=wait)
        except PoolTimeout:
            logger.warning(f"Coordination connect timed out after {wait:.0f}s")
            await pool.close()
            return False
        except asyncio.CancelledError:
            logger.warning("Coordination connect interrupted; closing pool")
            await pool.close()
            raise

        self._session = CoordinationSession(
            pool,
            schema=self._config.schema,
            request_timeout_sec=float(self._config.connect_timeout_sec),
        )
        self._disconnected_since = None
        self._transition(SessionState.SYNC_CONNECTED)
        self._liveness_task = asyncio.create_task(
            self._liveness_loop(self._session),
            name=f"coordination-liveness-{self._session.session_id[:8]}",
        )
        logger.info(f"Coordination session {self._session.session_id[:8]}... established")
        return True

    async def get(self) -> CoordinationSession:
        """
        Get the live session, connecting if there is none.

        Raises:
            ConnectTimeout: The backend did not answer within the timeout
            RuntimeError: The address was never configured
        """
        if self._address is None:
            raise RuntimeError("Coordination service address was never configured.")

        async with self._connect_lock:
            if self.session is None:
                if not await self.connect():
                    raise ConnectTimeout(self._config.connect_timeout_sec)
            return self._session

    def reset(self) -> None:
        """
        Drop the current session so the next get() establishes a new one.

        Called automatically when the session expires.
        """
        session = self._session
        self._session = None
        self._disconnected_since = None

        checker = self._liveness_task
        self._liveness_task = None
        if checker is not None and checker is not _current_task():
            checker.cancel()

        if session is not None:
            session.invalidate()
            try:
                closing = asyncio.get_running_loop().create_task(session.close())
            except RuntimeError:
                logger.debug("No running loop; session pool left for garbage collection")
            else:
                self._closing.add(closing)
                closing.add_done_callback(self._session_closed)

        if self._state == SessionState.SYNC_CONNECTED:
            self._transition(SessionState.DISCONNECTED)

    def _session_closed(self, task: asyncio.Task) -> None:
        self._closing.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Closing a reset coordination session failed: {error}")

    async def shutdown(self) -> None:
        """Close the session, stop probing and wait for reset sessions to close."""
        session = self._session
        self._session = None

        checker = self._liveness_task
        self._liveness_task = None
        if checker is not None:
            checker.cancel()
            try:
                await checker
            except asyncio.CancelledError:
                pass

        if session is not None:
            await session.close()
            logger.info(f"Coordination session {session.session_id[:8]}... closed")

        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        self._transition(SessionState.DISCONNECTED)

    async def __aenter__(self) -> "CoordinationConnection":
        await self.get()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    async def _liveness_loop(self, session: CoordinationSession) -> None:
        """Drive SYNC_CONNECTED / DISCONNECTED / EXPIRED from periodic pings."""
        loop = asyncio.get_running_loop()
        while session is self._session:
            await asyncio.sleep(self._config.liveness_interval_sec)
            if session is not self._session:
                return

            if await session.ping():
                self._disconnected_since = None
                self._transition(SessionState.SYNC_CONNECTED)
                continue

            now = loop.time()
            if self._disconnected_since is None:
                self._disconnected_since = now
                logger.warning("Disconnected from coordination service.")
                self._transition(SessionState.DISCONNECTED)
            elif now - self._disconnected_since >= self._config.session_timeout_sec:
                logger.warning(
                    f"Coordination session {session.session_id[:8]}... expired "
                    f"after {now - self._disconnected_since:.1f}s disconnected"
                )
                self.reset()
                self._transition(SessionState.EXPIRED)
                return


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ConnectionObserver",
    "CoordinationSession",
    "CoordinationConnection",
]
