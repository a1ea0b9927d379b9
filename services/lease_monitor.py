# ============================================================================
# LEASE MONITOR
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Claim expiry dispatcher
# PURPOSE: Relinquish claims at their deadline and return slots for reuse
# CREATED: 08 OCT 2026
# UPDATED: 17 OCT 2026 - Retry pending releases after success and on backoff
# ============================================================================
"""
Lease Monitor

One dispatcher task per monitor holds a heap of claim deadlines. When a
deadline passes the monitor:

1. Moves the handle to CLAIM_RELINQUISHED
2. Deletes the claim record and pushes the slot onto the reuse queue

If the coordination backend is unreachable at step 2, the handle is parked as
a pending release. Pending releases are retried when the connection reports
connected(), after any later release succeeds, and on an exponential backoff
timer. Until then the slot is unavailable for reuse.

Leases are one-shot: there is no renewal. A process that needs a slot for
longer must claim again.

Usage:
    monitor = LeaseMonitor(connection)
    allocator = SlotAllocator(monitor)
    handle = await allocator.claim_expiring(session, 64, "/ids", 60_000)
    ...
    await monitor.stop()
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Dict, List, Optional, Tuple

from core.errors import CoordinationUnavailable
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from infrastructure.coordination import CoordinationConnection
from services.claim_handle import ClaimHandle

logger = get_logger(__name__, ComponentType.MONITOR)
checkpoint_logger = logging.getLogger("checkpoint.lease_monitor")


class LeaseMonitor:
    """
    Deadline dispatcher for claim handles.

    Also a connection observer: connected() triggers a retry of pending
    releases, disconnected() is logged only. Both return immediately.
    """

    def __init__(
        self,
        connection: Optional[CoordinationConnection] = None,
        retry_interval_sec: float = 1.0,
        max_retry_interval_sec: float = 30.0,
    ):
        """
        Initialize lease monitor.

        Args:
            connection: Session source for releases whose own session has
                expired; the monitor registers itself as an observer
            retry_interval_sec: First backoff before pending releases are retried
            max_retry_interval_sec: Ceiling of the doubling backoff
        """
        self._connection = connection
        self._heap: List[Tuple[float, int, ClaimHandle]] = []
        self._sequence = itertools.count()
        self._pending: Dict[str, ClaimHandle] = {}
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._retry_requested = False

        # Backoff for pending releases
        self.retry_interval_sec = retry_interval_sec
        self.max_retry_interval_sec = max_retry_interval_sec
        self._retry_backoff = retry_interval_sec
        self._retry_at: Optional[float] = None

        # Counters
        self._relinquished = 0
        self._released = 0

        if connection is not None:
            connection.register_observer(self)

    @property
    def active_claims(self) -> int:
        """Handles waiting for their deadline."""
        return len(self._heap)

    @property
    def pending_releases(self) -> int:
        """Relinquished slots not yet returned to the queue."""
        return len(self._pending)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stats(self) -> Dict[str, int]:
        return {
            "active_claims": self.active_claims,
            "pending_releases": self.pending_releases,
            "relinquished": self._relinquished,
            "released": self._released,
        }

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the dispatcher on the running loop (idempotent)."""
        self._ensure_started()

    def _ensure_started(self) -> None:
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = self._loop.create_task(self._run(), name="lease-monitor")
        if self._connection is not None:
            self._connection.register_observer(self)
        logger.debug("Lease monitor started")

    async def stop(self) -> None:
        """
        Stop the dispatcher.

        Scheduled handles are not relinquished; their slots stay claimed
        until a new monitor is started.
        """
        if self._connection is not None:
            self._connection.deregister_observer(self)

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info(
            f"Lease monitor stopped (active={self.active_claims}, "
            f"pending={self.pending_releases}, released={self._released})"
        )

    def schedule(self, handle: ClaimHandle) -> None:
        """
        Schedule a handle's one-shot expiry.

        Must be called on the event loop thread.
        """
        self._ensure_started()
        heapq.heappush(self._heap, (handle.deadline, next(self._sequence), handle))
        self._wakeup.set()

    # =========================================================================
    # OBSERVER CALLBACKS
    # =========================================================================

    def connected(self) -> None:
        self._retry_requested = True
        self._wake()

    def disconnected(self) -> None:
        logger.warning(
            f"Coordination session lost; {self.active_claims} active claim(s) "
            f"will be released after reconnect"
        )

    def _wake(self) -> None:
        if self._loop is None or self._wakeup is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._wakeup.set)

    # =========================================================================
    # DISPATCHER
    # =========================================================================

    async def _run(self) -> None:
        while True:
            self._wakeup.clear()

            while self._heap and self._heap[0][0] <= time.monotonic():
                _, _, handle = heapq.heappop(self._heap)
                try:
                    await self._expire(handle)
                except Exception as e:
                    logger.error(f"Expiry of slot {handle.slot_id} failed: {e}", exc_info=True)
                    self._park(handle)

            if self._pending and (self._retry_requested or self._retry_due()):
                self._retry_requested = False
                await self.retry_pending()

            try:
                await asyncio.wait_for(self._wakeup.wait(), self._next_timeout())
            except asyncio.TimeoutError:
                pass

    def _park(self, handle: ClaimHandle) -> None:
        self._pending[handle.claim_id] = handle
        if self._retry_at is None:
            self._retry_at = time.monotonic() + self._retry_backoff

    def _retry_due(self) -> bool:
        return self._retry_at is not None and time.monotonic() >= self._retry_at

    def _next_timeout(self) -> Optional[float]:
        """Seconds until the next deadline or pending retry, None if neither."""
        due = []
        if self._heap:
            due.append(self._heap[0][0])
        if self._pending and self._retry_at is not None:
            due.append(self._retry_at)
        if not due:
            return None
        return max(min(due) - time.monotonic(), 0.0)

    async def _expire(self, handle: ClaimHandle) -> None:
        with log_context(
            base_path=handle.base_path,
            slot_id=handle.slot_id,
            claim_id=handle.claim_id,
        ):
            handle._relinquish()
            self._relinquished += 1
            log_checkpoint("slot_relinquished", logger=checkpoint_logger)

            if await self._release(handle):
                # Backend reachable again; pending releases go next
                if self._pending:
                    self._retry_requested = True
                return

            self._park(handle)
            log_checkpoint(
                "slot_release_pending",
                {"pending_releases": len(self._pending)},
                logger=checkpoint_logger,
            )

    async def _release(self, handle: ClaimHandle) -> bool:
        """
        Return the slot to the reuse queue. False if the backend is unreachable.

        Releases are keyed on the claim id, so retrying one whose outcome was
        lost never queues the slot a second time.
        """
        session = handle.session
        if not session.is_usable:
            session = self._connection.session if self._connection is not None else None
        if session is None:
            logger.warning(f"No coordination session to release slot {handle.slot_id}")
            return False

        try:
            await session.release_slot(handle.base_path, handle.slot_id, handle.claim_id)
        except CoordinationUnavailable as e:
            logger.warning(f"Release of slot {handle.slot_id} deferred: {e}")
            return False

        self._released += 1
        logger.info(f"Slot {handle.slot_id} returned to {handle.base_path}/queue")
        return True

    async def retry_pending(self) -> int:
        """
        Retry every pending release.

        Returns:
            Number of slots released by this call
        """
        released = 0
        for claim_id, handle in list(self._pending.items()):
            with log_context(
                base_path=handle.base_path,
                slot_id=handle.slot_id,
                claim_id=claim_id,
            ):
                if await self._release(handle):
                    del self._pending[claim_id]
                    released += 1

        if not self._pending:
            self._retry_backoff = self.retry_interval_sec
            self._retry_at = None
        else:
            if not released:
                self._retry_backoff = min(self._retry_backoff * 2, self.max_retry_interval_sec)
            self._retry_at = time.monotonic() + self._retry_backoff
            logger.info(
                f"{len(self._pending)} pending release(s) retried again in "
                f"{self._retry_backoff:.1f}s"
            )

        if released:
            logger.info(f"Released {released} pending slot(s); {len(self._pending)} remain")
        return released


__all__ = ["LeaseMonitor"]
