# ============================================================================
# SLOT ALLOCATOR
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Expiring slot claims
# PURPOSE: Claim a unique slot from a bounded pool for a fixed TTL
# CREATED: 08 OCT 2026
# UPDATED: 17 OCT 2026 - Return slots committed after cancellation
# ============================================================================
"""
Slot Allocator

Claims a slot in [0, pool_size) that no other live claim holds:

1. Pop the oldest relinquished slot from {base}/queue
2. Otherwise take the next value of {base}/pool/counter, bounded by pool_size
3. If the counter is at the ceiling, pop the queue once more (a slot may
   have been relinquished since step 1) and fail with ResourceExhausted
   if it is still empty
4. Write the claim record (best-effort) and schedule the handle's expiry

A claim cancelled by its caller gives back any slot it obtained, including
one the backend handed out while the cancellation was being delivered.

Each step is one atomic statement on the coordination backend; uniqueness
never depends on client-side locking. A refused counter increment does not
mutate anything, so a failed claim leaves the pool exactly as it found it.

Usage:
    monitor = LeaseMonitor(connection)
    allocator = SlotAllocator(monitor)

    session = await connection.get()
    handle = await allocator.claim_expiring(
        session, pool_size=64, base_path="/unique-id-generator", ttl_millis=60_000,
    )
    generator_id = handle.get()
"""

import asyncio
import logging
import uuid
from typing import Optional

from core.errors import CoordinationUnavailable, InvalidArgument, ResourceExhausted
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from core.models import ClaimRecord, counter_path, queue_path
from services.claim_handle import ClaimHandle
from services.lease_monitor import LeaseMonitor

logger = get_logger(__name__, ComponentType.ALLOCATOR)
checkpoint_logger = logging.getLogger("checkpoint.slot_allocator")


def _require_positive(field: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgument(field, value)


class SlotAllocator:
    """
    Allocates expiring slot claims.

    Claims are handed to the lease monitor, which relinquishes them at
    their deadline.
    """

    def __init__(
        self,
        monitor: Optional[LeaseMonitor] = None,
        write_claim_records: bool = True,
    ):
        """
        Initialize allocator.

        Args:
            monitor: Lease monitor scheduling expiry (a private one if omitted)
            write_claim_records: Store observability records on claim
        """
        self.monitor = monitor or LeaseMonitor()
        self.write_claim_records = write_claim_records

    async def claim_expiring(
        self,
        session,
        pool_size: int,
        base_path: str,
        ttl_millis: int,
    ) -> ClaimHandle:
        """
        Claim a slot for ttl_millis.

        Args:
            session: Connected CoordinationSession
            pool_size: Number of slots in the pool
            base_path: Pool namespace
            ttl_millis: Lifetime of the claim

        Returns:
            ClaimHandle in HAS_CLAIM

        Raises:
            InvalidArgument: pool_size or ttl_millis not positive
            CoordinationUnavailable: session not connected or request failed
            ResourceExhausted: every slot is live and none is queued
        """
        _require_positive("pool_size", pool_size)
        _require_positive("ttl_millis", ttl_millis)
        if not session.is_usable:
            raise CoordinationUnavailable(
                "Coordination session is not connected.", operation="claim"
            )

        claim_id = str(uuid.uuid4())
        with log_context(base_path=base_path, session_id=session.session_id):
            # Acquisition runs to completion even when the caller is cancelled
            acquiring = asyncio.create_task(self._acquire(session, pool_size, base_path))
            try:
                slot_id, source = await asyncio.shield(acquiring)
            except asyncio.CancelledError:
                await self._abandon_acquisition(session, base_path, claim_id, acquiring)
                raise

            handle = ClaimHandle(slot_id, base_path, ttl_millis, session, claim_id=claim_id)
            if self.write_claim_records:
                try:
                    handle.record_written = await self._write_record(session, handle)
                except asyncio.CancelledError:
                    await self._abandon(session, base_path, slot_id, claim_id)
                    raise

            self.monitor.schedule(handle)

            with log_context(slot_id=slot_id, claim_id=claim_id):
                log_checkpoint(
                    "slot_claimed",
                    {
                        "source": source,
                        "pool_size": pool_size,
                        "ttl_millis": ttl_millis,
                        "record_written": handle.record_written,
                    },
                    logger=checkpoint_logger,
                )
            return handle

    async def _acquire(self, session, pool_size: int, base_path: str):
        """Pop the reuse queue, else grow the counter. Returns (slot_id, source)."""
        queue = queue_path(base_path)

        slot_id = await session.pop_queue(queue)
        if slot_id is not None:
            return slot_id, "queue"

        slot_id = await session.increment_counter(counter_path(base_path), pool_size)
        if slot_id is not None:
            return slot_id, "counter"

        # Counter at the ceiling; recheck the queue before giving up
        slot_id = await session.pop_queue(queue)
        if slot_id is not None:
            return slot_id, "queue"

        logger.warning(f"Slot pool {base_path} exhausted ({pool_size} slots)")
        raise ResourceExhausted(base_path, pool_size)

    async def _write_record(self, session, handle: ClaimHandle) -> bool:
        """Store the claim record. Failure is logged and tolerated."""
        record = ClaimRecord.for_claim(
            base_path=handle.base_path,
            slot_id=handle.slot_id,
            claim_id=handle.claim_id,
            owner_id=session.session_id,
            ttl_millis=handle.ttl_millis,
        )
        try:
            await session.write_claim(record)
            return True
        except CoordinationUnavailable as e:
            logger.warning(f"Claim record for slot {handle.slot_id} not written: {e}")
            return False

    async def _abandon_acquisition(
        self,
        session,
        base_path: str,
        claim_id: str,
        acquiring: asyncio.Task,
    ) -> None:
        """Wait out an acquisition whose caller was cancelled and return its slot."""
        try:
            slot_id, _ = await asyncio.shield(acquiring)
        except (ResourceExhausted, CoordinationUnavailable):
            return
        await self._abandon(session, base_path, slot_id, claim_id)

    async def _abandon(self, session, base_path: str, slot_id: int, claim_id: str) -> None:
        """Give back a slot obtained by a claim that was cancelled."""
        try:
            await asyncio.shield(session.release_slot(base_path, slot_id, claim_id))
            logger.info(f"Claim cancelled; slot {slot_id} returned to {base_path}/queue")
        except CoordinationUnavailable as e:
            logger.error(f"Claim cancelled; slot {slot_id} could not be returned: {e}")


async def claim_expiring(
    session,
    pool_size: int,
    base_path: str,
    ttl_millis: int,
    monitor: LeaseMonitor,
) -> ClaimHandle:
    """Claim a slot using a one-off allocator bound to monitor."""
    return await SlotAllocator(monitor).claim_expiring(session, pool_size, base_path, ttl_millis)


__all__ = ["SlotAllocator", "claim_expiring"]
