# ============================================================================
# SLOT POOL ADMINISTRATION
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Service - Operator tooling for slot pools
# PURPOSE: Reset pools and report their occupancy
# CREATED: 08 OCT 2026
# ============================================================================
"""
Slot Pool Administration

Operator-facing helpers around one pool namespace:
- prepare_empty_pool: empty queue, zero counter, no claim records
- status: counter, queued slots, live and stale claim records
- prune_releases: drop old release markers

Stale claim records belong to holders that never released (for example a
crashed process). They are reported, never reclaimed automatically.
"""

from datetime import datetime, timedelta, timezone

from core.logging import ComponentType, get_logger
from core.models import PoolStatus, counter_path, queue_path

logger = get_logger(__name__, ComponentType.ADMIN)


class SlotPoolAdmin:
    """Administrative operations on slot pools."""

    def __init__(self, session):
        """
        Args:
            session: Connected CoordinationSession
        """
        self.session = session

    async def prepare_empty_pool(self, base_path: str) -> None:
        """
        Reset a pool to its initial state.

        Only safe while no process holds a claim in the pool.
        """
        await self.session.reset_pool(base_path)
        logger.info(f"Prepared empty slot pool {base_path}")

    async def prune_releases(self, base_path: str, older_than: timedelta) -> int:
        """
        Drop release markers older than older_than.

        Markers guard retried releases; keep them well past the longest
        outage a lease monitor may retry across.
        """
        pruned = await self.session.prune_releases(base_path, older_than)
        logger.info(f"Pruned {pruned} release marker(s) from {base_path}")
        return pruned

    async def status(self, base_path: str, pool_size: int) -> PoolStatus:
        """Point-in-time occupancy of a pool."""
        counter = await self.session.read_counter(counter_path(base_path))
        queued = await self.session.queue_size(queue_path(base_path))
        claims = await self.session.list_claims(base_path)

        now = datetime.now(timezone.utc)
        stale = sum(1 for record in claims if record.is_expired(now))

        status = PoolStatus(
            base_path=base_path,
            pool_size=pool_size,
            counter=counter,
            queued=queued,
            live_claims=len(claims) - stale,
            stale_claims=stale,
        )
        if stale:
            logger.warning(f"{stale} stale claim record(s) in {base_path}")
        return status


__all__ = ["SlotPoolAdmin"]
