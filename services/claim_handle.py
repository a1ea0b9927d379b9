# ============================================================================
# CLAIM HANDLE
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Client-held claim state machine
# PURPOSE: Expose the owned slot until the claim's TTL elapses
# CREATED: 08 OCT 2026
# ============================================================================
"""
Claim Handle

The process-local view of one claim:

    HAS_CLAIM -> CLAIM_RELINQUISHED

A handle is only created by a successful claim and transitions exactly once.
The lease monitor drives the transition at the deadline; readers also apply
the deadline on access, so get() never reports a slot past the deadline even
when the monitor fires late.

Safe to read from any thread.
"""

import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.contracts import ClaimState
from core.errors import ClaimNotHeld


class ClaimHandle:
    """Exclusive, time-bounded ownership of one slot."""

    def __init__(
        self,
        slot_id: int,
        base_path: str,
        ttl_millis: int,
        session,
        claim_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize handle in HAS_CLAIM.

        Args:
            slot_id: Owned slot
            base_path: Pool namespace the slot belongs to
            ttl_millis: Time to live from now
            session: Coordination session the slot was claimed on
            claim_id: Unique id of this claim (generated if omitted)
            clock: Monotonic clock, seconds
        """
        self._slot_id = slot_id
        self.base_path = base_path
        self.ttl_millis = ttl_millis
        self.session = session
        self.claim_id = claim_id or str(uuid.uuid4())
        self._clock = clock

        self.deadline: float = clock() + ttl_millis / 1000.0
        self.expires_at: datetime = datetime.now(timezone.utc) + timedelta(milliseconds=ttl_millis)

        # Set by the allocator once the best-effort claim record is stored
        self.record_written = False

        self._state = ClaimState.HAS_CLAIM
        self._lock = threading.Lock()

    def _expire_if_due(self) -> bool:
        """Apply the deadline. Caller holds the lock."""
        if self._state is ClaimState.HAS_CLAIM and self._clock() >= self.deadline:
            self._state = ClaimState.CLAIM_RELINQUISHED
            return True
        return False

    @property
    def state(self) -> ClaimState:
        with self._lock:
            self._expire_if_due()
            return self._state

    @property
    def is_held(self) -> bool:
        return self.state is ClaimState.HAS_CLAIM

    @property
    def slot_id(self) -> int:
        """The claimed slot, whether or not the claim is still held."""
        return self._slot_id

    def get(self) -> int:
        """
        Return the owned slot.

        Raises:
            ClaimNotHeld: The claim has been relinquished
        """
        with self._lock:
            self._expire_if_due()
            if self._state is not ClaimState.HAS_CLAIM:
                raise ClaimNotHeld()
            return self._slot_id

    def remaining_seconds(self) -> float:
        """Seconds until the deadline, 0.0 once relinquished."""
        with self._lock:
            self._expire_if_due()
            if self._state is not ClaimState.HAS_CLAIM:
                return 0.0
            return max(self.deadline - self._clock(), 0.0)

    def _relinquish(self) -> bool:
        """
        Move to CLAIM_RELINQUISHED. Only the lease monitor calls this.

        Returns:
            True if this call performed the transition, False if a reader
            already applied the deadline
        """
        with self._lock:
            if self._state is ClaimState.CLAIM_RELINQUISHED:
                return False
            self._state = ClaimState.CLAIM_RELINQUISHED
            return True

    def __repr__(self) -> str:
        return (
            f"ClaimHandle(base_path={self.base_path!r}, slot_id={self._slot_id}, "
            f"claim_id={self.claim_id[:8]}..., state={self._state.value})"
        )


__all__ = ["ClaimHandle"]
