# ============================================================================
# TEST FIXTURES
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Tests - Shared fixtures
# PURPOSE: In-memory coordination backend and controllable clock
# CREATED: 09 OCT 2026
# UPDATED: 17 OCT 2026 - Release markers, held and lost replies
# ============================================================================
"""
Shared test fixtures.

FakeCoordinationStore holds the state of one coordination namespace
(counters, queues, claim records, release markers). Any number of
FakeCoordinationSession objects can share a store, standing in for
independent processes.

Each primitive yields to the event loop once and then mutates without
awaiting, so concurrent claimants interleave between primitives but each
primitive is atomic - the same guarantee the PostgreSQL statements give.

Two hooks model a reply that is slow or lost after the backend committed:
- hold[op]: the primitive mutates, then waits on the event before returning
- lose_reply: the primitive mutates, then raises CoordinationUnavailable once
"""

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from core.errors import CoordinationUnavailable
from core.models import ClaimRecord, claim_path, counter_path, queue_path


class FakeCoordinationStore:
    """Shared coordination state."""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.queues: Dict[str, deque] = {}
        self.claims: Dict[str, ClaimRecord] = {}
        # claim_id -> (base_path, slot_id, released_at)
        self.releases: Dict[str, Tuple[str, int, datetime]] = {}

    def queue(self, path: str) -> List[int]:
        return list(self.queues.get(path, ()))


class FakeCoordinationSession:
    """CoordinationSession double backed by a FakeCoordinationStore."""

    def __init__(self, store: FakeCoordinationStore, session_id: str = "session-0001"):
        self.store = store
        self.session_id = session_id
        self.usable = True
        self.fail_ops: Set[str] = set()
        self.lose_reply: Set[str] = set()
        self.hold: Dict[str, asyncio.Event] = {}
        self.calls: List[str] = []

    @property
    def is_usable(self) -> bool:
        return self.usable

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        self.calls.append(operation)
        if not self.usable or operation in self.fail_ops:
            raise CoordinationUnavailable(
                f"Coordination service unavailable during {operation}", operation=operation
            )

    async def _reply(self, operation: str) -> None:
        """Runs after the mutation committed."""
        if operation in self.hold:
            await self.hold[operation].wait()
        if operation in self.lose_reply:
            self.lose_reply.discard(operation)
            raise CoordinationUnavailable(
                f"Connection lost awaiting reply to {operation}", operation=operation
            )

    async def ping(self) -> bool:
        return self.usable

    async def increment_counter(self, path: str, ceiling: int) -> Optional[int]:
        await self._enter("increment_counter")
        value = self.store.counters.get(path, 0)
        if value >= ceiling:
            return None
        self.store.counters[path] = value + 1
        await self._reply("increment_counter")
        return value

    async def read_counter(self, path: str) -> int:
        await self._enter("read_counter")
        return self.store.counters.get(path, 0)

    async def pop_queue(self, path: str) -> Optional[int]:
        await self._enter("pop_queue")
        entries = self.store.queues.get(path)
        if not entries:
            return None
        slot_id = entries.popleft()
        await self._reply("pop_queue")
        return slot_id

    async def push_queue(self, path: str, slot_id: int) -> None:
        await self._enter("push_queue")
        entries = self.store.queues.setdefault(path, deque())
        if slot_id not in entries:
            entries.append(slot_id)

    async def queue_size(self, path: str) -> int:
        await self._enter("queue_size")
        return len(self.store.queues.get(path, ()))

    async def write_claim(self, record: ClaimRecord) -> None:
        await self._enter("write_claim")
        self.store.claims[record.path] = record
        await self._reply("write_claim")

    async def list_claims(self, base_path: str) -> List[ClaimRecord]:
        await self._enter("list_claims")
        return sorted(
            (r for r in self.store.claims.values() if r.base_path == base_path),
            key=lambda r: r.slot_id,
        )

    async def release_slot(self, base_path: str, slot_id: int, claim_id: str) -> bool:
        await self._enter("release_slot")
        path = claim_path(base_path, slot_id)
        record = self.store.claims.get(path)
        if record is not None and record.claim_id == claim_id:
            del self.store.claims[path]

        queued = False
        if claim_id not in self.store.releases:
            self.store.releases[claim_id] = (base_path, slot_id, datetime.now(timezone.utc))
            entries = self.store.queues.setdefault(queue_path(base_path), deque())
            if slot_id not in entries:
                entries.append(slot_id)
                queued = True
        await self._reply("release_slot")
        return queued

    async def prune_releases(self, base_path: str, older_than: timedelta) -> int:
        await self._enter("prune_releases")
        cutoff = datetime.now(timezone.utc) - older_than
        stale = [
            claim_id for claim_id, (path, _, released_at) in self.store.releases.items()
            if path == base_path and released_at < cutoff
        ]
        for claim_id in stale:
            del self.store.releases[claim_id]
        return len(stale)

    async def reset_pool(self, base_path: str) -> None:
        await self._enter("reset_pool")
        self.store.queues.pop(queue_path(base_path), None)
        self.store.counters[counter_path(base_path)] = 0
        for path in [p for p, r in self.store.claims.items() if r.base_path == base_path]:
            del self.store.claims[path]
        for claim_id in [c for c, r in self.store.releases.items() if r[0] == base_path]:
            del self.store.releases[claim_id]


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store() -> FakeCoordinationStore:
    return FakeCoordinationStore()


@pytest.fixture
def session(store) -> FakeCoordinationSession:
    return FakeCoordinationSession(store)


@pytest.fixture
def make_session(store):
    """Factory for additional sessions (other processes) on the same store."""
    counter = {"n": 0}

    def _make(usable: bool = True) -> FakeCoordinationSession:
        counter["n"] += 1
        fake = FakeCoordinationSession(store, session_id=f"session-{counter['n']:04d}")
        fake.usable = usable
        return fake
    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def base_path() -> str:
    return "/unique-id-generator"
