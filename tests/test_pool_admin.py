# ============================================================================
# SLOT POOL ADMIN TESTS
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Tests - Pool reset and occupancy
# PURPOSE: Verify prepare_empty_pool and status reporting
# CREATED: 09 OCT 2026
# ============================================================================
"""
Slot Pool Admin Tests

Run with:
    pytest tests/test_pool_admin.py -v
"""

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone

from core.models import ClaimRecord
from services.pool_admin import SlotPoolAdmin


COUNTER = "/unique-id-generator/pool/counter"
QUEUE = "/unique-id-generator/queue"


def test_prepare_empty_pool(session, store, base_path):
    store.counters[COUNTER] = 5
    store.queues[QUEUE] = deque([1, 2])
    record = ClaimRecord.for_claim(base_path, 0, "claim-1", "owner-1", 1000)
    store.claims[record.path] = record
    other = ClaimRecord.for_claim("/other", 0, "claim-2", "owner-1", 1000)
    store.claims[other.path] = other

    asyncio.run(SlotPoolAdmin(session).prepare_empty_pool(base_path))

    assert store.counters[COUNTER] == 0
    assert store.queue(QUEUE) == []
    assert list(store.claims) == [other.path]


def test_status_counts_live_and_stale(session, store, base_path):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    store.counters[COUNTER] = 4
    store.queues[QUEUE] = deque([3])
    live = ClaimRecord.for_claim(base_path, 0, "claim-1", "owner-1", 60_000)
    stale = ClaimRecord.for_claim(base_path, 1, "claim-2", "owner-2", 1000, now=past)
    store.claims[live.path] = live
    store.claims[stale.path] = stale

    status = asyncio.run(SlotPoolAdmin(session).status(base_path, 8))

    assert status.counter == 4
    assert status.queued == 1
    assert status.live_claims == 1
    assert status.stale_claims == 1
    assert status.free_capacity == 5


def test_status_of_untouched_pool(session, base_path):
    status = asyncio.run(SlotPoolAdmin(session).status(base_path, 64))
    assert status.counter == 0
    assert status.free_capacity == 64
    assert not status.exhausted


def test_prune_releases_keeps_recent_markers(session, store, base_path):
    now = datetime.now(timezone.utc)
    store.releases["old"] = (base_path, 1, now - timedelta(days=3))
    store.releases["recent"] = (base_path, 2, now - timedelta(minutes=5))
    store.releases["other-pool"] = ("/other", 1, now - timedelta(days=3))

    pruned = asyncio.run(SlotPoolAdmin(session).prune_releases(base_path, timedelta(days=1)))

    assert pruned == 1
    assert set(store.releases) == {"recent", "other-pool"}


def test_prepare_empty_pool_drops_release_markers(session, store, base_path):
    store.releases["claim-1"] = (base_path, 0, datetime.now(timezone.utc))

    asyncio.run(SlotPoolAdmin(session).prepare_empty_pool(base_path))

    assert store.releases == {}
