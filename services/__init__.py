# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Claim allocation layer
# PURPOSE: Slot allocation, claim handles, lease expiry, pool admin
# CREATED: 08 OCT 2026
# ============================================================================
"""
Services Module

Claim allocation on top of the coordination session.

Usage:
    from services import LeaseMonitor, SlotAllocator

    monitor = LeaseMonitor(connection)
    allocator = SlotAllocator(monitor)
    handle = await allocator.claim_expiring(session, 64, "/ids", 60_000)
"""

from .claim_handle import ClaimHandle
from .lease_monitor import LeaseMonitor
from .slot_allocator import SlotAllocator, claim_expiring
from .pool_admin import SlotPoolAdmin

__all__ = [
    "ClaimHandle",
    "LeaseMonitor",
    "SlotAllocator",
    "claim_expiring",
    "SlotPoolAdmin",
]
