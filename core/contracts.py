# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Foundation - Core enums
# PURPOSE: Define claim and session state enums
# CREATED: 05 OCT 2026
# EXPORTS: ClaimState, SessionState
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the slot coordinator.

These enums cross every boundary:
- Python (claim handles, lease monitor)
- SQL (claim records in PostgreSQL)
- Logs (structured checkpoints)
"""

from enum import Enum


class ClaimState(str, Enum):
    """
    Claim handle states.

    State transitions:
        HAS_CLAIM -> CLAIM_RELINQUISHED

    A handle is created in HAS_CLAIM and transitions exactly once.
    """
    HAS_CLAIM = "has_claim"                    # Slot exclusively owned
    CLAIM_RELINQUISHED = "claim_relinquished"  # TTL elapsed, slot given back

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self is ClaimState.CLAIM_RELINQUISHED


class SessionState(str, Enum):
    """
    Coordination session states.

    State transitions:
        DISCONNECTED -> SYNC_CONNECTED -> DISCONNECTED
                                       -> EXPIRED
        DISCONNECTED -> EXPIRED (disconnected beyond the session timeout)
    """
    DISCONNECTED = "disconnected"
    SYNC_CONNECTED = "sync_connected"
    EXPIRED = "expired"

    def is_terminal(self) -> bool:
        """An expired session must be rebuilt; it never reconnects."""
        return self is SessionState.EXPIRED


__all__ = ["ClaimState", "SessionState"]
