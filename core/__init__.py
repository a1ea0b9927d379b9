# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core module initialization
# PURPOSE: Export contracts, errors and models
# CREATED: 05 OCT 2026
# ============================================================================

from core.contracts import ClaimState, SessionState
from core.errors import (
    SlotClaimError,
    ResourceExhausted,
    CoordinationUnavailable,
    ConnectTimeout,
    InvalidArgument,
    ClaimNotHeld,
)
from core.models import ClaimRecord, PoolStatus

__all__ = [
    # Enums
    "ClaimState",
    "SessionState",
    # Errors
    "SlotClaimError",
    "ResourceExhausted",
    "CoordinationUnavailable",
    "ConnectTimeout",
    "InvalidArgument",
    "ClaimNotHeld",
    # Models
    "ClaimRecord",
    "PoolStatus",
]
