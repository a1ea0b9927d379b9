# ============================================================================
# ERROR TYPES
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Foundation - Exception hierarchy
# PURPOSE: Errors surfaced by allocation, claim handles and sessions
# CREATED: 05 OCT 2026
# ============================================================================
"""
Slot coordinator exceptions.

Every user-visible failure is raised at the call that triggered it:

    SlotClaimError
    ├── ResourceExhausted        pool and reuse queue both empty
    ├── CoordinationUnavailable  backend unreachable or request timed out
    │   └── ConnectTimeout       initial connect wait exceeded
    ├── InvalidArgument          non-positive pool size or TTL
    └── ClaimNotHeld             get() on a relinquished claim
"""

from typing import Optional


class SlotClaimError(Exception):
    """Base exception for slot claim operations."""


class ResourceExhausted(SlotClaimError):
    """Raised when every slot in the pool is live and nothing is queued."""

    def __init__(self, base_path: str, pool_size: int):
        self.base_path = base_path
        self.pool_size = pool_size
        super().__init__(
            f"All {pool_size} slots under {base_path} are claimed."
        )


class CoordinationUnavailable(SlotClaimError):
    """Raised when the coordination service cannot be reached."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class ConnectTimeout(CoordinationUnavailable):
    """Raised when establishing a session exceeds the connect timeout."""

    def __init__(self, timeout_sec: int):
        self.timeout_sec = timeout_sec
        super().__init__(
            f"Connection to coordination service timed out after {timeout_sec} seconds.",
            operation="connect",
        )


class InvalidArgument(SlotClaimError, ValueError):
    """Raised for non-positive pool sizes or TTLs."""

    def __init__(self, field: str, value):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be a positive integer, got {value!r}")


class ClaimNotHeld(SlotClaimError, RuntimeError):
    """Raised when reading the slot of a claim that has been relinquished."""

    def __init__(self):
        super().__init__("Resource claim not held.")


__all__ = [
    "SlotClaimError",
    "ResourceExhausted",
    "CoordinationUnavailable",
    "ConnectTimeout",
    "InvalidArgument",
    "ClaimNotHeld",
]
