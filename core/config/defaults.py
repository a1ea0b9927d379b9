# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for coordination sessions and slot claims
# CREATED: 05 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for coordination sessions and slot claims.
These can be overridden via environment variables or constructor arguments.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CoordinationDefaults:
    """
    Defaults for the coordination session.

    Controls connect timeouts, liveness probing and session expiry.
    """
    # Connect timeout reported to callers (seconds)
    connect_timeout_sec: int = 10
    # Wait for the first usable connection; one second of slack over the timeout
    connect_wait_sec: float = 11.0

    # Disconnected longer than this and the session is expired
    session_timeout_sec: float = 10.0
    # Interval between liveness checks
    liveness_interval_sec: float = 2.0

    # Schema holding the counter, queue and claim tables
    schema: str = "slotcoord"

    # Connection pool sizing
    pool_min_size: int = 1
    pool_max_size: int = 4

    @classmethod
    def from_env(cls) -> "CoordinationDefaults":
        """Create from environment variables."""
        connect_timeout = int(os.getenv("COORDINATION_CONNECT_TIMEOUT_SEC", 10))
        return cls(
            connect_timeout_sec=connect_timeout,
            connect_wait_sec=float(connect_timeout + 1),
            session_timeout_sec=float(os.getenv("COORDINATION_SESSION_TIMEOUT_SEC", 10)),
            liveness_interval_sec=float(os.getenv("COORDINATION_LIVENESS_INTERVAL_SEC", 2)),
            schema=os.getenv("COORDINATION_SCHEMA", "slotcoord"),
            pool_max_size=int(os.getenv("COORDINATION_POOL_MAX", 4)),
        )


@dataclass(frozen=True)
class ClaimDefaults:
    """
    Defaults for slot claims.

    The base path namespaces one pool of slots.
    """
    base_path: str = "/unique-id-generator"
    pool_size: int = 64
    ttl_millis: int = 60_000

    @classmethod
    def from_env(cls) -> "ClaimDefaults":
        """Create from environment variables."""
        return cls(
            base_path=os.getenv("SLOT_BASE_PATH", "/unique-id-generator"),
            pool_size=int(os.getenv("SLOT_POOL_SIZE", 64)),
            ttl_millis=int(os.getenv("SLOT_TTL_MILLIS", 60_000)),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    coordination: CoordinationDefaults = field(default_factory=CoordinationDefaults)
    claims: ClaimDefaults = field(default_factory=ClaimDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            coordination=CoordinationDefaults.from_env(),
            claims=ClaimDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CoordinationDefaults",
    "ClaimDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
