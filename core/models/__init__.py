# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 05 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Models define SQL metadata via __sql_* ClassVar attributes.
"""

from core.models.claim import (
    ClaimRecord,
    PoolStatus,
    claim_path,
    counter_path,
    queue_path,
)

__all__ = [
    "ClaimRecord",
    "PoolStatus",
    "claim_path",
    "counter_path",
    "queue_path",
]
