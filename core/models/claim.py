# ============================================================================
# SLOT CLAIM MODELS
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Claim record and pool status
# PURPOSE: Observability records for claimed slots
# CREATED: 05 OCT 2026
# ============================================================================
"""
Slot Claim Models

ClaimRecord is the coordination-visible trace of a claim. It is written
best-effort on claim and removed on release; the authoritative ownership
lives in the counter and the reuse queue, never in this table.

Key properties:
- Deadline is set once and never extended (claims are one-shot)
- A record past its deadline belongs to a holder that never released
"""

from datetime import datetime, timedelta, timezone
from typing import ClassVar, List, Optional

from pydantic import BaseModel, Field, computed_field


def claim_path(base_path: str, slot_id: int) -> str:
    """Coordination path of the claim record for a slot."""
    return f"{base_path}/claims/{slot_id}"


def counter_path(base_path: str) -> str:
    """Coordination path of the growth counter for a pool."""
    return f"{base_path}/pool/counter"


def queue_path(base_path: str) -> str:
    """Coordination path of the reuse queue for a pool."""
    return f"{base_path}/queue"


class ClaimRecord(BaseModel):
    """
    Claim record for a live slot.

    Table: slotcoord.slot_claims
    """

    # SQL DDL Metadata
    __sql_table__: ClassVar[str] = "slot_claims"
    __sql_primary_key__: ClassVar[List[str]] = ["path"]

    base_path: str = Field(..., max_length=255, description="Pool namespace")
    slot_id: int = Field(..., ge=0, description="Claimed slot")
    claim_id: str = Field(..., max_length=64, description="UUID of the claim")
    owner_id: str = Field(..., max_length=64, description="Session id of the claimant")
    claimed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the slot was claimed",
    )
    deadline: datetime = Field(..., description="When the claim is relinquished")

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "base_path": "/unique-id-generator",
                    "slot_id": 7,
                    "claim_id": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
                    "owner_id": "0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0",
                    "claimed_at": "2026-10-17T12:00:00Z",
                    "deadline": "2026-10-17T12:01:00Z",
                }
            ]
        },
    }

    @computed_field
    @property
    def path(self) -> str:
        """Coordination path of this record."""
        return claim_path(self.base_path, self.slot_id)

    @classmethod
    def for_claim(
        cls,
        base_path: str,
        slot_id: int,
        claim_id: str,
        owner_id: str,
        ttl_millis: int,
        now: Optional[datetime] = None,
    ) -> "ClaimRecord":
        """Build a record whose deadline is now + ttl."""
        now = now or datetime.now(timezone.utc)
        return cls(
            base_path=base_path,
            slot_id=slot_id,
            claim_id=claim_id,
            owner_id=owner_id,
            claimed_at=now,
            deadline=now + timedelta(milliseconds=ttl_millis),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the record outlived its deadline.

        Args:
            now: Current time (defaults to UTC now)

        Returns:
            True if deadline < now
        """
        if now is None:
            now = datetime.now(timezone.utc)
        return now > self.deadline


class PoolStatus(BaseModel):
    """Point-in-time view of one slot pool."""

    base_path: str
    pool_size: int = Field(..., gt=0)
    counter: int = Field(0, ge=0, description="Slots ever issued by growth")
    queued: int = Field(0, ge=0, description="Relinquished slots awaiting reuse")
    live_claims: int = Field(0, ge=0, description="Claim records within their deadline")
    stale_claims: int = Field(0, ge=0, description="Claim records past their deadline")

    @computed_field
    @property
    def free_capacity(self) -> int:
        """Slots a new claim could still obtain."""
        return max(self.pool_size - self.counter, 0) + self.queued

    @computed_field
    @property
    def exhausted(self) -> bool:
        return self.free_capacity == 0


__all__ = [
    "ClaimRecord",
    "PoolStatus",
    "claim_path",
    "counter_path",
    "queue_path",
]
