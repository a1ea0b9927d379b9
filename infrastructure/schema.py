# ============================================================================
# COORDINATION SCHEMA
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Infrastructure - DDL for counter, queue and claim tables
# PURPOSE: Render and deploy the coordination tables
# CREATED: 06 OCT 2026
# UPDATED: 17 OCT 2026 - slot_releases table
# ============================================================================
"""
Coordination Schema

Four tables realise the coordination namespace:

    {base}/pool/counter   -> slot_counters  (one row per pool)
    {base}/queue/*        -> slot_queue     (one row per relinquished slot)
    {base}/claims/{slot}  -> slot_claims    (one row per live claim)
    release markers       -> slot_releases  (one row per released claim)

A release marker is written in the same statement that queues a slot. It
makes every release conditional on the claim id, so a retried release of the
same claim is a no-op even after the slot has been handed out again.

All DDL is idempotent (IF NOT EXISTS) and safe to run on every deploy.
"""

import logging
import re
from dataclasses import dataclass
from typing import List

from psycopg import sql

from core.models import ClaimRecord

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")

TABLE_COUNTERS = "slot_counters"
TABLE_QUEUE = "slot_queue"
TABLE_CLAIMS = ClaimRecord.__sql_table__
TABLE_RELEASES = "slot_releases"


@dataclass(frozen=True)
class CoordinationTables:
    """Table identifiers for one schema - use with sql.SQL().format()."""
    schema: str
    counters: sql.Identifier
    queue: sql.Identifier
    claims: sql.Identifier
    releases: sql.Identifier

    @classmethod
    def for_schema(cls, schema: str) -> "CoordinationTables":
        validate_schema_name(schema)
        return cls(
            schema=schema,
            counters=sql.Identifier(schema, TABLE_COUNTERS),
            queue=sql.Identifier(schema, TABLE_QUEUE),
            claims=sql.Identifier(schema, TABLE_CLAIMS),
            releases=sql.Identifier(schema, TABLE_RELEASES),
        )


def validate_schema_name(schema: str) -> str:
    """Reject schema names that are not plain lowercase identifiers."""
    if not _IDENTIFIER.match(schema or ""):
        raise ValueError(f"Invalid schema name: {schema!r}")
    return schema


def render_ddl(schema: str) -> List[str]:
    """
    Render the DDL statements for the coordination tables.

    Args:
        schema: Target schema (validated identifier)

    Returns:
        Ordered list of SQL statements
    """
    s = validate_schema_name(schema)
    return [
        f"CREATE SCHEMA IF NOT EXISTS {s}",
        f"""CREATE TABLE IF NOT EXISTS {s}.{TABLE_COUNTERS} (
    path TEXT PRIMARY KEY,
    value INTEGER NOT NULL DEFAULT 0 CHECK (value >= 0),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)""",
        f"""CREATE TABLE IF NOT EXISTS {s}.{TABLE_QUEUE} (
    entry_id BIGSERIAL PRIMARY KEY,
    queue_path TEXT NOT NULL,
    slot_id INTEGER NOT NULL CHECK (slot_id >= 0),
    enqueued_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (queue_path, slot_id)
)""",
        f"CREATE INDEX IF NOT EXISTS idx_{TABLE_QUEUE}_fifo ON {s}.{TABLE_QUEUE} (queue_path, entry_id)",
        f"""CREATE TABLE IF NOT EXISTS {s}.{TABLE_CLAIMS} (
    path TEXT PRIMARY KEY,
    base_path TEXT NOT NULL,
    slot_id INTEGER NOT NULL CHECK (slot_id >= 0),
    claim_id VARCHAR(64) NOT NULL,
    owner_id VARCHAR(64) NOT NULL,
    claimed_at TIMESTAMPTZ NOT NULL,
    deadline TIMESTAMPTZ NOT NULL
)""",
        f"CREATE INDEX IF NOT EXISTS idx_{TABLE_CLAIMS}_base_path ON {s}.{TABLE_CLAIMS} (base_path)",
        f"""CREATE TABLE IF NOT EXISTS {s}.{TABLE_RELEASES} (
    claim_id VARCHAR(64) PRIMARY KEY,
    base_path TEXT NOT NULL,
    slot_id INTEGER NOT NULL CHECK (slot_id >= 0),
    released_at TIMESTAMPTZ NOT NULL DEFAULT now()
)""",
        f"CREATE INDEX IF NOT EXISTS idx_{TABLE_RELEASES}_age ON {s}.{TABLE_RELEASES} (base_path, released_at)",
    ]


async def deploy_schema(pool, schema: str) -> int:
    """
    Execute the coordination DDL.

    Args:
        pool: Open AsyncConnectionPool
        schema: Target schema

    Returns:
        Number of statements executed
    """
    statements = render_ddl(schema)
    async with pool.connection() as conn:
        async with conn.transaction():
            for statement in statements:
                await conn.execute(sql.SQL(statement))
    logger.info(f"Deployed coordination schema {schema} ({len(statements)} statements)")
    return len(statements)


__all__ = [
    "CoordinationTables",
    "TABLE_COUNTERS",
    "TABLE_QUEUE",
    "TABLE_CLAIMS",
    "validate_schema_name",
    "render_ddl",
    "deploy_schema",
]
