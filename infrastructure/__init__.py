# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Infrastructure - Coordination backend
# PURPOSE: PostgreSQL-backed coordination sessions and schema deployment
# CREATED: 06 OCT 2026
# ============================================================================
"""
Infrastructure module for the slot coordinator.

Provides:
- CoordinationConnection: session lifecycle, liveness observers
- CoordinationSession: atomic counter / queue / claim record primitives
- render_ddl / deploy_schema: coordination tables

Usage:
    from infrastructure import CoordinationConnection

    connection = CoordinationConnection()
    connection.configure_from_env()
    session = await connection.get()
"""

from infrastructure.coordination import (
    ConnectionObserver,
    CoordinationConnection,
    CoordinationSession,
)
from infrastructure.postgresql import (
    get_connection_string,
    mask_conninfo,
)
from infrastructure.schema import (
    CoordinationTables,
    deploy_schema,
    render_ddl,
)

__all__ = [
    # Coordination
    'ConnectionObserver',
    'CoordinationConnection',
    'CoordinationSession',
    # PostgreSQL
    'get_connection_string',
    'mask_conninfo',
    # Schema
    'CoordinationTables',
    'deploy_schema',
    'render_ddl',
]
