# ============================================================================
# POSTGRESQL CONNECTION SETTINGS
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Infrastructure - PostgreSQL connection string handling
# PURPOSE: Resolve the coordination backend address from the environment
# CREATED: 06 OCT 2026
# ============================================================================
"""
PostgreSQL Connection Settings

The coordination service is a PostgreSQL database. Its address is resolved
from the environment when a CoordinationConnection is not configured
explicitly.

Priority:
1. DATABASE_URL environment variable
2. Individual POSTGRES_* components
"""

import logging
import os

logger = logging.getLogger(__name__)


def get_connection_string() -> str:
    """
    Get database connection string from environment.

    Returns:
        PostgreSQL connection string
    """
    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "require")

    logger.debug(f"Connection string built from POSTGRES_* for {host}:{port}/{name}")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def mask_conninfo(conninfo: str) -> str:
    """
    Strip credentials from a connection string for logging.

    Args:
        conninfo: URL or key-value connection string

    Returns:
        Connection string safe to log
    """
    if "@" in conninfo:
        # URL format
        return conninfo.split("@")[-1]
    if "password=" in conninfo:
        # Key-value format
        parts = [
            "password=***" if part.startswith("password=") else part
            for part in conninfo.split()
        ]
        return " ".join(parts)
    return conninfo


__all__ = ["get_connection_string", "mask_conninfo"]
