# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 05 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the slot coordinator.
"""

from core.config.defaults import (
    CoordinationDefaults,
    ClaimDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "CoordinationDefaults",
    "ClaimDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
