# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - EXPIRING SLOT CLAIMS
# STATUS: Core - Structured logging with claim context
# PURPOSE: Consistent, queryable logging across all components
# CREATED: 05 OCT 2026
# UPDATED: 17 OCT 2026 - Context follows asyncio tasks
# ============================================================================
"""
Structured Logging

Every record carries the claim it concerns (pool, slot, claim id, session),
so one slot can be followed from claim to release across processes.

Features:
- Component-based loggers (allocator, monitor, session, admin)
- Claim context held in a ContextVar; each asyncio task sees its own
- JSON output for log aggregation, inline context for development
- Named checkpoints: slot_claimed, slot_relinquished, slot_release_pending

Usage:
    from core.logging import ComponentType, get_logger, log_context

    logger = get_logger(__name__, ComponentType.ALLOCATOR)

    with log_context(base_path="/unique-id-generator", slot_id=7):
        logger.info("Slot claimed")
"""

import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    ALLOCATOR = "allocator"
    MONITOR = "monitor"
    SESSION = "session"
    ADMIN = "admin"


@dataclass(frozen=True)
class LogContext:
    """Claim fields attached to every record logged inside log_context()."""
    base_path: Optional[str] = None
    slot_id: Optional[int] = None
    claim_id: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {key: value for key, value in asdict(self).items() if value is not None}


_current_context: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "slot_log_context", default=LogContext()
)


def get_current_context() -> LogContext:
    return _current_context.get()


@contextmanager
def log_context(**fields):
    """
    Add claim fields to the logging context; nested contexts merge.

    Example:
        with log_context(base_path="/ids", slot_id=3):
            logger.info("Releasing slot")
    """
    token = _current_context.set(replace(_current_context.get(), **fields))
    try:
        yield _current_context.get()
    finally:
        _current_context.reset(token)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class StructuredFormatter(logging.Formatter):
    """JSON formatter; one object per line for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        component = getattr(record, "component", None)
        if component:
            log_data["component"] = component

        context = get_current_context().to_dict()
        if context:
            log_data["context"] = context

        checkpoint = getattr(record, "checkpoint", None)
        if checkpoint:
            log_data["checkpoint"] = checkpoint

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line format for development: claim context inline."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        context = get_current_context()

        parts = []
        if context.base_path:
            parts.append(f"pool={context.base_path}")
        if context.slot_id is not None:
            parts.append(f"slot={context.slot_id}")
        if context.claim_id:
            parts.append(f"claim={context.claim_id[:8]}")
        if context.session_id:
            parts.append(f"session={context.session_id[:8]}")
        context_str = f" [{' '.join(parts)}]" if parts else ""

        component = getattr(record, "component", None)
        name = f"{record.name}/{component}" if component else record.name

        result = f"{timestamp} {record.levelname:<8} {name}{context_str}: {record.getMessage()}"
        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"
        return result


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that tags records with their component."""

    def process(self, msg, kwargs):
        component = self.extra.get("component")
        if component is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "component": component.value}
        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """
    Get a component-tagged logger.

    Args:
        name: Logger name (e.g., "services.lease_monitor")
        component: Component the records are attributed to
    """
    return ContextLogger(logging.getLogger(name), {"component": component})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure root logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format; also enabled by LOG_FORMAT=json
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named checkpoint in the claim lifecycle.

    Args:
        name: Checkpoint name
        data: Optional checkpoint data
        logger: Logger to use (defaults to "checkpoint")
    """
    if logger is None:
        logger = logging.getLogger("checkpoint")

    checkpoint: Dict[str, Any] = {"name": name, **get_current_context().to_dict()}
    if data:
        checkpoint["data"] = data

    logger.info(f"CHECKPOINT: {name}", extra={"checkpoint": checkpoint})


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
