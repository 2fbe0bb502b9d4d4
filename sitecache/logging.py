from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variable for the refresh pass currently running on this task
sync_cycle_id_var: ContextVar[Optional[str]] = ContextVar("sync_cycle_id", default=None)


def get_sync_cycle_id() -> Optional[str]:
    """Get the identifier of the refresh pass running in this context."""
    return sync_cycle_id_var.get()


def set_sync_cycle_id(cycle_id: Optional[str] = None) -> str:
    """Set or generate a refresh pass identifier for the current context."""
    cid = cycle_id or uuid.uuid4().hex[:12]
    sync_cycle_id_var.set(cid)
    return cid


def _add_sync_cycle_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to add sync_cycle_id to log entries emitted during a refresh."""
    cid = get_sync_cycle_id()
    if cid:
        event_dict["sync_cycle_id"] = cid
    return event_dict


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to redact bearer tokens and credentials from log entries."""
    secret_keys = {"password", "secret", "token", "authorization", "bearer"}
    for key in list(event_dict.keys()):
        lower_key = key.lower()
        if any(secret in lower_key for secret in secret_keys):
            if isinstance(event_dict[key], str) and len(event_dict[key]) > 4:
                # Keep first/last 2 chars for debugging
                event_dict[key] = event_dict[key][:2] + "***" + event_dict[key][-2:]
    return event_dict


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_sync_cycle_id,
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Initialize logging on module import
_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
_json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}
_dev_mode = os.getenv("LOG_DEV_MODE", "false").lower() in {"1", "true", "yes", "on"}

_configure_structlog(
    log_level=_log_level,
    json_output=_json_output,
    development_mode=_dev_mode,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger; entries carry the refresh pass id when set."""
    return structlog.get_logger(name)


def log_refresh_report(report: Any, logger: Optional[Any] = None) -> None:
    """Log the outcome of a refresh pass: applied, skipped, stale, failed."""
    log = logger or get_logger("sync")
    log.info(
        "refresh_report",
        applied=list(report.applied),
        skipped=list(report.skipped),
        stale=list(report.stale),
        failed=list(report.failed),
    )
