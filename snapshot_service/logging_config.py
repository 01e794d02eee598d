# snapshot_service/logging_config.py
"""
Structured JSON logging for the snapshot service.

Context variables carry the database and operation being processed so that
every log line emitted inside a fan-out worker can be correlated, and
log_operation() wraps a unit of work with start/complete/failed events.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variables for correlation
database_var: ContextVar[str | None] = ContextVar("database", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

# Extra record attributes copied into the JSON payload
EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "database",
    "tier",
    "operation",
    "trigger",
    "deleted",
    "failed",
    "items_processed",
    "items_failed",
    "outcome",
    "config",
    "stats",
    "attempt",
)


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "database": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        database = database_var.get()
        if database:
            log_data["database"] = database

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure root logging.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_operation(operation: str, database: str | None = None, level: int = logging.DEBUG):
    """
    Log start and end of an operation with duration.

    Yields a dict the caller can fill with result fields (e.g. "deleted");
    they are attached to the completion record.

    Usage:
        with log_operation("prune_expired", database=db_name) as metrics:
            metrics["deleted"] = prune(...)
    """
    op_token = operation_var.set(operation)
    db_token = database_var.set(database) if database else None

    start_time = time.time()
    logger = logging.getLogger("snapshot_service.operations")
    metrics: dict[str, Any] = {}

    logger.log(level, f"{operation} started", extra={"event": f"{operation}_start"})

    try:
        yield metrics
        duration_ms = int((time.time() - start_time) * 1000)
        logger.log(
            level,
            f"{operation} completed in {duration_ms}ms",
            extra={"event": f"{operation}_complete", "duration_ms": duration_ms, **metrics},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"{operation} failed: {e}",
            extra={"event": f"{operation}_failed", "duration_ms": duration_ms},
            exc_info=True,
        )
        raise
    finally:
        operation_var.reset(op_token)
        if db_token is not None:
            database_var.reset(db_token)
