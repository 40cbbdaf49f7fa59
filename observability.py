"""Structured logging for the meal planning service.

This module provides:
- JSON log records (one object per line) under LOG_DIR
- Daily rotation with configurable retention
- log_workflow: start / complete / failed records with duration
- log_data_structure: truncated dumps of plans and payloads
"""

import json
import logging
import logging.handlers
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel

# ============================================================================
# Configuration
# ============================================================================

LOG_DIR = Path(os.getenv("LOG_DIR", "/tmp/meal_plan_logs"))
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "7"))
STRUCTURED_LOG_LEVEL = os.getenv("STRUCTURED_LOG_LEVEL", "INFO").upper()
MAX_LOGGED_PAYLOAD_CHARS = 5000

# ============================================================================
# JSON Formatter
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Custom fields passed via extra={"extra_fields": {...}}
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str)


# ============================================================================
# Logger Setup
# ============================================================================


def setup_structured_logger(name: str) -> logging.Logger:
    """Set up a logger that writes JSON lines to ``LOG_DIR/{name}.jsonl``.

    Args:
        name: Logger name (e.g., "meal_plan.pipeline")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, STRUCTURED_LOG_LEVEL, logging.INFO))

    if any(isinstance(h, logging.handlers.TimedRotatingFileHandler) for h in logger.handlers):
        return logger

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=LOG_DIR / f"{name}.jsonl",
        when="midnight",
        interval=1,
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    return logger


# ============================================================================
# Context Managers
# ============================================================================


@contextmanager
def log_workflow(logger: logging.Logger, workflow_name: str, **context: Any) -> Iterator[None]:
    """Log the start, completion or failure of a unit of work.

    Example:
        with log_workflow(logger, "week_generation", session_id=session_id):
            ...
    """
    started = time.perf_counter()
    logger.info(
        "Workflow started: %s",
        workflow_name,
        extra={"extra_fields": {"workflow": workflow_name, "phase": "start", **context}},
    )

    try:
        yield
    except Exception as exc:
        logger.error(
            "Workflow failed: %s",
            workflow_name,
            extra={
                "extra_fields": {
                    "workflow": workflow_name,
                    "phase": "error",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    **context,
                }
            },
            exc_info=True,
        )
        raise

    logger.info(
        "Workflow completed: %s",
        workflow_name,
        extra={
            "extra_fields": {
                "workflow": workflow_name,
                "phase": "complete",
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                **context,
            }
        },
    )


# ============================================================================
# Helper Functions
# ============================================================================


def log_data_structure(
    logger: logging.Logger,
    name: str,
    data: Any,
    level: str = "DEBUG",
) -> None:
    """Log a plan, payload or other structure, truncated when large.

    Args:
        logger: Logger instance
        name: Description of the data
        data: pydantic model, dict, list or anything with a str()
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    log_method = getattr(logger, level.lower())

    if isinstance(data, BaseModel):
        serialized = data.model_dump_json(by_alias=True, indent=2)
    elif isinstance(data, (dict, list)):
        serialized = json.dumps(data, indent=2, default=str)
    else:
        serialized = str(data)

    if len(serialized) > MAX_LOGGED_PAYLOAD_CHARS:
        log_method(
            "%s (truncated)",
            name,
            extra={
                "extra_fields": {
                    "data_name": name,
                    "data_preview": serialized[:MAX_LOGGED_PAYLOAD_CHARS],
                    "full_size": len(serialized),
                    "truncated": True,
                }
            },
        )
    else:
        log_method(
            name,
            extra={"extra_fields": {"data_name": name, "data": serialized, "truncated": False}},
        )
