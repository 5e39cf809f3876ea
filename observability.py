"""Structured logging for the meal plan pipeline.

This module provides:
- JSON-lines logging to LOG_DIR (one file per logger, daily rotation)
- A compact stderr console handler for interactive runs
- log_workflow: context manager timing a pipeline stage
- log_data_structure: payload logging with truncation
"""

import json
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

# ============================================================================
# Configuration
# ============================================================================

LOG_DIR = Path(os.getenv("LOG_DIR", "/tmp/mealplan_logs"))
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "7"))
STRUCTURED_LOG_LEVEL = os.getenv("STRUCTURED_LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() in ("1", "true", "yes")
MAX_PAYLOAD_CHARS = 5000

_cleanup_done = False

# ============================================================================
# Formatters
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
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
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """One-line console output: level, logger, message and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"[{record.levelname}] {record.name}: {record.getMessage()}"
        fields = getattr(record, "extra_fields", None)
        if fields:
            rendered = " ".join(f"{key}={value}" for key, value in fields.items())
            line = f"{line} ({rendered})"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ============================================================================
# Logger Setup
# ============================================================================


def _file_handler(name: str) -> Optional[logging.Handler]:
    global _cleanup_done
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"⚠️  Structured log directory unavailable ({exc}), console only", file=sys.stderr)
        return None

    if not _cleanup_done:
        cleanup_old_logs()
        _cleanup_done = True

    handler = logging.handlers.TimedRotatingFileHandler(
        filename=LOG_DIR / f"{name}.jsonl",
        when="midnight",
        interval=1,
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    return handler


def setup_structured_logger(name: str) -> logging.Logger:
    """Set up a structured logger writing JSON lines plus console output.

    Args:
        name: Logger name (e.g., "mealplan.validator", "mealplan.chunks")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, STRUCTURED_LOG_LEVEL, logging.INFO))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    if LOG_TO_FILE:
        handler = _file_handler(name)
        if handler is not None:
            logger.addHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ConsoleFormatter())
    logger.addHandler(console)
    logger.propagate = False

    return logger


def cleanup_old_logs() -> None:
    """Remove log files older than LOG_RETENTION_DAYS."""
    cutoff = datetime.now() - timedelta(days=LOG_RETENTION_DAYS)
    try:
        for log_file in LOG_DIR.glob("*.jsonl*"):
            if log_file.stat().st_mtime < cutoff.timestamp():
                log_file.unlink()
    except OSError as exc:
        print(f"⚠️  Failed to cleanup old logs: {exc}", file=sys.stderr)


# ============================================================================
# Context Managers
# ============================================================================


@contextmanager
def log_workflow(logger: logging.Logger, workflow_name: str, **context):
    """Log start, completion (with duration) and failure of a pipeline stage.

    Example:
        with log_workflow(logger, "chunk_window", start_day=11, end_day=20):
            ...
    """
    start_time = datetime.now(timezone.utc)
    logger.info(
        f"Workflow started: {workflow_name}",
        extra={"extra_fields": {"workflow": workflow_name, "phase": "start", **context}},
    )

    try:
        yield
    except Exception as e:
        duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        logger.error(
            f"Workflow failed: {workflow_name}",
            extra={
                "extra_fields": {
                    "workflow": workflow_name,
                    "phase": "error",
                    "duration_ms": round(duration_ms, 1),
                    "error": str(e),
                    "error_type": type(e).__name__,
                    **context,
                }
            },
        )
        raise

    duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    logger.info(
        f"Workflow completed: {workflow_name}",
        extra={
            "extra_fields": {
                "workflow": workflow_name,
                "phase": "complete",
                "duration_ms": round(duration_ms, 1),
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
    """Log a complex data structure with truncation for large payloads.

    Args:
        logger: Logger instance
        name: Description of the data
        data: Data to log (dict, list, raw model text...)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    log_method = getattr(logger, level.lower())

    if isinstance(data, (dict, list)):
        try:
            serialized = json.dumps(data, indent=2, default=str)
        except (TypeError, ValueError) as e:
            serialized = f"<non-serializable: {type(data).__name__}>"
            logger.warning(f"Failed to serialize {name}: {e}")
    else:
        serialized = str(data)

    if len(serialized) > MAX_PAYLOAD_CHARS:
        log_method(
            f"{name} (truncated)",
            extra={
                "extra_fields": {
                    "data_name": name,
                    "data_preview": serialized[:MAX_PAYLOAD_CHARS]
                    + f"\n... (truncated {len(serialized) - MAX_PAYLOAD_CHARS} chars)",
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
