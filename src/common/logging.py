"""Structured logging helpers for the pipeline worker and API."""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key.startswith("_"):
                continue
            base[key] = value

        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(base, default=str, ensure_ascii=True)


def _level_from_env(default: int) -> int:
    name = os.getenv("LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def _ensure_configured(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.setLevel(_level_from_env(level))
    root.addHandler(handler)


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Return a logger that writes JSON to stdout."""
    _ensure_configured(level)
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger


def log_decision(
    logger: logging.Logger,
    *,
    item_id: Optional[str],
    action: str,
    outcome: str,
    **context: Any,
) -> None:
    """Emit a structured decision log (gate verdicts, match results)."""
    logger.info(
        "decision",
        extra={"event": "decision", "item_id": item_id, "action": action, "outcome": outcome, **context},
    )


def log_item(
    logger: logging.Logger,
    event: str,
    *,
    item_id: Optional[str] = None,
    **context: Any,
) -> None:
    """Emit an info log for a raw feedback item lifecycle event."""
    logger.info(event, extra={"event": event, "item_id": item_id, **context})


def log_error(
    logger: logging.Logger,
    message: str,
    *,
    item_id: Optional[str] = None,
    error: Optional[BaseException] = None,
    **context: Any,
) -> None:
    """Emit an error log with optional exception and item correlation."""
    logger.error(
        message,
        extra={"item_id": item_id, **context},
        exc_info=error if error else None,
    )


def log_audit(
    logger: logging.Logger,
    *,
    actor: Optional[str],
    action: str,
    target: Optional[str] = None,
    status: str = "succeeded",
    **context: Any,
) -> None:
    """Emit an audit log for reviewer actions on suggestions."""
    logger.info(
        "audit",
        extra={
            "event": "audit",
            "actor": actor,
            "action": action,
            "target": target,
            "status": status,
            **context,
        },
    )


def log_outcome(
    logger: logging.Logger,
    *,
    item_id: str,
    status: str,
    started_at: float,
    **context: Any,
) -> None:
    """Emit the final record of one pipeline pass, with its wall-clock duration.

    ``started_at`` is a ``time.monotonic()`` reading taken when the pass began.
    Failed passes log at WARNING so they stand out from routine completions.
    """
    duration_ms = round((time.monotonic() - started_at) * 1000, 1)
    level = logging.WARNING if status == "failed" else logging.INFO
    logger.log(
        level,
        "item_outcome",
        extra={
            "event": "item_outcome",
            "item_id": item_id,
            "status": status,
            "duration_ms": duration_ms,
            **context,
        },
    )
