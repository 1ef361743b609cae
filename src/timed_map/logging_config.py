"""Structured JSON logging for timed maps.

Provides:
- StructuredJsonFormatter: JSON-line output with store name, listener id and extras
- RotatingFileHandler: 10MB x 5 files to ~/.timed-map/logs/timed_map.jsonl
- Human-readable stderr handler
- contextvars for the active store and the listener being dispatched
- setup_logging_from_settings: the same setup driven by ``Settings``

Nothing here runs on import; applications opt in with ``setup_logging``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, Optional

from timed_map.config import Settings

# ---------------------------------------------------------------------------
# Context via contextvars (async-safe)
# ---------------------------------------------------------------------------
_store_name: contextvars.ContextVar[str] = contextvars.ContextVar(
    "store_name", default=""
)
_listener_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "listener_id", default=""
)


def set_store_name(name: str) -> contextvars.Token:
    """Set the store name for the current context."""
    return _store_name.set(name)


def get_store_name() -> str:
    """Get the store name for the current context."""
    return _store_name.get()


def set_listener_id(listener_id: str) -> contextvars.Token:
    """Mark the subscription currently being dispatched."""
    return _listener_id.set(listener_id)


def reset_store_name(token: contextvars.Token) -> None:
    _store_name.reset(token)


def reset_listener_id(token: contextvars.Token) -> None:
    _listener_id.reset(token)


def get_listener_id() -> str:
    """Get the subscription id currently being dispatched, if any."""
    return _listener_id.get()


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------
class StructuredJsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON (JSONL).

    Output includes:
    - timestamp (ISO 8601)
    - level
    - store (from extra={} or contextvars)
    - listener_id (from contextvars)
    - logger name
    - message
    - Any extra fields passed via `extra={}` in the log call
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S")
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        store = getattr(record, "store", None) or _store_name.get()
        if store:
            log_entry["store"] = store
        lid = _listener_id.get()
        if lid:
            log_entry["listener_id"] = lid

        for key in (
            "event", "event_type", "key", "removed_count",
            "delay_ms", "error_type", "error",
        ):
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_logging(
    log_dir: str = "",
    log_level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
) -> None:
    """Configure structured logging for an application using timed maps.

    - JSON file handler -> ~/.timed-map/logs/timed_map.jsonl
    - Human-readable stderr handler
    """
    if not log_dir:
        log_dir = os.path.expanduser("~/.timed-map/logs")

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file = os.path.join(log_dir, "timed_map.jsonl")

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(StructuredJsonFormatter())
    file_handler.setLevel(logging.DEBUG)
    root.addHandler(file_handler)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    stderr_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.addHandler(stderr_handler)


def setup_logging_from_settings(settings: Optional[Settings] = None) -> None:
    """Run ``setup_logging`` with the log fields of ``settings``.

    Settings are read from the environment when omitted.
    """
    settings = settings or Settings()
    setup_logging(
        log_dir=settings.log_dir,
        log_level=settings.log_level,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )


# ---------------------------------------------------------------------------
# Structured log helpers (used by the driver and the event bus)
# ---------------------------------------------------------------------------
_structured_logger = logging.getLogger("timed_map.structured")


def log_store_event(
    event: str,
    store: str = "",
    *,
    key: Any = None,
    removed_count: Optional[int] = None,
    delay_ms: Optional[float] = None,
) -> None:
    """Log a store lifecycle transition at debug level."""
    if not _structured_logger.isEnabledFor(logging.DEBUG):
        return
    extra: Dict[str, Any] = {"event": event}
    if store:
        extra["store"] = store
    if key is not None:
        extra["key"] = _sanitize_key(key)
    if removed_count is not None:
        extra["removed_count"] = removed_count
    if delay_ms is not None:
        extra["delay_ms"] = round(delay_ms, 1)
    _structured_logger.debug(f"Store event: {event}", extra=extra)


def _sanitize_key(key: Any) -> str:
    """Render a key for logging, trimming very long representations."""
    text = key if isinstance(key, str) else repr(key)
    if len(text) > 200:
        return text[:100] + f"...({len(text)} chars)"
    return text
