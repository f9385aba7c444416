"""Logging system with per-session log capture.

This module handles all logging-related functionality:
- SessionLogger: per-request logger with context-aware buffering
- Log event classification and formatting
- Explicit cleanup of request buffers once a stream finishes

The SessionLogger uses contextvars to track the session key and request id, so
concurrent streams on one event loop keep their log lines apart.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
import traceback
from collections import deque
from contextvars import ContextVar
from typing import Any, Dict, Optional

from .timing_logger import timed

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# SessionLogger Class
# -----------------------------------------------------------------------------

class SessionLogger:
    """Per-request logger that writes console lines and keeps an in-memory buffer.

    The logger tracks identifiers via contextvars:
    - session_key: caller-chosen key of the stream session (e.g. a conversation id).
    - request_id:  per-run unique id used to key the in-memory log buffer.
    - log_level:   minimum level written to the console for this request.

    Buffers are removed explicitly with ``discard`` (or ``cleanup`` for stale
    entries) once a session has finished.
    """

    session_key: ContextVar[Optional[str]] = ContextVar("session_key", default=None)
    request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
    log_level: ContextVar[int] = ContextVar("log_level", default=logging.INFO)
    max_lines: int = 2000
    logs: Dict[str, deque[dict[str, Any]]] = {}
    _last_seen: Dict[str, float] = {}
    _state_lock = threading.Lock()
    _console_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | session=%(session_key)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @staticmethod
    def _classify_event_type(message: str) -> str:
        msg = (message or "").lstrip()
        if msg.startswith("Upstream message:"):
            return "upstream.message"
        if msg.startswith("Upstream request"):
            return "upstream.request"
        if msg.startswith("Tool ") or msg.startswith("Skipping "):
            return "bridge.tools"
        if msg.startswith("Session "):
            return "bridge.session"
        return "bridge"

    @classmethod
    def _build_event(cls, record: logging.LogRecord) -> dict[str, Any]:
        """Return a structured log event extracted from a LogRecord."""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(getattr(record, "msg", "") or "")

        event: dict[str, Any] = {
            "created": float(getattr(record, "created", time.time())),
            "level": str(getattr(record, "levelname", "INFO") or "INFO"),
            "logger": str(getattr(record, "name", "") or ""),
            "request_id": getattr(record, "request_id", None),
            "session_key": getattr(record, "session_key", None),
            "event_type": cls._classify_event_type(message),
            "func": str(getattr(record, "funcName", "") or ""),
            "lineno": int(getattr(record, "lineno", 0) or 0),
            "message": message,
        }
        exc_info = getattr(record, "exc_info", None)
        if exc_info and exc_info[0] is not None:
            event["exception"] = {"text": "".join(traceback.format_exception(*exc_info))}
        return event

    @classmethod
    def format_event_as_text(cls, event: dict[str, Any]) -> str:
        """Render a buffered event as one line for debug dumps."""
        created = event.get("created")
        if not isinstance(created, (int, float)):
            created = time.time()
        base = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(created))
        msecs = int((created - int(created)) * 1000)
        level = str(event.get("level") or "INFO")
        key = str(event.get("session_key") or "-")
        return f"{base},{msecs:03d} [{level}] [session={key}] {event.get('message') or ''}"

    @classmethod
    def get_logger(cls, name: str = __name__) -> logging.Logger:
        """Create a logger wired to the current SessionLogger context.

        The returned logger writes to stdout (respecting the per-request level)
        and to ``SessionLogger.logs`` keyed by the current request id. Records
        still propagate so host applications keep their own handlers.
        """
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.filters.clear()
        logger.setLevel(logging.DEBUG)
        logger.propagate = True

        def _attach_context(record: logging.LogRecord) -> bool:
            record.session_key = cls.session_key.get() or "-"
            record.request_id = cls.request_id.get()
            record.session_log_level = cls.log_level.get()
            return True

        logger.addFilter(_attach_context)

        handler = logging.Handler()
        handler.emit = cls.process_record  # type: ignore[assignment]
        logger.addHandler(handler)
        return logger

    @classmethod
    def set_max_lines(cls, value: int) -> None:
        """Set the maximum in-memory lines retained per request."""
        cls.max_lines = max(100, min(200000, int(value)))

    @classmethod
    def process_record(cls, record: logging.LogRecord) -> None:
        session_log_level = getattr(record, "session_log_level", logging.INFO)
        if record.levelno >= int(session_log_level):
            try:
                sys.stdout.write(cls._console_formatter.format(record) + "\n")
                sys.stdout.flush()
            except (OSError, ValueError):
                # Closed stdout must not break the stream.
                pass
        request_id = getattr(record, "request_id", None)
        if not request_id:
            return
        event = cls._build_event(record)
        with cls._state_lock:
            buffer = cls.logs.get(request_id)
            if buffer is None or buffer.maxlen != cls.max_lines:
                buffer = deque(buffer or (), maxlen=cls.max_lines)
                cls.logs[request_id] = buffer
            buffer.append(event)
            cls._last_seen[request_id] = time.time()

    @classmethod
    def logs_for(cls, request_id: str) -> list[dict[str, Any]]:
        with cls._state_lock:
            buffer = cls.logs.get(request_id)
            return list(buffer) if buffer else []

    @classmethod
    def discard(cls, request_id: str) -> None:
        with cls._state_lock:
            cls.logs.pop(request_id, None)
            cls._last_seen.pop(request_id, None)

    @classmethod
    @timed
    def cleanup(cls, max_age_seconds: float = 3600) -> None:
        """Remove stale request buffers to avoid unbounded growth."""
        cutoff = time.time() - max_age_seconds
        with cls._state_lock:
            stale = [rid for rid, ts in cls._last_seen.items() if ts < cutoff]
            for rid in stale:
                cls.logs.pop(rid, None)
                cls._last_seen.pop(rid, None)
