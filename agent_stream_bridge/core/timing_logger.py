"""Function timing instrumentation for stream sessions.

Provides:
- @timed decorator recording entrance/exit of sync and async callables
- timing_scope() context manager for code blocks
- timing_mark() for point-in-time events
- Optional JSONL file output (configured via the TIMING_LOG_FILE valve)

Timing is scoped to a request through contextvars, so a session that did not
enable it pays only a single ContextVar lookup per instrumented call.

Usage:
    from .core.timing_logger import timed, timing_scope, timing_mark

    @timed
    async def consume():
        with timing_scope("upstream_pull"):
            ...
        timing_mark("first_message")
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import threading
import time
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, TextIO, TypeVar

_PACKAGE_PREFIX = "agent_stream_bridge."
MAX_TIMING_EVENTS = 5000

_file_lock = threading.Lock()
_file_handle: Optional[TextIO] = None
_file_path: Optional[Path] = None

_events_lock = threading.Lock()
_events: Dict[str, Deque[Dict[str, Any]]] = {}

_timing_enabled: ContextVar[bool] = ContextVar("timing_enabled", default=False)
_timing_request_id: ContextVar[Optional[str]] = ContextVar("timing_request_id", default=None)


def _record(kind: str, label: str, elapsed_ms: Optional[float] = None) -> None:
    """Store one timing record for the active request and mirror it to the file."""
    request_id = _timing_request_id.get()
    if not request_id:
        return
    record: Dict[str, Any] = {
        "ts": round(time.time(), 6),
        "perf_ts": round(time.perf_counter(), 6),
        "event": kind,
        "label": label,
        "request_id": request_id,
    }
    if elapsed_ms is not None:
        record["elapsed_ms"] = round(elapsed_ms, 3)

    with _events_lock:
        bucket = _events.get(request_id)
        if bucket is None:
            bucket = deque(maxlen=MAX_TIMING_EVENTS)
            _events[request_id] = bucket
        bucket.append(record)

    with _file_lock:
        if _file_handle is None:
            return
        try:
            _file_handle.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n")
            _file_handle.flush()
        except OSError:
            # A full disk must not break the stream.
            pass


def configure_timing_file(file_path: str) -> bool:
    """Open (or re-open) the JSONL timing file. Returns False when it cannot be opened."""
    global _file_handle, _file_path
    path = Path(file_path)
    with _file_lock:
        if _file_handle is not None and _file_path == path:
            return True
        if _file_handle is not None:
            _file_handle.close()
            _file_handle = None
            _file_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            _file_handle = open(path, "a", encoding="utf-8")
        except OSError:
            return False
        _file_path = path
        return True


def close_timing_file() -> None:
    """Close the timing file; safe to call repeatedly."""
    global _file_handle, _file_path
    with _file_lock:
        if _file_handle is not None:
            _file_handle.close()
        _file_handle = None
        _file_path = None


def set_timing_context(request_id: str, enabled: bool) -> None:
    """Enable or disable timing for the current request context."""
    _timing_request_id.set(request_id)
    _timing_enabled.set(enabled)


def clear_timing_context() -> None:
    _timing_request_id.set(None)
    _timing_enabled.set(False)


def get_timing_events(request_id: str) -> List[Dict[str, Any]]:
    with _events_lock:
        bucket = _events.get(request_id)
        return list(bucket) if bucket else []


def clear_timing_events(request_id: str) -> None:
    with _events_lock:
        _events.pop(request_id, None)


def timing_mark(label: str) -> None:
    """Record a point-in-time event (e.g. first upstream message)."""
    if not _timing_enabled.get():
        return
    _record("mark", label)


@contextmanager
def timing_scope(label: str):
    """Record enter/exit events with elapsed time around a block."""
    if not _timing_enabled.get():
        yield
        return
    started = time.perf_counter()
    _record("enter", label)
    try:
        yield
    finally:
        _record("exit", label, (time.perf_counter() - started) * 1000)


F = TypeVar("F", bound=Callable[..., Any])


def _label_for(func: Callable[..., Any]) -> str:
    module = getattr(func, "__module__", "") or ""
    if module.startswith(_PACKAGE_PREFIX):
        module = module[len(_PACKAGE_PREFIX) :]
    qualname = getattr(func, "__qualname__", "") or getattr(func, "__name__", "unknown")
    return f"{module}.{qualname}" if module else qualname


def timed(func: F) -> F:
    """Record entrance/exit of ``func`` under its module-qualified name.

    Async generator functions are returned untouched: their body runs lazily
    on iteration, so wrapping the call would only time generator creation.
    """
    if inspect.isasyncgenfunction(func):
        return func
    label = _label_for(func)

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _timing_enabled.get():
                return await func(*args, **kwargs)
            started = time.perf_counter()
            _record("enter", label)
            try:
                return await func(*args, **kwargs)
            finally:
                _record("exit", label, (time.perf_counter() - started) * 1000)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        if not _timing_enabled.get():
            return func(*args, **kwargs)
        started = time.perf_counter()
        _record("enter", label)
        try:
            return func(*args, **kwargs)
        finally:
            _record("exit", label, (time.perf_counter() - started) * 1000)

    return sync_wrapper  # type: ignore[return-value]
