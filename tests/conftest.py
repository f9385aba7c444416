"""Shared fixtures and fake upstreams for the stream bridge tests."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Iterable, List, Optional

import pytest

from agent_stream_bridge.core import timing_logger
from agent_stream_bridge.core.config import Valves
from agent_stream_bridge.core.logging_system import SessionLogger
from agent_stream_bridge.requests.request_builder import StreamRequest


# -----------------------------------------------------------------------------
# Raw message builders
# -----------------------------------------------------------------------------

def text_delta(text: str) -> dict[str, Any]:
    return {
        "type": "stream_event",
        "event": {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
    }


def thinking_start(thinking: str = "") -> dict[str, Any]:
    return {
        "type": "stream_event",
        "event": {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "thinking", "thinking": thinking},
        },
    }


def thinking_delta(thinking: str) -> dict[str, Any]:
    return {
        "type": "stream_event",
        "event": {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": thinking}},
    }


def tool_use_start(name: str, tool_id: Optional[str] = None, tool_input: Any = None) -> dict[str, Any]:
    block: dict[str, Any] = {"type": "tool_use", "name": name, "input": tool_input or {}}
    if tool_id:
        block["id"] = tool_id
    return {"type": "stream_event", "event": {"type": "content_block_start", "index": 1, "content_block": block}}


def assistant(*blocks: dict[str, Any]) -> dict[str, Any]:
    return {"type": "assistant", "message": {"role": "assistant", "content": list(blocks)}}


def tool_call(name: str, tool_id: Optional[str] = None, tool_input: Any = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "tool_call", "tool_name": name, "input": tool_input}
    if tool_id:
        message["tool_call_id"] = tool_id
    return message


def tool_result(name: str, tool_id: Optional[str] = None, result: Any = None, *, is_error: bool = False) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "tool_result", "tool_name": name, "result": result}
    if tool_id:
        message["tool_call_id"] = tool_id
    if is_error:
        message["is_error"] = True
    return message


def result_success(text: str = "", **extra: Any) -> dict[str, Any]:
    message = {"type": "result", "subtype": "success", "is_error": False, "result": text}
    message.update(extra)
    return message


def result_error(text: str, subtype: str = "error_during_execution") -> dict[str, Any]:
    return {"type": "result", "subtype": subtype, "is_error": True, "result": text}


def system_init(session_id: str) -> dict[str, Any]:
    return {"type": "system", "subtype": "init", "session_id": session_id}


# -----------------------------------------------------------------------------
# Fake upstream
# -----------------------------------------------------------------------------

class Block:
    """Step that parks the upstream until ``release`` is set."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.reached = asyncio.Event()


class FakeUpstream:
    """Scripted upstream.

    ``script`` items are yielded in order, except:
    - exceptions are raised at that point
    - ``Block`` instances park the stream until released
    - coroutine functions are awaited with the native registration (used to
      drive tool hooks the way a native runtime would)
    """

    def __init__(self, script: Iterable[Any] = (), *, supports_native_tools: bool = False) -> None:
        self.script = list(script)
        self.supports_native_tools = supports_native_tools
        self.requests: List[StreamRequest] = []
        self.registrations: List[Any] = []
        self.pulled = 0
        self.closed = False

    async def stream(self, request: StreamRequest, *, native_tools: Any = None) -> AsyncIterator[Any]:
        self.requests.append(request)
        self.registrations.append(native_tools)
        try:
            for item in self.script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, Block):
                    item.reached.set()
                    await item.release.wait()
                    continue
                if inspect.iscoroutinefunction(item):
                    await item(native_tools)
                    continue
                self.pulled += 1
                yield item
        finally:
            self.closed = True


async def collect(events: AsyncIterator[Any]) -> list[Any]:
    return [event async for event in events]


def event_types(events: Iterable[Any]) -> list[str]:
    return [event.type for event in events]


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def valves() -> Valves:
    return Valves(LOG_LEVEL="DEBUG")


@pytest.fixture
def request_obj() -> StreamRequest:
    return StreamRequest(prompt="Hello there")


@pytest.fixture
def test_logger() -> logging.Logger:
    logger = logging.getLogger("agent_stream_bridge.tests")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Keep SessionLogger buffers and timing state from leaking between tests."""
    yield
    with SessionLogger._state_lock:
        SessionLogger.logs.clear()
        SessionLogger._last_seen.clear()
    timing_logger.close_timing_file()
    timing_logger.clear_timing_context()
    with timing_logger._events_lock:
        timing_logger._events.clear()
