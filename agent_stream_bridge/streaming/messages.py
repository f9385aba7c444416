"""Raw upstream message model and classifier.

Every message pulled from the upstream agent service passes through
``classify_message`` exactly once. The classifier converts loosely shaped
payloads (dicts, JSON strings, anything else) into one frozen ``RawMessage``
variant; downstream code only ever dispatches on those variants.

Malformed input never raises: anything that cannot be classified becomes
``Unrecognized`` with a short reason.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..core.config import _UNKNOWN_TOOL_NAME
from ..core.timing_logger import timed
from ..core.utils import _first_str, _normalize_optional_str

LOGGER = logging.getLogger(__name__)

_INFORMATIONAL_KINDS = frozenset({"user", "auth_status", "tool_use_summary"})


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", arbitrary_types_allowed=True)


# -----------------------------------------------------------------------------
# Stream sub-events
# -----------------------------------------------------------------------------

class ContentBlock(_Frozen):
    """A content block as announced by ``content_block_start`` or an assistant message."""

    type: str
    text: Optional[str] = None
    thinking: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    input: Any = None


class ContentBlockStart(_Frozen):
    event: Literal["content_block_start"] = "content_block_start"
    index: Optional[int] = None
    block: Optional[ContentBlock] = None


class ContentBlockDelta(_Frozen):
    event: Literal["content_block_delta"] = "content_block_delta"
    index: Optional[int] = None
    delta_type: Optional[str] = None
    text: Optional[str] = None
    thinking: Optional[str] = None
    partial_json: Optional[str] = None


class ContentBlockStop(_Frozen):
    event: Literal["content_block_stop"] = "content_block_stop"
    index: Optional[int] = None


class OtherSubEvent(_Frozen):
    """Sub-events the bridge does not act on (message_start, message_delta, ...)."""

    event: str = ""


SubEvent = Union[ContentBlockStart, ContentBlockDelta, ContentBlockStop, OtherSubEvent]


# -----------------------------------------------------------------------------
# Raw message variants
# -----------------------------------------------------------------------------

class StreamEvent(_Frozen):
    kind: Literal["stream_event"] = "stream_event"
    sub_event: SubEvent


class AssistantMessage(_Frozen):
    kind: Literal["assistant"] = "assistant"
    blocks: tuple[ContentBlock, ...] = ()


class Result(_Frozen):
    """Terminal message carrying the outcome, usage and elapsed time."""

    kind: Literal["result"] = "result"
    success: bool
    subtype: Optional[str] = None
    result: Optional[str] = None
    error: Any = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_cost_usd: Optional[float] = None
    duration_ms: Optional[float] = None


class ToolCall(_Frozen):
    kind: Literal["tool_call"] = "tool_call"
    tool_name: str = _UNKNOWN_TOOL_NAME
    tool_call_id: Optional[str] = None
    input: Any = None


class ToolResult(_Frozen):
    kind: Literal["tool_result"] = "tool_result"
    tool_name: str = _UNKNOWN_TOOL_NAME
    tool_call_id: Optional[str] = None
    result: Any = None
    is_error: bool = False


class ToolProgress(_Frozen):
    kind: Literal["tool_progress"] = "tool_progress"
    tool_name: str = _UNKNOWN_TOOL_NAME
    tool_call_id: Optional[str] = None
    elapsed_seconds: Optional[float] = None


class SystemEvent(_Frozen):
    """System and informational messages (init, status, user echo, auth status)."""

    kind: Literal["system"] = "system"
    subtype: Optional[str] = None
    session_id: Optional[str] = None
    status: Any = None


class ErrorEvent(_Frozen):
    kind: Literal["error"] = "error"
    error: Any = None


class Unrecognized(_Frozen):
    kind: Literal["unrecognized"] = "unrecognized"
    reason: str
    payload: Any = None


RawMessage = Union[
    StreamEvent,
    AssistantMessage,
    Result,
    ToolCall,
    ToolResult,
    ToolProgress,
    SystemEvent,
    ErrorEvent,
    Unrecognized,
]


# -----------------------------------------------------------------------------
# Classifier
# -----------------------------------------------------------------------------

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _tool_name(payload: Mapping[str, Any]) -> str:
    return _first_str(payload, "tool_name", "name") or _UNKNOWN_TOOL_NAME


def _tool_call_id(payload: Mapping[str, Any]) -> Optional[str]:
    return _first_str(payload, "tool_call_id", "tool_use_id", "id")


def _parse_block(raw: Any) -> Optional[ContentBlock]:
    if not isinstance(raw, dict):
        return None
    block_type = _normalize_optional_str(raw.get("type"))
    if not block_type:
        return None
    text = raw.get("text")
    thinking = raw.get("thinking")
    return ContentBlock(
        type=block_type,
        text=text if isinstance(text, str) else None,
        thinking=thinking if isinstance(thinking, str) else None,
        id=_normalize_optional_str(raw.get("id")),
        name=_normalize_optional_str(raw.get("name")),
        input=raw.get("input"),
    )


def _parse_sub_event(raw: Any) -> Optional[SubEvent]:
    if not isinstance(raw, dict):
        return None
    event_type = raw.get("type")
    if not isinstance(event_type, str) or not event_type:
        return None
    index = _as_int(raw.get("index"))
    if event_type == "content_block_start":
        return ContentBlockStart(index=index, block=_parse_block(raw.get("content_block")))
    if event_type == "content_block_delta":
        delta = raw.get("delta")
        if not isinstance(delta, dict):
            delta = {}
        text = delta.get("text")
        thinking = delta.get("thinking")
        partial_json = delta.get("partial_json")
        return ContentBlockDelta(
            index=index,
            delta_type=_normalize_optional_str(delta.get("type")),
            text=text if isinstance(text, str) else None,
            thinking=thinking if isinstance(thinking, str) else None,
            partial_json=partial_json if isinstance(partial_json, str) else None,
        )
    if event_type == "content_block_stop":
        return ContentBlockStop(index=index)
    return OtherSubEvent(event=event_type)


def _first_model_usage(payload: Mapping[str, Any]) -> tuple[Optional[int], Optional[int]]:
    """Return (input, output) tokens from the first modelUsage entry, else from usage."""
    model_usage = payload.get("modelUsage")
    if isinstance(model_usage, dict):
        for entry in model_usage.values():
            if isinstance(entry, dict):
                return _as_int(entry.get("inputTokens")), _as_int(entry.get("outputTokens"))
            break
    usage = payload.get("usage")
    if isinstance(usage, dict):
        return _as_int(usage.get("input_tokens")), _as_int(usage.get("output_tokens"))
    return None, None


def _parse_result(payload: Mapping[str, Any]) -> Result:
    subtype = _normalize_optional_str(payload.get("subtype"))
    is_error = payload.get("is_error") is True
    success = subtype == "success" and not is_error
    raw_result = payload.get("result")
    input_tokens, output_tokens = _first_model_usage(payload)
    error: Any = None
    if not success:
        errors = payload.get("errors")
        if isinstance(raw_result, str) and raw_result.strip():
            error = raw_result
        elif isinstance(errors, list) and errors:
            error = "; ".join(str(item) for item in errors) if all(isinstance(e, str) for e in errors) else errors
        elif payload.get("error") is not None:
            error = payload.get("error")
    return Result(
        success=success,
        subtype=subtype,
        result=raw_result if isinstance(raw_result, str) else None,
        error=error,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_cost_usd=_as_float(payload.get("total_cost_usd")),
        duration_ms=_as_float(payload.get("duration_ms")),
    )


@timed
def classify_message(raw: Any) -> RawMessage:
    """Convert one upstream payload into its ``RawMessage`` variant.

    Accepts dicts and JSON-encoded strings; the discriminator is read from
    ``type`` and falls back to ``kind``. Everything else is ``Unrecognized``.
    """
    payload = raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError:
            return Unrecognized(reason="invalid JSON", payload=raw)
    if not isinstance(payload, dict):
        return Unrecognized(reason=f"not an object ({type(payload).__name__})", payload=payload)

    kind = _normalize_optional_str(payload.get("type")) or _normalize_optional_str(payload.get("kind"))
    if not kind:
        return Unrecognized(reason="missing discriminator", payload=payload)

    if kind == "stream_event":
        sub_event = _parse_sub_event(payload.get("event"))
        if sub_event is None:
            return Unrecognized(reason="stream_event without sub-event", payload=payload)
        return StreamEvent(sub_event=sub_event)

    if kind == "assistant":
        message = payload.get("message")
        content = message.get("content") if isinstance(message, dict) else payload.get("content")
        blocks: list[ContentBlock] = []
        if isinstance(content, list):
            for item in content:
                block = _parse_block(item)
                if block is not None:
                    blocks.append(block)
        return AssistantMessage(blocks=tuple(blocks))

    if kind == "result":
        return _parse_result(payload)

    if kind == "tool_call":
        return ToolCall(
            tool_name=_tool_name(payload),
            tool_call_id=_tool_call_id(payload),
            input=payload.get("input"),
        )

    if kind == "tool_result":
        result = payload.get("result")
        if result is None and "content" in payload:
            result = payload.get("content")
        return ToolResult(
            tool_name=_tool_name(payload),
            tool_call_id=_tool_call_id(payload),
            result=result,
            is_error=payload.get("is_error") is True,
        )

    if kind == "tool_progress":
        return ToolProgress(
            tool_name=_tool_name(payload),
            tool_call_id=_tool_call_id(payload),
            elapsed_seconds=_as_float(payload.get("elapsed_time_seconds")),
        )

    if kind == "system":
        return SystemEvent(
            subtype=_normalize_optional_str(payload.get("subtype")),
            session_id=_normalize_optional_str(payload.get("session_id")),
            status=payload.get("status"),
        )

    if kind in _INFORMATIONAL_KINDS:
        return SystemEvent(subtype=kind)

    if kind == "error":
        return ErrorEvent(error=payload.get("error"))

    return Unrecognized(reason=f"unknown type {kind!r}", payload=payload)
