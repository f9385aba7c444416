"""Tests for the raw message classifier."""

from __future__ import annotations

import json

import pytest

from agent_stream_bridge.streaming.messages import (
    AssistantMessage,
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ErrorEvent,
    OtherSubEvent,
    Result,
    StreamEvent,
    SystemEvent,
    ToolCall,
    ToolProgress,
    ToolResult,
    Unrecognized,
    classify_message,
)

from conftest import result_error, result_success, text_delta, tool_call, tool_use_start


# -----------------------------------------------------------------------------
# Input shapes
# -----------------------------------------------------------------------------

class TestInputShapes:
    def test_dict_and_json_string_classify_identically(self):
        raw = text_delta("Hi")
        assert classify_message(raw) == classify_message(json.dumps(raw))

    def test_bytes_are_decoded(self):
        message = classify_message(json.dumps(text_delta("Hi")).encode("utf-8"))
        assert isinstance(message, StreamEvent)

    def test_invalid_json_is_unrecognized(self):
        message = classify_message("{not json")
        assert isinstance(message, Unrecognized)
        assert message.reason == "invalid JSON"

    @pytest.mark.parametrize("raw", [None, 42, ["a"], 3.5])
    def test_non_objects_are_unrecognized(self, raw):
        assert isinstance(classify_message(raw), Unrecognized)

    def test_missing_discriminator(self):
        message = classify_message({"text": "orphan"})
        assert isinstance(message, Unrecognized)
        assert message.reason == "missing discriminator"

    def test_kind_is_accepted_as_discriminator(self):
        message = classify_message({"kind": "error", "error": "boom"})
        assert isinstance(message, ErrorEvent)
        assert message.error == "boom"

    def test_unknown_type(self):
        message = classify_message({"type": "telemetry"})
        assert isinstance(message, Unrecognized)
        assert "telemetry" in message.reason


# -----------------------------------------------------------------------------
# Stream sub-events
# -----------------------------------------------------------------------------

class TestStreamEvents:
    def test_text_delta(self):
        message = classify_message(text_delta("Hello"))
        assert isinstance(message, StreamEvent)
        sub = message.sub_event
        assert isinstance(sub, ContentBlockDelta)
        assert sub.delta_type == "text_delta"
        assert sub.text == "Hello"

    def test_tool_use_block_start(self):
        message = classify_message(tool_use_start("search", "t1", {"q": "x"}))
        sub = message.sub_event
        assert isinstance(sub, ContentBlockStart)
        assert sub.block.type == "tool_use"
        assert sub.block.name == "search"
        assert sub.block.id == "t1"
        assert sub.block.input == {"q": "x"}

    def test_block_stop_and_other_sub_events(self):
        stop = classify_message({"type": "stream_event", "event": {"type": "content_block_stop", "index": 2}})
        assert isinstance(stop.sub_event, ContentBlockStop)
        assert stop.sub_event.index == 2
        other = classify_message({"type": "stream_event", "event": {"type": "message_start"}})
        assert isinstance(other.sub_event, OtherSubEvent)
        assert other.sub_event.event == "message_start"

    def test_delta_with_non_string_text_is_dropped(self):
        raw = {"type": "stream_event", "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": 5}}}
        assert classify_message(raw).sub_event.text is None

    def test_stream_event_without_sub_event(self):
        message = classify_message({"type": "stream_event"})
        assert isinstance(message, Unrecognized)


# -----------------------------------------------------------------------------
# Other variants
# -----------------------------------------------------------------------------

class TestVariants:
    def test_assistant_blocks(self):
        raw = {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "text", "text": "Hi"},
                    {"type": "thinking", "thinking": "hmm"},
                    "garbage",
                    {"no_type": True},
                ]
            },
        }
        message = classify_message(raw)
        assert isinstance(message, AssistantMessage)
        assert [block.type for block in message.blocks] == ["text", "thinking"]

    def test_result_success_with_model_usage(self):
        raw = result_success(
            "done",
            modelUsage={"model-a": {"inputTokens": 11, "outputTokens": 7}},
            total_cost_usd=0.25,
            duration_ms=1200,
        )
        message = classify_message(raw)
        assert isinstance(message, Result)
        assert message.success is True
        assert message.result == "done"
        assert (message.input_tokens, message.output_tokens) == (11, 7)
        assert message.total_cost_usd == 0.25
        assert message.duration_ms == 1200.0
        assert message.error is None

    def test_result_usage_fallback(self):
        message = classify_message(result_success("x", usage={"input_tokens": 3, "output_tokens": 4}))
        assert (message.input_tokens, message.output_tokens) == (3, 4)

    def test_result_error_uses_result_text(self):
        message = classify_message(result_error("rate limited"))
        assert message.success is False
        assert message.error == "rate limited"

    def test_result_error_uses_errors_list(self):
        message = classify_message({"type": "result", "subtype": "error_max_turns", "errors": ["a", "b"]})
        assert message.success is False
        assert message.error == "a; b"

    def test_success_subtype_with_is_error_is_a_failure(self):
        message = classify_message({"type": "result", "subtype": "success", "is_error": True, "result": "bad"})
        assert message.success is False
        assert message.error == "bad"

    def test_tool_call_defaults(self):
        message = classify_message({"type": "tool_call"})
        assert isinstance(message, ToolCall)
        assert message.tool_name == "unknown_tool"
        assert message.tool_call_id is None

    def test_tool_call_id_aliases(self):
        message = classify_message({"type": "tool_call", "name": "search", "tool_use_id": "u1"})
        assert message.tool_name == "search"
        assert message.tool_call_id == "u1"
        assert classify_message(tool_call("search", "s1")).tool_call_id == "s1"

    def test_tool_result_falls_back_to_content(self):
        raw = {"type": "tool_result", "name": "x", "content": [{"type": "text", "text": "ok"}], "is_error": True}
        message = classify_message(raw)
        assert isinstance(message, ToolResult)
        assert message.result == [{"type": "text", "text": "ok"}]
        assert message.is_error is True

    def test_tool_progress(self):
        message = classify_message({"type": "tool_progress", "tool_name": "x", "elapsed_time_seconds": 2})
        assert isinstance(message, ToolProgress)
        assert message.elapsed_seconds == 2.0

    def test_system_init(self):
        message = classify_message({"type": "system", "subtype": "init", "session_id": "sess-9"})
        assert isinstance(message, SystemEvent)
        assert message.subtype == "init"
        assert message.session_id == "sess-9"

    @pytest.mark.parametrize("kind", ["user", "auth_status", "tool_use_summary"])
    def test_informational_kinds_become_system_events(self, kind):
        message = classify_message({"type": kind})
        assert isinstance(message, SystemEvent)
        assert message.subtype == kind

    def test_messages_are_frozen(self):
        message = classify_message(tool_call("search", "s1"))
        with pytest.raises(Exception):
            message.tool_name = "other"
