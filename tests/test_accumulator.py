"""Tests for StreamAccumulator and the normalized event wire shape."""

from __future__ import annotations

from agent_stream_bridge.streaming.accumulator import StreamAccumulator
from agent_stream_bridge.streaming.events import (
    Annotation,
    Annotations,
    Finish,
    ReasoningDelta,
    TextDelta,
    TextDone,
    ToolCallStart,
    Usage,
    WebSearchDone,
)


class TestText:
    def test_deltas_concatenate_verbatim(self):
        acc = StreamAccumulator()
        chunks = ["Hel", "lo", " ", "lo", "lo"]
        events = [acc.append_text(chunk) for chunk in chunks]
        assert all(isinstance(event, TextDelta) for event in events)
        assert acc.text == "".join(chunks)

    def test_empty_chunks_are_ignored(self):
        acc = StreamAccumulator()
        assert acc.append_text("") is None
        assert acc.append_text(None) is None
        assert acc.has_text is False

    def test_block_duplicate_of_tail_is_suppressed(self):
        acc = StreamAccumulator()
        acc.append_text("Hello")
        acc.append_text(" world")
        assert acc.append_text_block(" world") is None
        assert acc.append_text_block("Hello world") is None
        assert acc.text == "Hello world"

    def test_block_with_new_content_is_appended(self):
        acc = StreamAccumulator()
        acc.append_text("Hello")
        event = acc.append_text_block(" again")
        assert event == TextDelta(delta=" again")
        assert acc.text == "Hello again"

    def test_finalize_once(self):
        acc = StreamAccumulator()
        acc.append_text("abc")
        assert acc.finalize() == TextDone(text="abc")
        assert acc.finalize() is None
        assert acc.finalized is True

    def test_text_after_finalize_is_dropped(self):
        acc = StreamAccumulator()
        acc.append_text("abc")
        acc.finalize()
        assert acc.append_text("def") is None
        assert acc.text == "abc"


class TestReasoning:
    def test_reasoning_is_independent_of_text(self):
        acc = StreamAccumulator()
        assert isinstance(acc.append_reasoning("step 1"), ReasoningDelta)
        acc.append_text("answer")
        assert acc.reasoning == "step 1"
        assert acc.text == "answer"

    def test_reset_starts_a_new_block(self):
        acc = StreamAccumulator()
        acc.append_reasoning("old")
        acc.reset_reasoning()
        acc.append_reasoning("new")
        done = acc.finalize_reasoning()
        assert done.text == "new"

    def test_finalize_reasoning_requires_content(self):
        acc = StreamAccumulator()
        assert acc.finalize_reasoning() is None
        acc.append_reasoning("x")
        assert acc.finalize_reasoning() is not None
        assert acc.finalize_reasoning() is None

    def test_reasoning_block_duplicate_suppressed(self):
        acc = StreamAccumulator()
        acc.append_reasoning("thinking hard")
        assert acc.append_reasoning_block("hard") is None
        assert acc.reasoning == "thinking hard"


class TestWireShape:
    def test_camel_case_keys_and_none_fields_dropped(self):
        event = ToolCallStart(tool_call_id="c1", tool_name="search", args=None)
        assert event.to_dict() == {"type": "tool-call-start", "toolCallId": "c1", "toolName": "search"}

    def test_finish_nests_usage(self):
        finish = Finish(usage=Usage(prompt_tokens=3, completion_tokens=4), total_steps=2, response_id="r1")
        assert finish.to_dict() == {
            "type": "finish",
            "usage": {"promptTokens": 3, "completionTokens": 4},
            "totalSteps": 2,
            "responseId": "r1",
        }

    def test_annotations(self):
        event = Annotations(annotations=(Annotation(url="https://a.com", start_index=0, end_index=100),))
        payload = event.to_dict()
        assert payload["type"] == "annotations"
        assert list(payload["annotations"]) == [
            {"type": "url_citation", "url": "https://a.com", "startIndex": 0, "endIndex": 100}
        ]

    def test_web_search_done_domains(self):
        event = WebSearchDone(search_id="w1", action="search", domains=("a.com", "b.org"))
        payload = event.to_dict()
        assert payload["searchId"] == "w1"
        assert list(payload["domains"]) == ["a.com", "b.org"]
