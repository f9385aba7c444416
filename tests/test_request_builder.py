"""Tests for StreamRequest prompt and payload construction."""

from __future__ import annotations

import pytest

from agent_stream_bridge.integrations.agent_upstream import NativeToolRegistration
from agent_stream_bridge.requests.request_builder import (
    IMAGE_NOTE,
    StreamRequest,
    detect_thinking_budget,
)


class TestBuildPrompt:
    def test_prompt_only(self):
        assert StreamRequest(prompt="Hi").build_prompt() == "Hi"

    def test_history_is_role_tagged(self):
        request = StreamRequest(
            prompt="And now?",
            messages=[
                {"role": "user", "content": "Question"},
                {"role": "assistant", "content": "Answer"},
            ],
        )
        assert request.build_prompt() == "USER: Question\n\nASSISTANT: Answer\n\nUSER: And now?"

    def test_image_note(self):
        request = StreamRequest(prompt="What is this?", images=[{"data": "aGk=", "mediaType": "image/png"}])
        assert request.build_prompt() == "What is this?" + IMAGE_NOTE
        assert request.images[0].media_type == "image/png"

    def test_unknown_fields_are_kept(self):
        request = StreamRequest(prompt="x", chat_id="c-1")
        assert request.model_extra == {"chat_id": "c-1"}


class TestThinkingBudget:
    @pytest.mark.parametrize(
        "prompt, expected",
        [
            ("ultrathink about this", 31999),
            ("Please think harder", 31999),
            ("think hard please", 10000),
            ("go step by step", 10000),
            ("I think so", 4000),
            ("rethinking is not the word", None),
            ("", None),
        ],
    )
    def test_detection(self, prompt, expected):
        assert detect_thinking_budget(prompt) == expected

    @pytest.mark.parametrize("effort, expected", [("low", 5000), ("medium", 10000), ("high", 50000)])
    def test_explicit_effort_wins(self, effort, expected):
        assert StreamRequest(prompt="ultrathink", reasoning_effort=effort).max_thinking_tokens() == expected

    def test_effort_none_falls_back_to_detection(self):
        assert StreamRequest(prompt="think hard", reasoning_effort="none").max_thinking_tokens() == 10000
        assert StreamRequest(prompt="hello", reasoning_effort="none").max_thinking_tokens() is None

    def test_history_participates_in_detection(self):
        request = StreamRequest(prompt="ok", messages=[{"role": "user", "content": "megathink this"}])
        assert request.max_thinking_tokens() == 10000


class TestPayload:
    def test_minimal_payload(self):
        assert StreamRequest(prompt="hello").to_payload() == {"prompt": "hello", "include_partial_messages": True}

    def test_full_payload(self):
        registration = NativeToolRegistration(
            server_name="agent-tools",
            tools=[{"name": "echo", "description": "", "input_schema": {"type": "object", "properties": {}}}],
            allowed_tools=["echo", "mcp__agent-tools__echo"],
            handlers={},
            hooks=None,
        )
        request = StreamRequest(
            prompt="look",
            model_id="m",
            system_prompt="be brief",
            images=[{"data": "aGk=", "media_type": "image/jpeg"}],
            metadata={"chat_id": "c"},
        )
        payload = request.to_payload(registration)
        assert payload["model"] == "m"
        assert payload["system_prompt"] == "be brief"
        assert payload["images"] == [{"type": "image", "data": "aGk=", "media_type": "image/jpeg"}]
        assert payload["metadata"] == {"chat_id": "c"}
        assert payload["allowed_tools"] == ["echo", "mcp__agent-tools__echo"]
        assert payload["tools"][0]["name"] == "echo"
        assert "max_thinking_tokens" not in payload
