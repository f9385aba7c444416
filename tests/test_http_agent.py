"""Tests for the aiohttp upstream: SSE/NDJSON decoding and HTTP errors."""

from __future__ import annotations

import json

import pytest
from aioresponses import aioresponses
from yarl import URL

from agent_stream_bridge.core.config import Valves
from agent_stream_bridge.core.errors import UpstreamHTTPError
from agent_stream_bridge.integrations.http_agent import HttpAgentUpstream
from agent_stream_bridge.requests.request_builder import StreamRequest
from agent_stream_bridge.streaming.session_manager import SessionManager

from conftest import collect, event_types, result_success, text_delta

AGENT_URL = "http://agent.test/v1/stream"


def _sse(*messages: object) -> str:
    return "".join(f"data: {json.dumps(message)}\n\n" for message in messages)


class TestDecoding:
    @pytest.mark.asyncio
    async def test_sse_body(self):
        body = ": keep-alive\n\nevent: message\nid: 1\n" + _sse(text_delta("Hi"), result_success("Hi")) + "data: [DONE]\n\n"
        upstream = HttpAgentUpstream(AGENT_URL, chunk_size=7)
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=200, body=body)
            messages = await collect(upstream.stream(StreamRequest(prompt="hello")))
        assert [json.loads(message) for message in messages] == [text_delta("Hi"), result_success("Hi")]

    @pytest.mark.asyncio
    async def test_multi_line_data_is_joined(self):
        body = 'data: {"type": "system",\ndata: "subtype": "init"}\n\n'
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=200, body=body)
            messages = await collect(HttpAgentUpstream(AGENT_URL).stream(StreamRequest(prompt="p")))
        assert json.loads(messages[0]) == {"type": "system", "subtype": "init"}

    @pytest.mark.asyncio
    async def test_ndjson_body_stops_at_done(self):
        body = "\n".join([json.dumps(text_delta("a")), "", json.dumps(text_delta("b")), "[DONE]", json.dumps(text_delta("c"))])
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=200, body=body)
            messages = await collect(HttpAgentUpstream(AGENT_URL, chunk_size=3).stream(StreamRequest(prompt="p")))
        assert [json.loads(message) for message in messages] == [text_delta("a"), text_delta("b")]

    @pytest.mark.asyncio
    async def test_trailing_event_without_blank_line(self):
        body = f"data: {json.dumps(text_delta('tail'))}"
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=200, body=body)
            messages = await collect(HttpAgentUpstream(AGENT_URL).stream(StreamRequest(prompt="p")))
        assert [json.loads(message) for message in messages] == [text_delta("tail")]


class TestRequest:
    @pytest.mark.asyncio
    async def test_payload_and_headers(self):
        upstream = HttpAgentUpstream(AGENT_URL, headers={"Authorization": "Bearer t"})
        request = StreamRequest(prompt="Please think about it", model_id="agent-1", reasoning_effort="low")
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=200, body="")
            await collect(upstream.stream(request))
            call = mocked.requests[("POST", URL(AGENT_URL))][0]
        payload = call.kwargs["json"]
        assert payload["prompt"] == "Please think about it"
        assert payload["model"] == "agent-1"
        assert payload["max_thinking_tokens"] == 5000
        assert payload["include_partial_messages"] is True
        assert "system_prompt" not in payload
        assert call.kwargs["headers"]["Authorization"] == "Bearer t"
        assert "text/event-stream" in call.kwargs["headers"]["Accept"]

    @pytest.mark.asyncio
    async def test_http_error(self):
        body = json.dumps({"error": {"message": "overloaded"}})
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=503, body=body)
            with pytest.raises(UpstreamHTTPError) as excinfo:
                await collect(HttpAgentUpstream(AGENT_URL).stream(StreamRequest(prompt="p")))
        err = excinfo.value
        assert err.status == 503
        assert "overloaded" in str(err)
        assert err.url == AGENT_URL


class TestThroughSessionManager:
    @pytest.mark.asyncio
    async def test_events_from_sse_stream(self):
        body = _sse(text_delta("Hel"), text_delta("lo"), result_success("Hello"))
        manager = SessionManager(HttpAgentUpstream(AGENT_URL), valves=Valves())
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=200, body=body)
            events = await collect(manager.start("chat", {"prompt": "hi"}))
        assert event_types(events) == ["text-delta", "text-delta", "text-done", "finish"]
        assert events[2].text == "Hello"

    @pytest.mark.asyncio
    async def test_http_failure_becomes_error_event(self):
        manager = SessionManager(HttpAgentUpstream(AGENT_URL), valves=Valves())
        with aioresponses() as mocked:
            mocked.post(AGENT_URL, status=500, body="internal failure")
            events = await collect(manager.start("chat", {"prompt": "hi"}))
        assert event_types(events) == ["error", "finish"]
        assert "500" in events[0].error
        assert "internal failure" in events[0].error
