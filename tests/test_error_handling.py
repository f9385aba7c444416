"""Tests for error types and describe_error."""

from __future__ import annotations

import pytest

from agent_stream_bridge.core.errors import (
    AgentStreamError,
    ErrorMessages,
    ToolExecutionError,
    UpstreamHTTPError,
    UpstreamStreamError,
    describe_error,
)


class TestDescribeError:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, "Unknown error"),
            ("  rate limited ", "rate limited"),
            ("", "Unknown error"),
            ({}, "Unknown error"),
            ({"code": 429}, '{"code": 429}'),
            (["a", "b"], '["a", "b"]'),
            (RuntimeError("boom"), "boom"),
            (TimeoutError(), "TimeoutError"),
            (42, "42"),
        ],
    )
    def test_rendering(self, value, expected):
        assert describe_error(value) == expected


class TestExceptions:
    def test_hierarchy(self):
        for exc_type in (UpstreamStreamError, UpstreamHTTPError, ToolExecutionError):
            assert issubclass(exc_type, AgentStreamError)
        assert issubclass(AgentStreamError, RuntimeError)

    def test_http_error_with_json_body(self):
        err = UpstreamHTTPError(status=429, reason="Too Many Requests", body='{"error": {"message": "slow down"}}')
        assert str(err) == "Agent service request failed (429 Too Many Requests): slow down"

    def test_http_error_with_text_body(self):
        err = UpstreamHTTPError(status=502, reason="Bad Gateway", body="x" * 300)
        assert str(err).endswith("x" * 200)

    def test_http_error_without_body(self):
        assert str(UpstreamHTTPError(status=500, reason="")) == "Agent service request failed (500 )"

    def test_upstream_stream_error_keeps_payload(self):
        err = UpstreamStreamError("", payload={"a": 1})
        assert str(err) == ErrorMessages.UNKNOWN_ERROR
        assert err.payload == {"a": 1}

    def test_tool_execution_error(self):
        err = ToolExecutionError("search", "")
        assert err.tool_name == "search"
        assert str(err) == ErrorMessages.TOOL_FAILED
