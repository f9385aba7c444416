"""Error types and error-message rendering.

This module handles error-related functionality:
- AgentStreamError hierarchy (upstream failures, HTTP failures, tool failures)
- describe_error: render any upstream error payload as a single display string
- ErrorMessages: centralized fallback strings

Nothing in this package lets an exception escape a session stream; these types
exist so failures can be classified before they are turned into events.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)


class ErrorMessages:
    """Centralized user-facing fallback messages."""

    UNKNOWN_ERROR = "Unknown error"
    TOOL_FAILED = "Tool execution failed"
    TOOL_TIMEOUT = "Tool '{name}' timed out after {seconds:g}s"
    TOOL_INVALID_ARGUMENTS = "Invalid arguments: {detail}"
    TOOL_MISSING_ARGUMENTS = "Missing required arguments: {names}"


# -----------------------------------------------------------------------------
# Exception Classes
# -----------------------------------------------------------------------------

class AgentStreamError(RuntimeError):
    """Base class for errors raised inside the stream bridge."""


class UpstreamStreamError(AgentStreamError):
    """Terminal error reported by the upstream agent service itself."""

    def __init__(self, message: str, *, payload: Any = None) -> None:
        self.payload = payload
        super().__init__(message or ErrorMessages.UNKNOWN_ERROR)


class UpstreamHTTPError(AgentStreamError):
    """Non-successful HTTP response from the agent service."""

    def __init__(
        self,
        *,
        status: int,
        reason: str,
        body: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        self.status = status
        self.reason = reason
        self.body = (body or "").strip()
        self.url = url
        detail = _extract_http_error_message(self.body)
        summary = f"Agent service request failed ({status} {reason})"
        if detail:
            summary = f"{summary}: {detail}"
        super().__init__(summary)


class ToolExecutionError(AgentStreamError):
    """A tool handler raised or produced an unusable result."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(message or ErrorMessages.TOOL_FAILED)


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------

def describe_error(value: Any) -> str:
    """Render an upstream error payload or exception as one display string.

    Structured payloads are serialized as JSON, exceptions use their message
    (falling back to the class name) and missing values become "Unknown error".
    """
    if value is None:
        return ErrorMessages.UNKNOWN_ERROR
    if isinstance(value, BaseException):
        text = str(value).strip()
        return text or type(value).__name__
    if isinstance(value, (dict, list)):
        if not value:
            return ErrorMessages.UNKNOWN_ERROR
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    text = str(value).strip()
    return text or ErrorMessages.UNKNOWN_ERROR


def _extract_http_error_message(body: str) -> Optional[str]:
    """Pull a readable message out of a JSON error body, else return a short prefix."""
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except ValueError:
        return body[:200]
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = parsed.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return body[:200]
