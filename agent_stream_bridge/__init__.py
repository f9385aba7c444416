"""Streaming event normalization and tool-call orchestration for agent backends.

This package turns an upstream agent service's raw message stream into a small
set of stable UI events while coordinating tool invocation:
- Core infrastructure: config (Valves), errors, session logging, timing
- Streaming: message classifier, accumulator, citations, session controller
- Tools: tool definitions, call correlation, execution bridge
- Integrations: upstream protocol and the aiohttp HTTP upstream

This module uses LAZY LOADING: attributes are imported on first access so
``import agent_stream_bridge`` stays cheap and free of import cycles.
"""

from typing import TYPE_CHECKING

try:
    from importlib.metadata import PackageNotFoundError, version as _get_version

    __version__ = _get_version("agent-stream-bridge")
except PackageNotFoundError:
    __version__ = "0.1.0"

# -----------------------------------------------------------------------------
# Type hints only (no runtime import)
# -----------------------------------------------------------------------------

if TYPE_CHECKING:
    from .core.config import Valves
    from .core.errors import (
        AgentStreamError,
        ErrorMessages,
        ToolExecutionError,
        UpstreamHTTPError,
        UpstreamStreamError,
        describe_error,
    )
    from .core.logging_system import SessionLogger
    from .integrations.agent_upstream import AgentUpstream, NativeToolRegistration
    from .integrations.http_agent import HttpAgentUpstream
    from .requests.request_builder import ChatMessage, ImageAttachment, StreamRequest
    from .streaming.event_emitter import EventEmitterHandler, StreamOutcome
    from .streaming.events import (
        Annotation,
        Annotations,
        Error,
        Finish,
        NormalizedEvent,
        ReasoningDelta,
        ReasoningDone,
        TextDelta,
        TextDone,
        ToolCallDone,
        ToolCallStart,
        Usage,
        WebSearchDone,
        WebSearchSearching,
        WebSearchStart,
    )
    from .streaming.messages import RawMessage, classify_message
    from .streaming.session_manager import SessionManager
    from .streaming.stream_controller import (
        CancellationToken,
        SessionState,
        StreamSession,
        StreamSessionController,
    )
    from .tools.tool_registry import ToolDefinition


# -----------------------------------------------------------------------------
# Public API - All lazy loaded
# -----------------------------------------------------------------------------

_LAZY_IMPORTS = {
    # Core
    "Valves": (".core.config", "Valves"),
    "AgentStreamError": (".core.errors", "AgentStreamError"),
    "ErrorMessages": (".core.errors", "ErrorMessages"),
    "ToolExecutionError": (".core.errors", "ToolExecutionError"),
    "UpstreamHTTPError": (".core.errors", "UpstreamHTTPError"),
    "UpstreamStreamError": (".core.errors", "UpstreamStreamError"),
    "describe_error": (".core.errors", "describe_error"),
    "SessionLogger": (".core.logging_system", "SessionLogger"),

    # Requests
    "ChatMessage": (".requests.request_builder", "ChatMessage"),
    "ImageAttachment": (".requests.request_builder", "ImageAttachment"),
    "StreamRequest": (".requests.request_builder", "StreamRequest"),

    # Integrations
    "AgentUpstream": (".integrations.agent_upstream", "AgentUpstream"),
    "NativeToolRegistration": (".integrations.agent_upstream", "NativeToolRegistration"),
    "HttpAgentUpstream": (".integrations.http_agent", "HttpAgentUpstream"),

    # Streaming
    "RawMessage": (".streaming.messages", "RawMessage"),
    "classify_message": (".streaming.messages", "classify_message"),
    "NormalizedEvent": (".streaming.events", "NormalizedEvent"),
    "TextDelta": (".streaming.events", "TextDelta"),
    "TextDone": (".streaming.events", "TextDone"),
    "ReasoningDelta": (".streaming.events", "ReasoningDelta"),
    "ReasoningDone": (".streaming.events", "ReasoningDone"),
    "ToolCallStart": (".streaming.events", "ToolCallStart"),
    "ToolCallDone": (".streaming.events", "ToolCallDone"),
    "WebSearchStart": (".streaming.events", "WebSearchStart"),
    "WebSearchSearching": (".streaming.events", "WebSearchSearching"),
    "WebSearchDone": (".streaming.events", "WebSearchDone"),
    "Annotation": (".streaming.events", "Annotation"),
    "Annotations": (".streaming.events", "Annotations"),
    "Error": (".streaming.events", "Error"),
    "Finish": (".streaming.events", "Finish"),
    "Usage": (".streaming.events", "Usage"),
    "EventEmitterHandler": (".streaming.event_emitter", "EventEmitterHandler"),
    "StreamOutcome": (".streaming.event_emitter", "StreamOutcome"),
    "SessionManager": (".streaming.session_manager", "SessionManager"),
    "CancellationToken": (".streaming.stream_controller", "CancellationToken"),
    "SessionState": (".streaming.stream_controller", "SessionState"),
    "StreamSession": (".streaming.stream_controller", "StreamSession"),
    "StreamSessionController": (".streaming.stream_controller", "StreamSessionController"),

    # Tools
    "ToolDefinition": (".tools.tool_registry", "ToolDefinition"),
}

__all__ = ["__version__", *_LAZY_IMPORTS]

_cache: dict = {}


def __getattr__(name: str):
    """Lazy-load public attributes on first access."""
    if name in _cache:
        return _cache[name]

    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        import importlib

        module = importlib.import_module(module_path, __name__)
        value = getattr(module, attr_name)
        _cache[name] = value
        globals()[name] = value
        return value

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(set(globals()) | set(_LAZY_IMPORTS))
