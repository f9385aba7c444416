"""Contract between the stream bridge and an upstream agent service.

An upstream turns a ``StreamRequest`` into an async iterator of raw messages
(dicts or JSON strings). Upstreams that host tools in their own runtime set
``supports_native_tools`` and accept a ``NativeToolRegistration``; they must
await the registration's hooks around every tool execution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..requests.request_builder import StreamRequest
    from ..tools.tool_executor import NativeToolHooks
    from ..tools.tool_registry import ToolHandler


@dataclass(slots=True)
class NativeToolRegistration:
    """Tools handed to an upstream runtime that executes them itself."""

    server_name: str
    tools: List[Dict[str, Any]]
    allowed_tools: List[str]
    handlers: Dict[str, "ToolHandler"]
    hooks: "NativeToolHooks"
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class AgentUpstream(Protocol):
    supports_native_tools: bool

    def stream(
        self,
        request: "StreamRequest",
        *,
        native_tools: Optional[NativeToolRegistration] = None,
    ) -> AsyncIterator[Any]:
        ...
