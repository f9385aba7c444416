"""Configuration for the agent stream bridge.

This module contains the configuration schema and shared constants:
- Valves: global configuration (logging, tool execution strategy, citations, HTTP)
- Tool naming constants (namespaced tool server prefix)
- Reasoning budget constants used when building upstream requests
"""

from __future__ import annotations

import logging
import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

_DEFAULT_TOOL_SERVER_NAME = "agent-tools"
_NAMESPACED_TOOL_TEMPLATE = "mcp__{server}__"
_UNKNOWN_TOOL_NAME = "unknown_tool"

# Explicit reasoning effort -> thinking token budget.
THINKING_BUDGET_BY_EFFORT = {
    "low": 5000,
    "medium": 10000,
    "high": 50000,
}

# Prompt-detected thinking budgets (highest tier is checked first).
THINKING_BUDGET_ULTRA = 31999
THINKING_BUDGET_MEGA = 10000
THINKING_BUDGET_BASIC = 4000

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _resolve_log_level_default() -> str:
    """Return the log level from AGENT_STREAM_LOG_LEVEL, falling back to INFO."""
    value = (os.getenv("AGENT_STREAM_LOG_LEVEL") or "").strip().upper()
    return value if value in _LOG_LEVELS else "INFO"


def namespaced_tool_prefix(server_name: str) -> str:
    """Return the prefix the upstream uses for tools served by ``server_name``."""
    return _NAMESPACED_TOOL_TEMPLATE.format(server=server_name)


# -----------------------------------------------------------------------------
# Valves
# -----------------------------------------------------------------------------

class Valves(BaseModel):
    """Global valve configuration shared across sessions."""

    model_config = ConfigDict(validate_assignment=True)

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default_factory=_resolve_log_level_default,
        description="Select logging level. INFO or WARNING for production; DEBUG logs every raw upstream message.",
    )
    LOG_PAYLOAD_PREVIEW_CHARS: int = Field(
        default=500,
        ge=0,
        description="Maximum characters of a raw upstream payload included in log lines (0 disables previews).",
    )
    SESSION_LOG_MAX_LINES: int = Field(
        default=2000,
        ge=100,
        le=200000,
        description="Maximum structured log events retained in memory per request.",
    )
    ENABLE_TIMING_LOG: bool = Field(
        default=False,
        description="When True, record function timing events for each session.",
    )
    TIMING_LOG_FILE: str = Field(
        default="logs/timing.jsonl",
        description="JSONL file receiving timing events when ENABLE_TIMING_LOG is on.",
    )

    # Tool execution
    TOOL_EXECUTION_MODE: Literal["auto", "native", "bridge"] = Field(
        default="auto",
        description=(
            "How supplied tools are exposed to the upstream. "
            "'native' registers them with the upstream runtime and lets its hooks drive tool events. "
            "'bridge' executes handlers in-process when a tool call message arrives. "
            "'auto' uses native registration when the upstream supports it and tools were supplied."
        ),
    )
    TOOL_SERVER_NAME: str = Field(
        default=_DEFAULT_TOOL_SERVER_NAME,
        min_length=1,
        description="Name of the in-process tool server; upstream tool names look like mcp__<name>__<tool>.",
    )
    TOOL_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-handler timeout for bridged tool execution. A timeout becomes a failed tool result.",
    )
    WEB_SEARCH_TOOL_NAMES: str = Field(
        default="WebSearch,web_search",
        description="Comma-separated tool names treated as web searches.",
    )
    WEB_FETCH_TOOL_NAMES: str = Field(
        default="WebFetch,web_fetch",
        description="Comma-separated tool names treated as page fetches.",
    )

    # Citations
    ENABLE_FINAL_CITATION_PASS: bool = Field(
        default=True,
        description="Scan the final accumulated text for links once the stream completes.",
    )
    CITATION_INDEX_STRIDE: int = Field(
        default=100,
        ge=1,
        description="Placeholder character stride for annotation start/end indices (not real offsets).",
    )

    # HTTP upstream
    HTTP_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=10,
        ge=1,
        description="Seconds to wait for the TCP/TLS connection to the agent service.",
    )
    HTTP_SOCK_READ_SECONDS: int = Field(
        default=300,
        ge=1,
        description="Maximum idle seconds between streamed chunks before the connection is treated as dropped.",
    )

    @field_validator("TOOL_SERVER_NAME")
    @classmethod
    def _strip_server_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("TOOL_SERVER_NAME must not be blank")
        return stripped

    @property
    def web_search_tools(self) -> frozenset[str]:
        return _split_names(self.WEB_SEARCH_TOOL_NAMES)

    @property
    def web_fetch_tools(self) -> frozenset[str]:
        return _split_names(self.WEB_FETCH_TOOL_NAMES)

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.LOG_LEVEL, logging.INFO)


def _split_names(raw: str) -> frozenset[str]:
    return frozenset(part.strip() for part in (raw or "").split(",") if part.strip())
