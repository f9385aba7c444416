"""Tool subsystem.

This package contains tool-related functionality:
- tool_registry: tool definitions, namespaced name handling and spec building
- call_registry: per-session correlation of tool calls with their results
- tool_executor: native/bridge execution strategies and native tool hooks

NOTE: Imports are not eagerly loaded; import directly from submodules.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .tool_registry import ToolDefinition, build_tool_map, normalize_tool_name, tool_specs
    from .call_registry import ToolCallRecord, ToolCallRegistry, ToolCallState
    from .tool_executor import NativeToolHooks, ToolExecutionBridge, ToolOutcome, normalize_tool_result

__all__ = [
    "ToolDefinition",
    "build_tool_map",
    "normalize_tool_name",
    "tool_specs",
    "ToolCallRecord",
    "ToolCallRegistry",
    "ToolCallState",
    "NativeToolHooks",
    "ToolExecutionBridge",
    "ToolOutcome",
    "normalize_tool_result",
]
