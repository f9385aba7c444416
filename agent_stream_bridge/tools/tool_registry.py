"""Tool definitions supplied by the host application.

This module handles tool lookup and spec building:
- ToolDefinition: name, description, input schema and handler
- build_tool_map: handler lookup by plain and namespaced name
- normalize_tool_name: strip the tool-server namespace prefix
- tool_specs: schema list announced to upstreams with native registration
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.config import _DEFAULT_TOOL_SERVER_NAME, namespaced_tool_prefix
from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Any]

_EMPTY_OBJECT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(slots=True)
class ToolDefinition:
    """A named tool: JSON schema for its arguments plus a sync or async handler."""

    name: str
    description: str
    handler: ToolHandler
    input_schema: Dict[str, Any] = field(default_factory=dict)

    def spec(self) -> Dict[str, Any]:
        schema = self.input_schema if isinstance(self.input_schema, dict) and self.input_schema else None
        return {
            "name": self.name,
            "description": self.description or "",
            "input_schema": dict(schema) if schema else dict(_EMPTY_OBJECT_SCHEMA),
        }

    def required_arguments(self) -> List[str]:
        required = self.input_schema.get("required") if isinstance(self.input_schema, dict) else None
        if not isinstance(required, list):
            return []
        return [name for name in required if isinstance(name, str)]


@timed
def normalize_tool_name(name: Optional[str], server_name: str = _DEFAULT_TOOL_SERVER_NAME) -> str:
    """Return ``name`` without the ``mcp__<server>__`` prefix."""
    if not name:
        return ""
    prefix = namespaced_tool_prefix(server_name)
    if name.startswith(prefix):
        return name[len(prefix):]
    return name


@timed
def build_tool_map(
    tools: Optional[Iterable[ToolDefinition]],
    server_name: str = _DEFAULT_TOOL_SERVER_NAME,
    *,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, ToolDefinition]:
    """Index tools by plain and namespaced name. Duplicate names: last one wins."""
    log = logger or LOGGER
    prefix = namespaced_tool_prefix(server_name)
    registry: Dict[str, ToolDefinition] = {}
    for tool in tools or ():
        if not isinstance(tool, ToolDefinition) or not tool.name:
            log.warning("Skipping invalid tool definition: %r", tool)
            continue
        if tool.name in registry:
            log.warning("Tool '%s' defined more than once; the last definition wins.", tool.name)
        registry[tool.name] = tool
        registry[f"{prefix}{tool.name}"] = tool
    return registry


@timed
def tool_specs(tools: Optional[Iterable[ToolDefinition]]) -> List[Dict[str, Any]]:
    """Return one spec per unique tool name, keeping the last definition."""
    unique: Dict[str, ToolDefinition] = {}
    for tool in tools or ():
        if isinstance(tool, ToolDefinition) and tool.name:
            unique[tool.name] = tool
    return [tool.spec() for tool in unique.values()]
