"""Tool execution bridge.

Exposes host-supplied tools to the upstream through one of two strategies:

- ``native``: tools are registered with the upstream runtime, which runs the
  handlers itself and calls ``NativeToolHooks`` before and after each run;
  the hooks drive ToolCallStart/ToolCallDone.
- ``bridge``: the session controller calls ``ToolExecutionBridge.execute``
  when a tool call message names a registered tool.

Handler failures never propagate: they become ``{"success": False, "error"}``
results.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Literal, Optional

from ..core.config import Valves
from ..core.errors import ErrorMessages, ToolExecutionError, describe_error
from ..core.timing_logger import timed, timing_mark
from ..core.utils import _first_str, _preview_json
from ..integrations.agent_upstream import NativeToolRegistration
from .tool_registry import ToolDefinition, build_tool_map, normalize_tool_name, tool_specs

if TYPE_CHECKING:
    from ..streaming.events import NormalizedEvent
    from .call_registry import ToolCallRegistry

LOGGER = logging.getLogger(__name__)

ToolStrategy = Literal["native", "bridge"]

_HOOK_CONTINUE: Dict[str, Any] = {"continue": True}


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    result: Any
    success: bool


def _failure(message: str) -> ToolOutcome:
    return ToolOutcome(result={"success": False, "error": message}, success=False)


@timed
def normalize_tool_result(raw: Any) -> ToolOutcome:
    """Unwrap content-wrapped results and derive the success flag.

    ``{"content": [{"type": "text", "text": "<json>"}]}`` becomes the parsed
    JSON (or the raw text when it does not parse); ``isError: true`` on the
    wrapper or ``success: false`` on the payload marks the call failed.
    """
    value = raw
    success = True
    if isinstance(raw, dict):
        if raw.get("isError") is True or raw.get("is_error") is True:
            success = False
        content = raw.get("content")
        first = content[0] if isinstance(content, list) and content else None
        text = first.get("text") if isinstance(first, dict) else None
        if isinstance(text, str) and text:
            try:
                value = json.loads(text)
            except ValueError:
                value = text
    if isinstance(value, dict) and value.get("success") is False:
        success = False
    return ToolOutcome(result=value, success=success)


class ToolExecutionBridge:
    """Single entry point for both tool execution strategies of one session."""

    @timed
    def __init__(
        self,
        tools: Optional[Iterable[ToolDefinition]],
        *,
        valves: Optional[Valves] = None,
        upstream_supports_native: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.valves = valves or Valves()
        self.logger = logger or LOGGER
        self.tools = [tool for tool in (tools or ()) if isinstance(tool, ToolDefinition)]
        self.server_name = self.valves.TOOL_SERVER_NAME
        self.tool_map = build_tool_map(self.tools, self.server_name, logger=self.logger)
        self.strategy: ToolStrategy = self._resolve_strategy(upstream_supports_native)

    def _resolve_strategy(self, upstream_supports_native: bool) -> ToolStrategy:
        mode = self.valves.TOOL_EXECUTION_MODE
        if mode == "native":
            if not upstream_supports_native:
                self.logger.warning("Native tool registration requested but the upstream does not support it; bridging tools instead.")
                return "bridge"
            return "native"
        if mode == "bridge":
            return "bridge"
        return "native" if upstream_supports_native and self.tools else "bridge"

    # -- naming ----------------------------------------------------------------

    def is_registered(self, name: Optional[str]) -> bool:
        return bool(name) and name in self.tool_map

    def display_name(self, name: str) -> str:
        return normalize_tool_name(name, self.server_name) or name

    def handles_natively(self, name: Optional[str]) -> bool:
        """True when the upstream runtime owns this call and hooks report it."""
        return self.strategy == "native" and self.is_registered(name)

    def executes(self, name: Optional[str]) -> bool:
        """True when this bridge runs the handler for a tool call message."""
        return self.strategy == "bridge" and self.is_registered(name)

    # -- native strategy -------------------------------------------------------

    @timed
    def native_registration(self, hooks: "NativeToolHooks") -> Optional[NativeToolRegistration]:
        if self.strategy != "native" or not self.tools:
            return None
        return NativeToolRegistration(
            server_name=self.server_name,
            tools=tool_specs(self.tools),
            allowed_tools=sorted(self.tool_map),
            handlers={name: tool.handler for name, tool in self.tool_map.items()},
            hooks=hooks,
        )

    # -- bridge strategy -------------------------------------------------------

    def _coerce_arguments(self, tool: ToolDefinition, raw: Any) -> Dict[str, Any]:
        if isinstance(raw, str):
            if not raw.strip():
                raw = None
            else:
                try:
                    raw = json.loads(raw)
                except ValueError as exc:
                    raise ValueError(ErrorMessages.TOOL_INVALID_ARGUMENTS.format(detail=exc)) from exc
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(
                ErrorMessages.TOOL_INVALID_ARGUMENTS.format(detail=f"expected an object, got {type(raw).__name__}")
            )
        missing = [name for name in tool.required_arguments() if name not in raw]
        if missing:
            raise ValueError(ErrorMessages.TOOL_MISSING_ARGUMENTS.format(names=", ".join(missing)))
        return raw

    async def _invoke(self, tool: ToolDefinition, arguments: Dict[str, Any]) -> Any:
        handler = tool.handler
        if inspect.iscoroutinefunction(handler):
            awaitable = handler(arguments)
        else:
            awaitable = asyncio.to_thread(handler, arguments)
        timeout = self.valves.TOOL_TIMEOUT_SECONDS
        if timeout:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        return await awaitable

    @timed
    async def execute(self, name: str, arguments: Any) -> ToolOutcome:
        """Run the handler registered for ``name`` and return its normalized outcome."""
        tool = self.tool_map.get(name)
        if tool is None:
            return _failure(f"Tool '{name}' is not registered")
        timing_mark(f"tool_start:{tool.name}")
        try:
            args = self._coerce_arguments(tool, arguments)
        except ValueError as exc:
            self.logger.warning("Tool '%s' rejected arguments: %s", tool.name, exc)
            return _failure(str(exc))

        try:
            raw = await self._invoke(tool, args)
        except asyncio.TimeoutError:
            message = ErrorMessages.TOOL_TIMEOUT.format(name=tool.name, seconds=self.valves.TOOL_TIMEOUT_SECONDS)
            self.logger.warning("%s", message)
            return _failure(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = ToolExecutionError(tool.name, describe_error(exc))
            self.logger.warning("Tool '%s' failed: %s", tool.name, error, exc_info=self.logger.isEnabledFor(logging.DEBUG))
            return _failure(str(error) or ErrorMessages.TOOL_FAILED)
        finally:
            timing_mark(f"tool_end:{tool.name}")

        outcome = normalize_tool_result(raw)
        self.logger.info(
            "Tool '%s' completed (success=%s): %s",
            tool.name,
            outcome.success,
            _preview_json(outcome.result, self.valves.LOG_PAYLOAD_PREVIEW_CHARS),
        )
        return outcome


class NativeToolHooks:
    """Callbacks an upstream runtime awaits around each tool it executes.

    Each hook receives the runtime's hook payload (``tool_name``,
    ``tool_use_id``, ``input``/``tool_input`` and ``tool_response`` or
    ``error``), records the call and pushes the resulting normalized event
    to ``sink``. Calls for tools that were not registered are ignored.
    """

    def __init__(
        self,
        bridge: ToolExecutionBridge,
        registry: "ToolCallRegistry",
        sink: Callable[["NormalizedEvent"], None],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bridge = bridge
        self.registry = registry
        self.sink = sink
        self.logger = logger or LOGGER
        self.enabled = True

    def _identify(self, payload: Any) -> Optional[tuple[str, Optional[str], Dict[str, Any]]]:
        if not self.enabled or not isinstance(payload, dict):
            return None
        tool_name = _first_str(payload, "tool_name", "name")
        if not tool_name or not self.bridge.is_registered(tool_name):
            return None
        return tool_name, _first_str(payload, "tool_use_id", "tool_call_id"), payload

    @timed
    async def pre_tool_use(self, payload: Any) -> Dict[str, Any]:
        from ..streaming.events import ToolCallStart

        identified = self._identify(payload)
        if identified is None:
            return dict(_HOOK_CONTINUE)
        tool_name, call_id, data = identified
        arguments = data.get("tool_input", data.get("input"))
        display = self.bridge.display_name(tool_name)
        call_id, is_new = self.registry.announce(display, call_id, arguments)
        if is_new:
            self.logger.info("Tool call started (native): %s id=%s", display, call_id)
            self.sink(ToolCallStart(tool_call_id=call_id, tool_name=display, args=arguments))
        return dict(_HOOK_CONTINUE)

    @timed
    async def post_tool_use(self, payload: Any) -> Dict[str, Any]:
        identified = self._identify(payload)
        if identified is None:
            return dict(_HOOK_CONTINUE)
        tool_name, call_id, data = identified
        self._complete(tool_name, call_id, normalize_tool_result(data.get("tool_response")))
        return dict(_HOOK_CONTINUE)

    @timed
    async def post_tool_use_failure(self, payload: Any) -> Dict[str, Any]:
        identified = self._identify(payload)
        if identified is None:
            return dict(_HOOK_CONTINUE)
        tool_name, call_id, data = identified
        error = data.get("error")
        message = describe_error(error) if error else ErrorMessages.TOOL_FAILED
        self._complete(tool_name, call_id, _failure(message))
        return dict(_HOOK_CONTINUE)

    def _complete(self, tool_name: str, call_id: Optional[str], outcome: ToolOutcome) -> None:
        from ..streaming.events import ToolCallDone

        display = self.bridge.display_name(tool_name)
        call_id, newly_resolved = self.registry.resolve(
            display, call_id, outcome.result, failed=not outcome.success
        )
        if not newly_resolved:
            self.logger.debug("Skipping duplicate native tool result for %s", call_id)
            return
        self.logger.info("Tool call finished (native): %s id=%s success=%s", display, call_id, outcome.success)
        self.sink(
            ToolCallDone(tool_call_id=call_id, tool_name=display, result=outcome.result, success=outcome.success)
        )
