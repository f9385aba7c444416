"""Stream session controller.

Drives one upstream message stream for one session key and converts it into
normalized events. The controller:

- pulls one raw message at a time, racing each pull against the session's
  cancellation token
- classifies every message once and dispatches it to the accumulator, the
  tool call registry, the tool execution bridge or the citation extractor
- yields events in the order their raw messages arrived (events pushed by
  native tool hooks are flushed before the next message is dispatched)
- guarantees exactly one ``Finish`` per session, whichever way it ends

State machine::

    IDLE -> STREAMING -> (FINISHING | FAILING | ABORTING) -> TERMINATED
"""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import enum
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Deque, List, Optional, Sequence

from ..core.config import Valves
from ..core.errors import UpstreamStreamError, describe_error
from ..core.logging_system import SessionLogger
from ..core.timing_logger import (
    clear_timing_context,
    configure_timing_file,
    set_timing_context,
    timed,
    timing_mark,
    timing_scope,
)
from ..core.utils import _normalize_optional_str, _preview_json
from ..integrations.agent_upstream import AgentUpstream
from ..requests.request_builder import StreamRequest
from ..tools.call_registry import ToolCallRegistry
from ..tools.tool_executor import NativeToolHooks, ToolExecutionBridge, normalize_tool_result
from ..tools.tool_registry import ToolDefinition
from .accumulator import StreamAccumulator
from .citations import CitationExtractor
from .events import (
    Error,
    Finish,
    NormalizedEvent,
    ToolCallDone,
    ToolCallStart,
    Usage,
    WebSearchDone,
    WebSearchSearching,
    WebSearchStart,
)
from .messages import (
    AssistantMessage,
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ErrorEvent,
    RawMessage,
    Result,
    StreamEvent,
    SubEvent,
    SystemEvent,
    ToolCall,
    ToolProgress,
    ToolResult,
    Unrecognized,
    classify_message,
)

LOGGER = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINISHING = "finishing"
    FAILING = "failing"
    ABORTING = "aborting"
    TERMINATED = "terminated"


class CancellationToken:
    """One-shot cancellation signal shared by a session and its owner."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Trigger the token. Returns False when it was already triggered."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(slots=True)
class StreamSession:
    """Mutable state of one live stream."""

    session_key: str
    token: CancellationToken = field(default_factory=CancellationToken)
    accumulator: StreamAccumulator = field(default_factory=StreamAccumulator)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.IDLE
    step_count: int = 0
    finish_emitted: bool = False
    response_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def cumulative_text(self) -> str:
        return self.accumulator.text

    @property
    def cumulative_reasoning(self) -> str:
        return self.accumulator.reasoning


_EXHAUSTED = object()


async def _pull(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


class StreamSessionController:
    """Consumes one upstream stream and yields normalized events."""

    def __init__(
        self,
        session: StreamSession,
        upstream: AgentUpstream,
        request: StreamRequest,
        *,
        tools: Optional[Sequence[ToolDefinition]] = None,
        valves: Optional[Valves] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.upstream = upstream
        self.request = request
        self.valves = valves or Valves()
        self.logger = logger or LOGGER
        self.registry = ToolCallRegistry(logger=self.logger)
        self.extractor = CitationExtractor(stride=self.valves.CITATION_INDEX_STRIDE, logger=self.logger)
        self.bridge = ToolExecutionBridge(
            tools,
            valves=self.valves,
            upstream_supports_native=bool(getattr(upstream, "supports_native_tools", False)),
            logger=self.logger,
        )
        self.hooks = NativeToolHooks(self.bridge, self.registry, self._push_hook_event, logger=self.logger)
        self._hook_events: Deque[NormalizedEvent] = deque()
        self._hook_signal: Optional[asyncio.Event] = None
        self._exhausted = False
        self._result: Optional[Result] = None
        self._iterator: Optional[AsyncIterator[Any]] = None
        self._pull_task: Optional[asyncio.Task[Any]] = None
        self._cancel_task: Optional[asyncio.Task[Any]] = None
        self._hook_task: Optional[asyncio.Task[Any]] = None
        self._shut_down = False

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _enter(self, state: SessionState) -> None:
        previous = self.session.state
        if previous is state:
            return
        self.session.state = state
        self.logger.debug("Session %s: %s -> %s", self.session.session_key, previous.value, state.value)

    def _fail(self, error: Any) -> None:
        self.session.error = describe_error(error)
        self._enter(SessionState.FAILING)

    # ------------------------------------------------------------------
    # Native hook events
    # ------------------------------------------------------------------

    def _push_hook_event(self, event: NormalizedEvent) -> None:
        if self.session.state is not SessionState.STREAMING:
            self.logger.debug("Dropping tool hook event after stream end: %s", event.type)
            return
        if isinstance(event, ToolCallDone):
            self.session.step_count += 1
        self._hook_events.append(event)
        if self._hook_signal is not None:
            self._hook_signal.set()

    def _drain_hook_events(self) -> List[NormalizedEvent]:
        events = list(self._hook_events)
        self._hook_events.clear()
        if self._hook_signal is not None:
            self._hook_signal.clear()
        return events

    # ------------------------------------------------------------------
    # Logging context
    # ------------------------------------------------------------------

    def _apply_logging_context(self) -> list[tuple[contextvars.ContextVar[Any], contextvars.Token[Any]]]:
        """Set SessionLogger contextvars for this session."""
        SessionLogger.set_max_lines(self.valves.SESSION_LOG_MAX_LINES)
        tokens: list[tuple[contextvars.ContextVar[Any], contextvars.Token[Any]]] = []
        tokens.append((SessionLogger.session_key, SessionLogger.session_key.set(self.session.session_key)))
        tokens.append((SessionLogger.request_id, SessionLogger.request_id.set(self.session.request_id)))
        tokens.append((SessionLogger.log_level, SessionLogger.log_level.set(self.valves.log_level_value)))
        if self.valves.ENABLE_TIMING_LOG:
            configure_timing_file(self.valves.TIMING_LOG_FILE)
        set_timing_context(self.session.request_id, self.valves.ENABLE_TIMING_LOG)
        return tokens

    @staticmethod
    def _restore_logging_context(tokens: list[tuple[contextvars.ContextVar[Any], contextvars.Token[Any]]]) -> None:
        for var, token in reversed(tokens):
            # Reset fails when the generator was resumed from another context.
            with contextlib.suppress(ValueError):
                var.reset(token)
        clear_timing_context()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _open_upstream(self) -> AsyncIterator[Any]:
        registration = self.bridge.native_registration(self.hooks)
        if registration is not None:
            self.logger.info(
                "Registering %d tool(s) natively on server '%s'",
                len(registration.tools),
                registration.server_name,
            )
        stream = self.upstream.stream(self.request, native_tools=registration)
        return stream.__aiter__()

    async def run(self) -> AsyncIterator[NormalizedEvent]:
        """Yield normalized events until the session reaches its terminal state."""
        session = self.session
        if session.state is not SessionState.IDLE:
            raise RuntimeError(f"Session {session.session_key!r} has already run")
        tokens = self._apply_logging_context()
        self._hook_signal = asyncio.Event()
        self._enter(SessionState.STREAMING)
        self.logger.info("Session %s started (tools=%s)", session.session_key, self.bridge.strategy)

        try:
            if session.token.cancelled:
                self._enter(SessionState.ABORTING)
            else:
                try:
                    self._iterator = self._open_upstream()
                except Exception as exc:
                    self.logger.error("Upstream stream could not be opened: %s", exc, exc_info=True)
                    self._fail(exc)

            while session.state is SessionState.STREAMING:
                if session.token.cancelled:
                    self._enter(SessionState.ABORTING)
                    break
                if self._pull_task is None:
                    self._pull_task = asyncio.create_task(_pull(self._iterator))
                if self._cancel_task is None:
                    self._cancel_task = asyncio.create_task(session.token.wait())
                if self._hook_task is None:
                    self._hook_task = asyncio.create_task(self._hook_signal.wait())

                with timing_scope("upstream_pull"):
                    done, _ = await asyncio.wait(
                        {self._pull_task, self._cancel_task, self._hook_task},
                        return_when=asyncio.FIRST_COMPLETED,
                    )

                if session.token.cancelled:
                    self._enter(SessionState.ABORTING)
                    break

                for event in self._drain_hook_events():
                    yield event
                if self._hook_task in done:
                    self._hook_task = None
                if self._pull_task not in done:
                    continue

                task, self._pull_task = self._pull_task, None
                try:
                    raw = task.result()
                except Exception as exc:
                    self.logger.error("Upstream stream failed: %s", exc, exc_info=True)
                    self._fail(exc)
                    break
                if raw is _EXHAUSTED:
                    self._exhausted = True
                    self._enter(SessionState.FINISHING)
                    break

                message = classify_message(raw)
                self._log_message(message, raw)
                try:
                    async for event in self._dispatch(message):
                        yield event
                except Exception as exc:
                    self.logger.error("Failed to process %s message: %s", message.kind, exc, exc_info=True)
                    self._fail(exc)

            if session.state is not SessionState.ABORTING:
                # Hook events that arrived before the terminal message still belong to the stream.
                for event in self._drain_hook_events():
                    yield event
            terminal = self._terminal_events()
            await self._shutdown()
            for event in terminal:
                yield event
        finally:
            if not session.finish_emitted:
                self.logger.debug("Session %s closed by its consumer before finishing", session.session_key)
            await self._shutdown()
            self._enter(SessionState.TERMINATED)
            self._restore_logging_context(tokens)
            SessionLogger.discard(session.request_id)

    async def _shutdown(self) -> None:
        """Stop background pulls, close the upstream and discard the registry. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        self._hook_events.clear()
        await self._cancel_tasks(self._pull_task, self._cancel_task, self._hook_task)
        self._pull_task = self._cancel_task = self._hook_task = None
        await self._close_iterator(self._iterator)
        self.registry.close()
        self.logger.info(
            "Session %s finished as %s (steps=%d, text_chars=%d)",
            self.session.session_key,
            self.session.state.value,
            self.session.step_count,
            len(self.session.cumulative_text),
        )

    async def _cancel_tasks(self, *tasks: Optional[asyncio.Task[Any]]) -> None:
        pending = [task for task in tasks if task is not None and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        for task in tasks:
            if task is not None and task.done() and not task.cancelled():
                exc = task.exception()
                if exc is not None and not isinstance(exc, StopAsyncIteration):
                    self.logger.debug("Background pull ended with %r", exc)

    async def _close_iterator(self, iterator: Optional[AsyncIterator[Any]]) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            self.logger.debug("Upstream iterator did not close cleanly", exc_info=True)

    def _log_message(self, message: RawMessage, raw: Any) -> None:
        if isinstance(message, Unrecognized):
            self.logger.info(
                "Skipping unrecognized upstream message (%s): %s",
                message.reason,
                _preview_json(raw, self.valves.LOG_PAYLOAD_PREVIEW_CHARS),
            )
            return
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                "Upstream message: %s %s",
                message.kind,
                _preview_json(raw, self.valves.LOG_PAYLOAD_PREVIEW_CHARS),
            )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, message: RawMessage) -> AsyncIterator[NormalizedEvent]:
        if isinstance(message, StreamEvent):
            for event in self._on_sub_event(message.sub_event):
                yield event
        elif isinstance(message, AssistantMessage):
            for event in self._on_assistant(message):
                yield event
        elif isinstance(message, Result):
            self._on_result(message)
        elif isinstance(message, ToolCall):
            async for event in self._on_tool_call(message):
                yield event
        elif isinstance(message, ToolResult):
            for event in self._on_tool_result(message):
                yield event
        elif isinstance(message, ToolProgress):
            self.logger.debug(
                "Tool progress: %s id=%s elapsed=%s",
                message.tool_name,
                message.tool_call_id,
                message.elapsed_seconds,
            )
        elif isinstance(message, SystemEvent):
            self._on_system(message)
        elif isinstance(message, ErrorEvent):
            error = UpstreamStreamError(describe_error(message.error), payload=message.error)
            self.logger.warning("Upstream reported an error: %s", error)
            self._fail(error)

    @timed
    def _on_sub_event(self, sub_event: SubEvent) -> List[NormalizedEvent]:
        acc = self.session.accumulator
        if isinstance(sub_event, ContentBlockDelta):
            if sub_event.delta_type == "text_delta":
                return _present(acc.append_text(sub_event.text))
            if sub_event.delta_type == "thinking_delta":
                return _present(acc.append_reasoning(sub_event.thinking))
            if sub_event.delta_type == "input_json_delta":
                self.logger.debug("Tool input delta: %s", (sub_event.partial_json or "")[:100])
            return []
        if isinstance(sub_event, ContentBlockStart):
            block = sub_event.block
            if block is None:
                return []
            if block.type == "thinking":
                acc.reset_reasoning()
                self.logger.debug("Reasoning block started")
                return _present(acc.append_reasoning(block.thinking))
            if block.type == "text":
                return _present(acc.append_text(block.text))
            if block.type in ("tool_use", "server_tool_use"):
                _, events = self._announce(block.name, block.id, block.input)
                return events
            return []
        if isinstance(sub_event, ContentBlockStop):
            if acc.has_reasoning:
                self.logger.debug("Content block %s stopped (reasoning chars=%d)", sub_event.index, len(acc.reasoning))
            return []
        self.logger.debug("Ignoring stream sub-event %s", getattr(sub_event, "event", "?"))
        return []

    @timed
    def _on_assistant(self, message: AssistantMessage) -> List[NormalizedEvent]:
        acc = self.session.accumulator
        events: List[NormalizedEvent] = []
        for block in message.blocks:
            if block.type == "text":
                events.extend(_present(acc.append_text_block(block.text)))
            elif block.type == "thinking":
                events.extend(_present(acc.append_reasoning_block(block.thinking)))
            elif block.type in ("tool_use", "server_tool_use"):
                events.extend(self._announce(block.name, block.id, block.input)[1])
        return events

    def _on_result(self, message: Result) -> None:
        self._result = message
        if message.success:
            self.logger.info(
                "Result received: success (input_tokens=%s, output_tokens=%s, cost=%s, duration_ms=%s)",
                message.input_tokens,
                message.output_tokens,
                message.total_cost_usd,
                message.duration_ms,
            )
            self._enter(SessionState.FINISHING)
            return
        self.logger.warning("Result received: %s", message.subtype or "error")
        self._fail(UpstreamStreamError(describe_error(message.error), payload=message.error))

    def _on_system(self, message: SystemEvent) -> None:
        if message.subtype == "init" and message.session_id:
            self.session.response_id = message.session_id
            self.logger.info("Upstream session initialized: %s", message.session_id)
        elif message.subtype == "status":
            self.logger.debug("Upstream status: %s", message.status)
        else:
            self.logger.debug("Informational upstream message: %s", message.subtype)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _web_action(self, name: str) -> Optional[str]:
        if name in self.valves.web_search_tools:
            return "search"
        if name in self.valves.web_fetch_tools:
            return "open_page"
        return None

    @timed
    def _announce(
        self,
        name: Optional[str],
        supplied_id: Optional[str],
        arguments: Any,
    ) -> tuple[Optional[str], List[NormalizedEvent]]:
        """Register a tool announcement; returns ``(call_id, events)``."""
        raw_name = name or "unknown_tool"
        if self.bridge.handles_natively(raw_name):
            self.logger.debug("Skipping stream announcement for native tool %s", raw_name)
            return None, []
        display = self.bridge.display_name(raw_name)
        call_id, is_new = self.registry.announce(display, supplied_id, arguments)
        if not is_new:
            return call_id, []

        self.logger.info("Tool call started: %s id=%s", display, call_id)
        timing_mark(f"tool_call:{display}")
        action = self._web_action(display)
        if action is None:
            return call_id, [ToolCallStart(tool_call_id=call_id, tool_name=display, args=arguments)]
        query = url = None
        if isinstance(arguments, dict):
            query = _normalize_optional_str(arguments.get("query"))
            url = _normalize_optional_str(arguments.get("url"))
        return call_id, [
            WebSearchStart(search_id=call_id, action=action, query=query, url=url),
            WebSearchSearching(search_id=call_id, action=action, query=query, url=url),
        ]

    async def _on_tool_call(self, message: ToolCall) -> AsyncIterator[NormalizedEvent]:
        call_id, events = self._announce(message.tool_name, message.tool_call_id, message.input)
        for event in events:
            yield event
        if call_id is None or not self.bridge.executes(message.tool_name):
            return
        record = self.registry.get(call_id)
        if record is None or not record.pending:
            return
        arguments = message.input if message.input is not None else record.arguments
        self.logger.info("Executing tool %s id=%s", record.name, call_id)
        outcome = await self.bridge.execute(message.tool_name, arguments)
        call_id, newly_resolved = self.registry.resolve(
            record.name, call_id, outcome.result, failed=not outcome.success
        )
        if newly_resolved:
            for event in self._completion_events(record.name, call_id, outcome.result, outcome.success):
                yield event

    @timed
    def _on_tool_result(self, message: ToolResult) -> List[NormalizedEvent]:
        if self.bridge.handles_natively(message.tool_name):
            self.logger.debug("Skipping stream result for native tool %s", message.tool_name)
            return []
        display = self.bridge.display_name(message.tool_name)
        known = self.registry.get(message.tool_call_id) if message.tool_call_id else None
        if known is not None:
            display = known.name
        outcome = normalize_tool_result(message.result)
        success = outcome.success and not message.is_error
        call_id, newly_resolved = self.registry.resolve(
            display, message.tool_call_id, outcome.result, failed=not success
        )
        if not newly_resolved:
            self.logger.debug("Skipping duplicate tool result for %s", call_id)
            return []
        return self._completion_events(display, call_id, outcome.result, success)

    def _completion_events(self, name: str, call_id: str, result: Any, success: bool) -> List[NormalizedEvent]:
        self.session.step_count += 1
        self.logger.info("Tool call finished: %s id=%s success=%s", name, call_id, success)
        sources = self.extractor.sources_for_result(result)
        action = self._web_action(name)
        events: List[NormalizedEvent] = []
        if action is None:
            events.append(ToolCallDone(tool_call_id=call_id, tool_name=name, result=result, success=success))
        else:
            url = _normalize_optional_str(result.get("url")) if isinstance(result, dict) else None
            events.append(
                WebSearchDone(
                    search_id=call_id,
                    action=action,
                    domains=self.extractor.domains(self.extractor.dedupe(sources)),
                    url=url,
                )
            )
        annotations = self.extractor.build(sources)
        if annotations is not None:
            events.append(annotations)
        return events

    # ------------------------------------------------------------------
    # Terminal events
    # ------------------------------------------------------------------

    def _usage(self) -> Optional[Usage]:
        result = self._result
        if result is None or not result.success:
            return None
        return Usage(
            prompt_tokens=result.input_tokens or 0,
            completion_tokens=result.output_tokens or 0,
            cost_usd=result.total_cost_usd,
            duration_ms=result.duration_ms,
        )

    @timed
    def _terminal_events(self) -> List[NormalizedEvent]:
        session = self.session
        if session.finish_emitted:
            return []
        acc = session.accumulator
        events: List[NormalizedEvent] = []
        state = session.state

        if state is SessionState.FINISHING:
            result = self._result
            if result is not None and result.result and not acc.has_text:
                self.logger.debug("No streamed text; using the result text")
                events.extend(_present(acc.append_text(result.result)))
            if not self._exhausted or acc.has_text:
                events.extend(_present(acc.finalize()))
            events.extend(_present(acc.finalize_reasoning()))
            if self.valves.ENABLE_FINAL_CITATION_PASS and acc.has_text:
                events.extend(_present(self.extractor.from_text(acc.text)))
            events.append(self._finish(self._usage()))
        elif state is SessionState.FAILING:
            events.append(Error(error=session.error or describe_error(None)))
            events.append(self._finish(None))
        else:
            if state is not SessionState.ABORTING:
                self.logger.warning("Session %s ended in unexpected state %s", session.session_key, state.value)
            self.logger.info("Session %s aborted (%s)", session.session_key, session.token.reason or "stopped")
            events.append(self._finish(None))

        session.finish_emitted = True
        return events

    def _finish(self, usage: Optional[Usage]) -> Finish:
        return Finish(usage=usage, total_steps=self.session.step_count, response_id=self.session.response_id)


def _present(event: Optional[NormalizedEvent]) -> List[NormalizedEvent]:
    return [event] if event is not None else []
