"""Live-session table and the start/stop control surface.

At most one session is live per key: ``start`` cancels and replaces any
session already registered under the key before returning the new stream.
Entries are removed when their stream terminates or on ``stop``.

``start`` and ``stop`` mutate the table synchronously and are expected to be
called from the event loop thread.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Union

from ..core.config import Valves
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed
from ..integrations.agent_upstream import AgentUpstream
from ..requests.request_builder import StreamRequest
from ..tools.tool_registry import ToolDefinition
from .event_emitter import EventEmitter, EventEmitterHandler, StreamOutcome
from .events import NormalizedEvent
from .stream_controller import StreamSession, StreamSessionController

LOGGER = logging.getLogger(__name__)


class SessionManager:
    """Owns the live sessions for one upstream."""

    def __init__(
        self,
        upstream: AgentUpstream,
        *,
        valves: Optional[Valves] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.upstream = upstream
        self.valves = valves or Valves()
        self.logger = logger or SessionLogger.get_logger(__name__)
        self.emitter_handler = EventEmitterHandler(logger=self.logger)
        self._sessions: Dict[str, StreamSession] = {}

    @timed
    def start(
        self,
        session_key: str,
        request: Union[StreamRequest, Mapping[str, Any]],
        *,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> AsyncIterator[NormalizedEvent]:
        """Register a new session for ``session_key`` and return its event stream."""
        if not isinstance(request, StreamRequest):
            request = StreamRequest.model_validate(dict(request))
        existing = self._sessions.get(session_key)
        if existing is not None:
            existing.token.cancel("replaced")
            self.logger.info("Session %s replaced by a new stream", session_key)
        SessionLogger.cleanup()
        session = StreamSession(session_key=session_key)
        self._sessions[session_key] = session
        controller = StreamSessionController(
            session,
            self.upstream,
            request,
            tools=tools,
            valves=self.valves,
            logger=self.logger,
        )
        return self._iterate(controller)

    async def _iterate(self, controller: StreamSessionController) -> AsyncIterator[NormalizedEvent]:
        session = controller.session
        try:
            async with contextlib.aclosing(controller.run()) as events:
                async for event in events:
                    yield event
        finally:
            self._release(session)

    def _release(self, session: StreamSession) -> None:
        if self._sessions.get(session.session_key) is session:
            del self._sessions[session.session_key]

    @timed
    def stop(self, session_key: str) -> bool:
        """Cancel the live session for ``session_key``. True when one was cancelled."""
        session = self._sessions.pop(session_key, None)
        if session is None:
            return False
        cancelled = session.token.cancel("stopped")
        self.logger.info("Session %s stop requested", session_key)
        return cancelled

    @timed
    async def run(
        self,
        session_key: str,
        request: Union[StreamRequest, Mapping[str, Any]],
        emitter: Optional[EventEmitter],
        *,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> StreamOutcome:
        """Start a session and forward all of its events to ``emitter``."""
        events = self.start(session_key, request, tools=tools)
        async with contextlib.aclosing(events):
            return await self.emitter_handler.forward(events, emitter)

    def is_active(self, session_key: str) -> bool:
        return session_key in self._sessions

    def active_keys(self) -> List[str]:
        return list(self._sessions)
