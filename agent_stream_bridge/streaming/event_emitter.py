"""Delivery of normalized events to the application.

Handles forwarding a session's event stream into an application callback
(sync or async) and summarising the run as a ``StreamOutcome``.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from ..core.timing_logger import timed, timing_mark
from .events import Error, Finish, NormalizedEvent, TextDelta, TextDone

LOGGER = logging.getLogger(__name__)

EventEmitter = Callable[[dict[str, Any]], Union[Awaitable[None], None]]


@dataclass(slots=True)
class StreamOutcome:
    """What a caller needs once a session has ended."""

    text: str = ""
    response_id: Optional[str] = None
    error: Optional[str] = None
    finished: bool = False
    total_steps: int = 0


class EventEmitterHandler:
    """Forwards normalized events to an emitter callback.

    Emitter failures (closed sockets, dropped IPC channels) are logged and
    swallowed: the session keeps being consumed so it still reaches its
    terminal state and releases its upstream.
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOGGER

    @timed
    def _wrap_safe_event_emitter(
        self,
        emitter: EventEmitter | None,
    ) -> Callable[[dict[str, Any]], Awaitable[None]] | None:
        """Return an emitter wrapper that swallows downstream transport errors."""

        if emitter is None:
            return None

        async def _guarded(event: dict[str, Any]) -> None:
            try:
                result = emitter(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                evt_type = event.get("type") if isinstance(event, dict) else None
                suffix = f" ({evt_type})" if evt_type else ""
                self.logger.warning("Event emitter failure%s: %s", suffix, exc)

        return _guarded

    @timed
    async def forward(
        self,
        events: AsyncIterator[NormalizedEvent],
        emitter: EventEmitter | None,
    ) -> StreamOutcome:
        """Drive ``events`` to completion, emitting each one's wire dict."""
        guarded = self._wrap_safe_event_emitter(emitter)
        outcome = StreamOutcome()
        text_parts: list[str] = []
        text_done = False
        first = True
        async for event in events:
            if first:
                timing_mark("first_event")
                first = False
            if isinstance(event, TextDelta):
                text_parts.append(event.delta)
            elif isinstance(event, TextDone):
                outcome.text = event.text
                text_done = True
            elif isinstance(event, Error):
                outcome.error = event.error
            elif isinstance(event, Finish):
                outcome.finished = True
                outcome.response_id = event.response_id
                outcome.total_steps = event.total_steps
            if guarded is not None:
                await guarded(event.to_dict())
        if not text_done:
            outcome.text = "".join(text_parts)
        return outcome
