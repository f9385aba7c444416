"""Incremental text and reasoning accumulation for one stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .events import ReasoningDelta, ReasoningDone, TextDelta, TextDone


@dataclass(slots=True)
class _Buffer:
    parts: list[str] = field(default_factory=list)
    length: int = 0

    def append(self, chunk: str) -> None:
        self.parts.append(chunk)
        self.length += len(chunk)

    def ends_with(self, chunk: str) -> bool:
        if not chunk or self.length < len(chunk):
            return False
        return self.value().endswith(chunk)

    def value(self) -> str:
        if len(self.parts) > 1:
            self.parts[:] = ["".join(self.parts)]
        return self.parts[0] if self.parts else ""

    def clear(self) -> None:
        self.parts.clear()
        self.length = 0


class StreamAccumulator:
    """Running text and reasoning buffers for a single session.

    Two append flavours exist for each channel:

    - ``append_text`` / ``append_reasoning`` take fine-grained deltas and
      concatenate them verbatim.
    - ``append_text_block`` / ``append_reasoning_block`` take complete blocks
      (the non-incremental fallback) and drop the chunk when the buffer
      already ends with it, so content delivered both ways is kept once.

    ``finalize`` produces ``TextDone`` at most once per accumulator.
    """

    def __init__(self) -> None:
        self._text = _Buffer()
        self._reasoning = _Buffer()
        self._text_done = False
        self._reasoning_done = False

    # -- text ------------------------------------------------------------------

    @property
    def text(self) -> str:
        return self._text.value()

    @property
    def has_text(self) -> bool:
        return self._text.length > 0

    def append_text(self, chunk: Optional[str]) -> Optional[TextDelta]:
        if not chunk or self._text_done:
            return None
        self._text.append(chunk)
        return TextDelta(delta=chunk)

    def append_text_block(self, chunk: Optional[str]) -> Optional[TextDelta]:
        if not chunk or self._text.ends_with(chunk):
            return None
        return self.append_text(chunk)

    def finalize(self) -> Optional[TextDone]:
        """Return ``TextDone`` with the full text on the first call, None afterwards."""
        if self._text_done:
            return None
        self._text_done = True
        return TextDone(text=self._text.value())

    @property
    def finalized(self) -> bool:
        return self._text_done

    # -- reasoning -------------------------------------------------------------

    @property
    def reasoning(self) -> str:
        return self._reasoning.value()

    @property
    def has_reasoning(self) -> bool:
        return self._reasoning.length > 0

    def reset_reasoning(self) -> None:
        """Clear the reasoning buffer when a new reasoning block starts."""
        self._reasoning.clear()
        self._reasoning_done = False

    def append_reasoning(self, chunk: Optional[str]) -> Optional[ReasoningDelta]:
        if not chunk:
            return None
        self._reasoning.append(chunk)
        return ReasoningDelta(delta=chunk)

    def append_reasoning_block(self, chunk: Optional[str]) -> Optional[ReasoningDelta]:
        if not chunk or self._reasoning.ends_with(chunk):
            return None
        return self.append_reasoning(chunk)

    def finalize_reasoning(self) -> Optional[ReasoningDone]:
        """Return ``ReasoningDone`` once, and only when reasoning was received."""
        if self._reasoning_done or not self.has_reasoning:
            return None
        self._reasoning_done = True
        return ReasoningDone(text=self._reasoning.value())
