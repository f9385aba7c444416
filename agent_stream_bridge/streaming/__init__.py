"""Streaming subsystem.

This package contains the stream normalization pipeline:
- messages: raw upstream message model and classifier
- events: normalized events emitted to the application
- accumulator: incremental text and reasoning buffers
- citations: annotation extraction from tool results and text
- stream_controller: per-session consume loop and state machine
- session_manager: live-session table with start/stop
- event_emitter: forwarding events into application callbacks

NOTE: The controller and session manager import the tools subsystem; they are
not loaded eagerly here. Import them from their submodules.
"""

from .messages import RawMessage, classify_message
from .events import NormalizedEvent
from .accumulator import StreamAccumulator
from .citations import CitationExtractor

__all__ = [
    "RawMessage",
    "classify_message",
    "NormalizedEvent",
    "StreamAccumulator",
    "CitationExtractor",
]
