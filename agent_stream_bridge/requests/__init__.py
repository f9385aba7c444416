"""Request handling subsystem.

- request_builder: StreamRequest model, prompt flattening and thinking budgets
"""

from __future__ import annotations

from .request_builder import ChatMessage, ImageAttachment, StreamRequest, detect_thinking_budget

__all__ = [
    "ChatMessage",
    "ImageAttachment",
    "StreamRequest",
    "detect_thinking_budget",
]
