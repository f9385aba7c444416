"""Stream request model and upstream payload construction.

This module handles request-side concerns:
- StreamRequest: prompt, history, attachments and model settings for one stream
- build_prompt: flatten history into the single prompt the agent receives
- max_thinking_tokens: explicit effort budget or prompt-detected budget
- to_payload: JSON body for HTTP upstreams
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import (
    THINKING_BUDGET_BASIC,
    THINKING_BUDGET_BY_EFFORT,
    THINKING_BUDGET_MEGA,
    THINKING_BUDGET_ULTRA,
)
from ..core.timing_logger import timed

if TYPE_CHECKING:
    from ..integrations.agent_upstream import NativeToolRegistration

LOGGER = logging.getLogger(__name__)

IMAGE_NOTE = "\n\nNOTE: The user attached images. If you need details, ask the user to describe them."

# Highest tier first; the first matching tier wins.
_ULTRA_PHRASES = (
    "ultrathink",
    "think harder",
    "think intensely",
    "think longer",
    "think really hard",
    "think super hard",
    "think very hard",
    "deeply analyze",
    "thorough analysis",
    "comprehensive analysis",
)
_MEGA_PHRASES = (
    "megathink",
    "think hard",
    "think deeply",
    "think more",
    "think about it",
    "think a lot",
    "step by step",
    "carefully consider",
    "analyze this",
)
_THINK_WORD_RE = re.compile(r"\bthink\b")


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ImageAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: str
    media_type: str = Field(alias="mediaType")


class StreamRequest(BaseModel):
    """Everything the upstream needs to start one agent turn."""

    model_config = ConfigDict(extra="allow")

    prompt: str
    messages: List[ChatMessage] = Field(default_factory=list)
    images: List[ImageAttachment] = Field(default_factory=list)
    model_id: Optional[str] = None
    system_prompt: Optional[str] = None
    reasoning_effort: Optional[Literal["low", "medium", "high", "none"]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @timed
    def build_prompt(self) -> str:
        """Return the prompt text, prefixed with role-tagged history when present."""
        note = IMAGE_NOTE if self.images else ""
        if not self.messages:
            return f"{self.prompt}{note}"
        history = "\n\n".join(f"{msg.role.upper()}: {msg.content}" for msg in self.messages)
        return f"{history}\n\nUSER: {self.prompt}{note}"

    @timed
    def max_thinking_tokens(self) -> Optional[int]:
        """Explicit effort wins; otherwise detect a budget from the final prompt."""
        effort = self.reasoning_effort
        if effort and effort != "none":
            return THINKING_BUDGET_BY_EFFORT.get(effort)
        return detect_thinking_budget(self.build_prompt())

    @timed
    def to_payload(self, native_tools: Optional["NativeToolRegistration"] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": self.build_prompt(),
            "model": self.model_id,
            "system_prompt": self.system_prompt,
            "include_partial_messages": True,
        }
        budget = self.max_thinking_tokens()
        if budget:
            payload["max_thinking_tokens"] = budget
        if self.images:
            payload["images"] = [
                {"type": "image", "data": image.data, "media_type": image.media_type}
                for image in self.images
            ]
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        if native_tools is not None:
            payload["tools"] = list(native_tools.tools)
            payload["allowed_tools"] = list(native_tools.allowed_tools)
        return {key: value for key, value in payload.items() if value is not None}


@timed
def detect_thinking_budget(prompt: str) -> Optional[int]:
    """Return a reasoning token budget implied by trigger phrases in ``prompt``."""
    lowered = (prompt or "").lower()
    if any(phrase in lowered for phrase in _ULTRA_PHRASES):
        return THINKING_BUDGET_ULTRA
    if any(phrase in lowered for phrase in _MEGA_PHRASES):
        return THINKING_BUDGET_MEGA
    if _THINK_WORD_RE.search(lowered):
        return THINKING_BUDGET_BASIC
    return None
