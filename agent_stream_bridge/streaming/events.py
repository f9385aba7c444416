"""Normalized events emitted to the application layer.

These models are the stable boundary the UI is built against. Each event has a
kebab-case ``type`` and serializes to camelCase keys through ``to_dict()``;
fields left as ``None`` are omitted from the wire shape.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, arbitrary_types_allowed=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Text & reasoning
# -----------------------------------------------------------------------------

class TextDelta(_Event):
    type: Literal["text-delta"] = "text-delta"
    delta: str


class TextDone(_Event):
    type: Literal["text-done"] = "text-done"
    text: str


class ReasoningDelta(_Event):
    type: Literal["reasoning-summary-delta"] = "reasoning-summary-delta"
    delta: str
    summary_index: int = Field(default=0, serialization_alias="summaryIndex")


class ReasoningDone(_Event):
    type: Literal["reasoning-summary-done"] = "reasoning-summary-done"
    text: str
    summary_index: int = Field(default=0, serialization_alias="summaryIndex")


# -----------------------------------------------------------------------------
# Tools
# -----------------------------------------------------------------------------

class ToolCallStart(_Event):
    type: Literal["tool-call-start"] = "tool-call-start"
    tool_call_id: str = Field(serialization_alias="toolCallId")
    tool_name: str = Field(serialization_alias="toolName")
    args: Any = None


class ToolCallDone(_Event):
    type: Literal["tool-call-done"] = "tool-call-done"
    tool_call_id: str = Field(serialization_alias="toolCallId")
    tool_name: str = Field(serialization_alias="toolName")
    result: Any = None
    success: bool = True


WebSearchAction = Literal["search", "open_page"]


class WebSearchStart(_Event):
    type: Literal["web-search-start"] = "web-search-start"
    search_id: str = Field(serialization_alias="searchId")
    action: WebSearchAction
    query: Optional[str] = None
    url: Optional[str] = None


class WebSearchSearching(_Event):
    type: Literal["web-search-searching"] = "web-search-searching"
    search_id: str = Field(serialization_alias="searchId")
    action: WebSearchAction
    query: Optional[str] = None
    url: Optional[str] = None


class WebSearchDone(_Event):
    type: Literal["web-search-done"] = "web-search-done"
    search_id: str = Field(serialization_alias="searchId")
    action: WebSearchAction
    domains: tuple[str, ...] = ()
    url: Optional[str] = None


# -----------------------------------------------------------------------------
# Citations
# -----------------------------------------------------------------------------

class Annotation(_Event):
    """A URL citation.

    ``start_index``/``end_index`` are placeholder positions assigned by
    ordinal (``i * stride``); they are not character offsets into the text.
    """

    type: Literal["url_citation"] = "url_citation"
    url: str
    title: Optional[str] = None
    start_index: int = Field(serialization_alias="startIndex")
    end_index: int = Field(serialization_alias="endIndex")


class Annotations(_Event):
    type: Literal["annotations"] = "annotations"
    annotations: tuple[Annotation, ...]


# -----------------------------------------------------------------------------
# Terminal
# -----------------------------------------------------------------------------

class Usage(_Event):
    prompt_tokens: int = Field(default=0, serialization_alias="promptTokens")
    completion_tokens: int = Field(default=0, serialization_alias="completionTokens")
    cost_usd: Optional[float] = Field(default=None, serialization_alias="costUsd")
    duration_ms: Optional[float] = Field(default=None, serialization_alias="durationMs")


class Error(_Event):
    type: Literal["error"] = "error"
    error: str


class Finish(_Event):
    type: Literal["finish"] = "finish"
    usage: Optional[Usage] = None
    total_steps: int = Field(default=0, serialization_alias="totalSteps")
    response_id: Optional[str] = Field(default=None, serialization_alias="responseId")


NormalizedEvent = Union[
    TextDelta,
    TextDone,
    ReasoningDelta,
    ReasoningDone,
    ToolCallStart,
    ToolCallDone,
    WebSearchStart,
    WebSearchSearching,
    WebSearchDone,
    Annotations,
    Error,
    Finish,
]
