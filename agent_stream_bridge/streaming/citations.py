"""Citation extraction from tool results and free text.

Structured sources (``sources``/``results``/``urls`` arrays or a single
``url``) win over text scanning. Text scanning picks up markdown links first
and bare URLs from the remaining text, with the hostname as title.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Optional, Tuple

from .events import Annotation, Annotations
from ..core.timing_logger import timed
from ..core.utils import _hostname_of, _normalize_optional_str

LOGGER = logging.getLogger(__name__)

_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_BARE_URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")
_TRAILING_PUNCTUATION = ".,;:!?)'\""
_SOURCE_LIST_KEYS = ("sources", "results", "urls")

Source = Tuple[str, Optional[str]]


class CitationExtractor:
    """Turn tool results and text into deduplicated ``Annotations`` events."""

    def __init__(self, *, stride: int = 100, logger: Optional[logging.Logger] = None) -> None:
        self.stride = max(1, int(stride))
        self.logger = logger or LOGGER

    # -- source collection -----------------------------------------------------

    @staticmethod
    def _source_from_item(item: Any) -> Optional[Source]:
        if isinstance(item, str):
            url = _normalize_optional_str(item)
            return (url, None) if url else None
        if isinstance(item, dict):
            url = _normalize_optional_str(item.get("url"))
            if not url:
                return None
            title = _normalize_optional_str(item.get("title"))
            if title is None:
                snippet = _normalize_optional_str(item.get("snippet"))
                title = snippet[:100] if snippet else None
            return url, title
        return None

    @timed
    def structured_sources(self, result: Any) -> List[Source]:
        """Return ``(url, title)`` pairs from structured result fields."""
        if not isinstance(result, dict):
            return []
        sources: List[Source] = []
        for key in _SOURCE_LIST_KEYS:
            items = result.get(key)
            if not isinstance(items, list):
                continue
            for item in items:
                source = self._source_from_item(item)
                if source is not None:
                    sources.append(source)
        single = self._source_from_item(result) if isinstance(result.get("url"), str) else None
        if single is not None:
            sources.append(single)
        return sources

    @timed
    def text_sources(self, text: Any) -> List[Source]:
        """Scan free text for markdown links and bare http(s) URLs."""
        if not isinstance(text, str) or not text:
            return []
        sources: List[Source] = []
        for match in _MARKDOWN_LINK_RE.finditer(text):
            sources.append((match.group(2), match.group(1).strip() or None))
        remainder = _MARKDOWN_LINK_RE.sub(" ", text)
        for match in _BARE_URL_RE.finditer(remainder):
            url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
            hostname = _hostname_of(url)
            if not hostname:
                continue
            sources.append((url, hostname))
        return sources

    @timed
    def sources_for_result(self, result: Any) -> List[Source]:
        """Structured sources when present, otherwise scanned text."""
        sources = self.structured_sources(result)
        if sources:
            return sources
        if isinstance(result, dict):
            return self.text_sources(result.get("content"))
        return self.text_sources(result)

    # -- annotation building ---------------------------------------------------

    @staticmethod
    def dedupe(sources: Iterable[Source]) -> List[Source]:
        """Keep the first occurrence of each exact URL along with its title."""
        seen: dict[str, Optional[str]] = {}
        for url, title in sources:
            if url and url not in seen:
                seen[url] = title
        return list(seen.items())

    @staticmethod
    def domains(sources: Iterable[Source]) -> Tuple[str, ...]:
        domains: List[str] = []
        for url, _ in sources:
            hostname = _hostname_of(url) or url
            if hostname:
                domains.append(hostname)
        return tuple(domains)

    @timed
    def build(self, sources: Iterable[Source]) -> Optional[Annotations]:
        """Return one ``Annotations`` event for the unique sources, or None."""
        unique = self.dedupe(sources)
        if not unique:
            return None
        annotations = tuple(
            Annotation(
                url=url,
                title=title,
                start_index=index * self.stride,
                end_index=(index + 1) * self.stride,
            )
            for index, (url, title) in enumerate(unique)
        )
        self.logger.debug("Built %d citation annotation(s)", len(annotations))
        return Annotations(annotations=annotations)

    def from_result(self, result: Any) -> Optional[Annotations]:
        return self.build(self.sources_for_result(result))

    def from_text(self, text: str) -> Optional[Annotations]:
        return self.build(self.text_sources(text))
