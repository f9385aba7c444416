"""Shared utility functions for the agent stream bridge.

This module contains small, dependency-free helpers:
- JSON log previews (_preview_json)
- String normalization (_normalize_optional_str, _first_str)
- URL helpers (_hostname_of)
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

# -----------------------------------------------------------------------------
# JSON Previews
# -----------------------------------------------------------------------------

def _preview_json(value: Any, limit: int) -> str:
    """Compact JSON rendering truncated to ``limit`` characters for log lines."""
    if limit <= 0:
        return ""
    try:
        text = json.dumps(value, ensure_ascii=False, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        text = repr(value)
    if len(text) > limit:
        return text[:limit] + "…"
    return text


# -----------------------------------------------------------------------------
# String Normalization
# -----------------------------------------------------------------------------

def _normalize_optional_str(value: Any) -> Optional[str]:
    """Return a stripped string or None when the value is blank or not a string."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _first_str(payload: Mapping[str, Any], *keys: str) -> Optional[str]:
    """Return the first non-blank string value found under ``keys``."""
    for key in keys:
        value = _normalize_optional_str(payload.get(key))
        if value:
            return value
    return None


# -----------------------------------------------------------------------------
# URL Helpers
# -----------------------------------------------------------------------------

def _hostname_of(url: Any) -> Optional[str]:
    """Return the hostname of an absolute http(s) URL, or None when it has none."""
    if not isinstance(url, str) or not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https"):
        return None
    return parts.hostname or None
