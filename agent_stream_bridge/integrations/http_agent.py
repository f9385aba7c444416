"""HTTP upstream for agent services that stream over SSE or NDJSON.

The request is POSTed as JSON; the response body is split into raw messages:

- SSE: ``data:`` lines accumulate until a blank line ends the event
- NDJSON: every other non-blank line is one message

``[DONE]`` ends the stream in either format. Messages are yielded as the raw
JSON text; decoding and classification happen in the session controller.
Connection drops propagate to the caller and are not retried.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Dict, List, Optional

import aiohttp

from ..core.config import Valves
from ..core.errors import UpstreamHTTPError
from ..core.timing_logger import timed, timing_mark
from ..core.utils import _preview_json
from ..requests.request_builder import StreamRequest
from .agent_upstream import NativeToolRegistration

LOGGER = logging.getLogger(__name__)

_DONE = b"[DONE]"
_SSE_FIELD_PREFIXES = (b"event:", b"id:", b"retry:")


class HttpAgentUpstream:
    """Streams raw agent messages from an HTTP endpoint."""

    supports_native_tools = False

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        valves: Optional[Valves] = None,
        chunk_size: int = 4096,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self._session = session
        self.valves = valves or Valves()
        self.chunk_size = max(1, chunk_size)
        self.logger = logger or LOGGER

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.valves.HTTP_CONNECT_TIMEOUT_SECONDS,
            sock_read=self.valves.HTTP_SOCK_READ_SECONDS,
        )

    @timed
    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream, application/x-ndjson"}
        headers.update(self.headers)
        return headers

    async def stream(
        self,
        request: StreamRequest,
        *,
        native_tools: Optional[NativeToolRegistration] = None,
    ) -> AsyncGenerator[str, None]:
        if native_tools is not None:
            self.logger.warning("HTTP upstream cannot host tools natively; ignoring the registration")
        payload = request.to_payload()
        self.logger.debug(
            "Upstream request payload: %s",
            _preview_json(payload, self.valves.LOG_PAYLOAD_PREVIEW_CHARS),
        )

        session = self._session
        owns_session = session is None
        if session is None:
            session = aiohttp.ClientSession(timeout=self._timeout())
        try:
            async with session.post(self.url, json=payload, headers=self._build_headers()) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise UpstreamHTTPError(
                        status=resp.status,
                        reason=resp.reason or "",
                        body=body,
                        url=self.url,
                    )
                timing_mark("upstream_response_headers")
                async for message in self._iter_messages(resp):
                    yield message
        finally:
            if owns_session:
                await session.close()

    async def _iter_messages(self, resp: aiohttp.ClientResponse) -> AsyncGenerator[str, None]:
        buf = bytearray()
        data_parts: List[bytes] = []
        async for chunk in resp.content.iter_chunked(self.chunk_size):
            buf.extend(chunk)
            start_idx = 0
            while True:
                newline_idx = buf.find(b"\n", start_idx)
                if newline_idx == -1:
                    break
                line = bytes(buf[start_idx:newline_idx])
                start_idx = newline_idx + 1
                for item in self._consume_line(line, data_parts):
                    if item is None:
                        return
                    yield item
            if start_idx > 0:
                del buf[:start_idx]

        if buf:
            for item in self._consume_line(bytes(buf), data_parts):
                if item is None:
                    return
                yield item
        for item in self._flush(data_parts):
            if item is None:
                return
            yield item

    def _consume_line(self, line: bytes, data_parts: List[bytes]) -> List[Optional[str]]:
        """Return decoded messages completed by ``line``; None marks end of stream."""
        stripped = line.strip()
        if not stripped:
            return self._flush(data_parts)
        if stripped.startswith(b":") or stripped.startswith(_SSE_FIELD_PREFIXES):
            return []
        if stripped.startswith(b"data:"):
            data_parts.append(stripped[5:].lstrip())
            return []
        # NDJSON line
        items = self._flush(data_parts)
        if items and items[-1] is None:
            return items
        if stripped == _DONE:
            items.append(None)
        else:
            items.append(stripped.decode("utf-8", errors="replace"))
        return items

    @staticmethod
    def _flush(data_parts: List[bytes]) -> List[Optional[str]]:
        if not data_parts:
            return []
        blob = b"\n".join(data_parts).strip()
        data_parts.clear()
        if not blob:
            return []
        if blob == _DONE:
            return [None]
        return [blob.decode("utf-8", errors="replace")]

