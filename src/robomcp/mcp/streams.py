"""Incremental readers for event-stream and line-delimited bodies."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import httpx

from robomcp.mcp.errors import RemoteCallError

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
LINE_STREAM_MEDIA_TYPE = "application/x-ndjson"
JSON_MEDIA_TYPE = "application/json"


@dataclass(slots=True, frozen=True)
class SSEMessage:
    """One dispatched server-sent event."""

    event: str
    data: str
    id: str | None = None


class StreamConnection(Protocol):
    """Closable streaming transport handle held by the connection pool."""

    @property
    def closed(self) -> bool:
        """Whether `aclose` already ran."""

    def messages(self) -> AsyncIterator[SSEMessage]:
        """Iterate dispatched events in arrival order."""

    async def aclose(self) -> None:
        """Close the underlying transport; repeated calls are no-ops."""


async def iter_sse_messages(lines: AsyncIterable[str]) -> AsyncIterator[SSEMessage]:
    """Frame server-sent events out of decoded lines."""
    event = "message"
    named = False
    data: list[str] = []
    last_id: str | None = None
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data or named:
                yield SSEMessage(event=event, data="\n".join(data), id=last_id)
            event, named, data = "message", False, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value or "message"
            named = bool(value)
        elif field == "data":
            data.append(value)
        elif field == "id":
            last_id = value
    if data or named:
        yield SSEMessage(event=event, data="\n".join(data), id=last_id)


async def split_lines(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield complete lines, carrying partial lines across chunks.

    The trailing partial line is yielded once the source is exhausted.
    """
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line
    if buffer:
        yield buffer


class EventSourceConnection:
    """Event-stream handle over one streaming HTTP response.

    The handle either adopts an already-open response or opens
    `GET endpoint` lazily on first read.
    """

    def __init__(
        self,
        endpoint: str,
        headers: dict[str, str],
        *,
        client: httpx.AsyncClient | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._headers = dict(headers)
        self._client = client
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def response(self) -> httpx.Response | None:
        return self._response

    async def messages(self) -> AsyncIterator[SSEMessage]:
        """Iterate events in arrival order until the stream ends."""
        if self._closed:
            msg = f"Event stream already closed: {self.endpoint}"
            raise RemoteCallError(msg, category="transport_error")
        response = self._response or await self._open()
        async for message in iter_sse_messages(response.aiter_lines()):
            yield message

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            await self._response.aclose()

    async def _open(self) -> httpx.Response:
        if self._client is None:
            msg = f"No HTTP client available to open {self.endpoint}"
            raise RemoteCallError(msg, category="transport_error")
        request = self._client.build_request(
            "GET",
            self.endpoint,
            headers={**self._headers, "Accept": EVENT_STREAM_MEDIA_TYPE},
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise RemoteCallError.from_httpx(exc) from exc
        if response.is_error:
            await response.aclose()
            raise RemoteCallError.for_status(response.status_code, response.reason_phrase)
        self._response = response
        return response
