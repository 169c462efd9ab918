"""Normalize the remote API's response shapes into one text result."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from enum import StrEnum
from typing import Final
from uuid import uuid4

import httpx

from robomcp.mcp.errors import RemoteCallError
from robomcp.mcp.pool import ConnectionPool
from robomcp.mcp.retry import Sleep
from robomcp.mcp.streams import (
    EVENT_STREAM_MEDIA_TYPE,
    LINE_STREAM_MEDIA_TYPE,
    SSEMessage,
    StreamConnection,
    split_lines,
)
from robomcp.mcp.types import (
    EventKind,
    JSONObject,
    JSONValue,
    StreamEvent,
    TextResult,
    stringify,
    to_pretty_json,
)

logger = logging.getLogger(__name__)

OPERATION_ID_HEADER: Final[str] = "x-operation-id"
DEFAULT_STREAM_TIMEOUT_SECONDS: Final[float] = 300.0

_PROGRESS_EVENTS: Final[frozenset[str]] = frozenset({"progress", "operation_progress"})
_TERMINAL_EVENTS: Final[frozenset[str]] = frozenset(
    {"complete", "operation_completed", "operation_error", "error"}
)
_COMPLETION_EVENT_NAMES: Final[frozenset[str]] = frozenset(
    {"operation_completed", "complete", "query_complete", "result", "query_result"}
)


class ResponseKind(StrEnum):
    """Response shapes accepted from `call-tool`."""

    DOCUMENT = "document"
    EVENT_STREAM = "event_stream"
    LINE_STREAM = "line_stream"
    QUEUED = "queued"


def classify_response(content_type: str, status_code: int) -> ResponseKind:
    """Decide the response shape once, at the boundary."""
    lowered = content_type.lower()
    if EVENT_STREAM_MEDIA_TYPE in lowered:
        return ResponseKind.EVENT_STREAM
    if LINE_STREAM_MEDIA_TYPE in lowered:
        return ResponseKind.LINE_STREAM
    if status_code == 202:
        return ResponseKind.QUEUED
    return ResponseKind.DOCUMENT


@dataclass(slots=True, frozen=True)
class PollPolicy:
    """Backoff budget for deferred (queued) results."""

    initial_delay_seconds: float = 1.0
    backoff_factor: float = 1.5
    max_delay_seconds: float = 10.0
    max_attempts: int = 30


def aggregate_events(events: Sequence[StreamEvent]) -> TextResult:
    """Reduce an ordered event sequence to one result.

    Strategies are tried in priority order and the first match wins: error
    event, explicit query result, merged chunks, completion event, and
    finally the whole sequence.
    """
    error_event = next((event for event in events if event.kind is EventKind.ERROR), None)
    if error_event is not None:
        message = _error_message(error_event.payload, default="Tool execution failed")
        return TextResult.failure(f"Error: {message}")

    query_result = next((event for event in events if event.name == "query_result"), None)
    if query_result is not None:
        result = query_result.field("result")
        if _present(result):
            return TextResult(text=stringify(result))

    merged = _merge_chunks([event for event in events if event.kind is EventKind.CHUNK])
    if merged is not None:
        return TextResult(text=to_pretty_json(merged))

    completion = next((event for event in events if event.name in _COMPLETION_EVENT_NAMES), None)
    if completion is not None:
        result = completion.field("result")
        return TextResult(text=stringify(result if _present(result) else completion.payload))

    return TextResult(text=to_pretty_json([event.to_json() for event in events]))


def _merge_chunks(chunks: Sequence[StreamEvent]) -> JSONObject | None:
    columns: list[JSONValue] | None = None
    rows: list[JSONValue] = []
    for chunk in chunks:
        chunk_columns = chunk.field("columns")
        if columns is None and isinstance(chunk_columns, list):
            columns = chunk_columns
        chunk_rows = chunk.field("data")
        if isinstance(chunk_rows, list):
            rows.extend(chunk_rows)
    if not rows and columns is None:
        return None
    return {"columns": columns or [], "data": rows, "row_count": len(rows)}


def _present(value: JSONValue) -> bool:
    return value is not None and value != ""


def _carries_result(payload: JSONValue) -> bool:
    return isinstance(payload, dict) and _present(payload.get("result"))


async def _raise_for_stream_status(response: httpx.Response) -> None:
    if response.is_error:
        await response.aclose()
        raise RemoteCallError.for_status(response.status_code, response.reason_phrase)


def _error_message(payload: JSONValue, *, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if _present(value):
                return stringify(value)
        return default
    if isinstance(payload, str) and payload:
        return payload
    return default


class ResponseNormalizer:
    """Turn one open `call-tool` response into a `TextResult`.

    The response must have been sent with `stream=True`; the normalizer owns
    closing it (directly, or through the connection pool for event streams).
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        pool: ConnectionPool,
        base_url: str,
        headers: Mapping[str, str],
        sleep: Sleep | None = None,
        stream_timeout_seconds: float = DEFAULT_STREAM_TIMEOUT_SECONDS,
        poll_policy: PollPolicy | None = None,
    ) -> None:
        self._client = client
        self._pool = pool
        self._base_url = base_url.rstrip("/")
        self._headers = dict(headers)
        self._sleep = sleep or asyncio.sleep
        self._stream_timeout_seconds = stream_timeout_seconds
        self._poll_policy = poll_policy or PollPolicy()

    async def normalize(self, response: httpx.Response, *, graph_id: str) -> TextResult:
        kind = classify_response(response.headers.get("content-type", ""), response.status_code)
        match kind:
            case ResponseKind.EVENT_STREAM:
                return await self._from_event_stream(response)
            case ResponseKind.LINE_STREAM:
                return await self._from_line_stream(response)
            case ResponseKind.QUEUED:
                return await self._from_queued(response, graph_id=graph_id)
            case ResponseKind.DOCUMENT:
                return await self._from_document(response)

    async def _from_document(self, response: httpx.Response) -> TextResult:
        payload = await self._read_json(response)
        result = payload.get("result") if isinstance(payload, dict) else None
        if isinstance(result, dict) and result.get("type") == "text":
            text = result.get("text")
            if isinstance(text, str) and text:
                try:
                    parsed = json.loads(text)
                except ValueError:
                    return TextResult(text=text)
                return TextResult(text=to_pretty_json(parsed))
        if not _present(result):
            return TextResult(text="No result")
        return TextResult.from_payload(result)

    async def _read_json(self, response: httpx.Response) -> JSONValue:
        try:
            await response.aread()
        finally:
            await response.aclose()
        if response.is_error:
            raise RemoteCallError.for_status(response.status_code, response.reason_phrase)
        try:
            return response.json()
        except ValueError as exc:
            msg = f"Invalid JSON in response body: {exc}"
            raise RemoteCallError(msg, category="server_error") from exc

    async def _from_line_stream(self, response: httpx.Response) -> TextResult:
        await _raise_for_stream_status(response)
        events: list[StreamEvent] = []
        try:
            async for line in split_lines(response.aiter_text()):
                self._append_line(line, events)
        except (httpx.HTTPError, httpx.StreamError) as exc:
            logger.error("Line-delimited stream failed: %s", exc)
            return TextResult.failure(f"Error parsing streaming response: {exc}")
        finally:
            await response.aclose()
        return aggregate_events(events)

    @staticmethod
    def _append_line(line: str, events: list[StreamEvent]) -> None:
        stripped = line.strip()
        if not stripped:
            return
        try:
            value = json.loads(stripped)
        except ValueError as exc:
            logger.warning("Dropping malformed line-delimited event: %s", exc)
            return
        events.append(StreamEvent.from_line_object(value))

    async def _from_event_stream(self, response: httpx.Response) -> TextResult:
        await _raise_for_stream_status(response)
        operation_id = response.headers.get(OPERATION_ID_HEADER) or f"sse-{uuid4().hex}"
        connection = await self._pool.acquire(
            operation_id,
            str(response.url),
            self._headers,
            response=response,
        )
        events: list[StreamEvent] = []
        outcome: TextResult | None = None
        try:
            async with asyncio.timeout(self._stream_timeout_seconds):
                outcome = await self._consume_event_stream(operation_id, connection, events)
        except TimeoutError:
            await self._pool.release(operation_id)
            msg = f"SSE timeout after {self._stream_timeout_seconds:g} seconds"
            raise RemoteCallError(msg, category="timeout") from None
        except RemoteCallError:
            await self._pool.release(operation_id)
            raise
        except (httpx.HTTPError, httpx.StreamError) as exc:
            logger.warning("Event stream %s failed: %s", operation_id, exc)

        if outcome is not None:
            return outcome
        await self._pool.release(operation_id)
        if events:
            return aggregate_events(events)
        msg = f"SSE connection failed for operation {operation_id}"
        raise RemoteCallError(msg, category="transport_error")

    async def _consume_event_stream(
        self,
        operation_id: str,
        connection: StreamConnection,
        events: list[StreamEvent],
    ) -> TextResult | None:
        """Collect events until a terminal one; `None` means the stream broke off."""
        async with aclosing(connection.messages()) as messages:
            async for message in messages:
                name = message.event
                parsed, payload = self._parse_event_data(message)
                if name in _PROGRESS_EVENTS:
                    if parsed:
                        self._report_progress(payload)
                    continue
                if name == "error":
                    logger.warning("Event stream %s reported an error event", operation_id)
                    return None
                if name == "operation_error":
                    await self._pool.release(operation_id)
                    message_text = _error_message(payload, default="Operation failed")
                    raise RemoteCallError(message_text, category="stream_error")
                if name in _TERMINAL_EVENTS:
                    if parsed and _carries_result(payload):
                        events.append(StreamEvent(name=name, payload=payload))
                    await self._pool.release(operation_id)
                    return aggregate_events(events)
                if parsed:
                    events.append(StreamEvent(name=name, payload=payload))
        return None

    @staticmethod
    def _parse_event_data(message: SSEMessage) -> tuple[bool, JSONValue]:
        if not message.data:
            return True, {}
        try:
            return True, json.loads(message.data)
        except ValueError as exc:
            logger.warning("Failed to parse %s event: %s", message.event, exc)
            return False, None

    @staticmethod
    def _report_progress(payload: JSONValue) -> None:
        if not isinstance(payload, dict):
            return
        percentage = payload.get("percentage")
        prefix = f"{percentage}% - " if _present(percentage) else ""
        logger.info("Progress: %s%s", prefix, payload.get("message") or "Processing...")

    async def _from_queued(self, response: httpx.Response, *, graph_id: str) -> TextResult:
        payload = await self._read_json(response)
        if not (isinstance(payload, dict) and payload.get("queued") and payload.get("queue_id")):
            return TextResult(text=to_pretty_json(payload))

        queue_id = str(payload["queue_id"])
        logger.info("Query queued with ID: %s", queue_id)
        query_url = f"{self._base_url}/v1/graphs/{graph_id}/query/{queue_id}"
        status_url = self._resolve(payload.get("status_url"), f"{query_url}/status")
        result_url = self._resolve(payload.get("result_url"), f"{query_url}/result")
        return await self._poll_queued(status_url, result_url)

    def _resolve(self, candidate: JSONValue, default: str) -> str:
        if not isinstance(candidate, str) or not candidate:
            return default
        return str(httpx.URL(f"{self._base_url}/").join(candidate))

    async def _poll_queued(self, status_url: str, result_url: str) -> TextResult:
        policy = self._poll_policy
        delay = policy.initial_delay_seconds
        for attempt in range(policy.max_attempts):
            await self._sleep(delay)
            try:
                outcome = await self._check_queued(status_url, result_url)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Polling error on attempt %d: %s", attempt + 1, exc)
                outcome = None
            if outcome is not None:
                return outcome
            delay = min(delay * policy.backoff_factor, policy.max_delay_seconds)
        return TextResult.failure("Query timed out waiting for result")

    async def _check_queued(self, status_url: str, result_url: str) -> TextResult | None:
        status_response = await self._client.get(status_url, headers=self._headers)
        if status_response.is_error:
            return None
        status = status_response.json()
        state = status.get("status") if isinstance(status, dict) else None
        if state == "completed":
            result_response = await self._client.get(result_url, headers=self._headers)
            if result_response.is_error:
                return None
            return TextResult(text=to_pretty_json(result_response.json()))
        if state == "failed":
            error = status.get("error") if isinstance(status, dict) else None
            return TextResult.failure(f"Query failed: {error or 'Unknown error'}")
        if state == "cancelled":
            return TextResult.failure("Query was cancelled")
        return None
