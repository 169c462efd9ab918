from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from robomcp.mcp.errors import RemoteCallError
from robomcp.mcp.normalizer import (
    PollPolicy,
    ResponseKind,
    ResponseNormalizer,
    classify_response,
)
from robomcp.mcp.pool import ConnectionPool
from robomcp.mcp.streams import SSEMessage, StreamConnection
from robomcp.mcp.types import TextResult
from tests.support.graph_helpers import (
    API_BASE,
    FakeGraphAPI,
    RecordingSleep,
    event_stream_response,
    json_response,
    line_stream_response,
    text_document,
)


async def _normalize(
    api: FakeGraphAPI,
    response_factory: Callable[[httpx.Request], httpx.Response],
    *,
    pool: ConnectionPool | None = None,
    sleep: RecordingSleep | None = None,
    poll_policy: PollPolicy | None = None,
    stream_timeout_seconds: float = 300.0,
) -> tuple[TextResult, ConnectionPool]:
    api.routes["/v1/graphs/kg1/mcp/call-tool"] = response_factory
    client = api.http_client()
    pool = pool or ConnectionPool(client=client)
    normalizer = ResponseNormalizer(
        client=client,
        pool=pool,
        base_url=API_BASE,
        headers={"X-API-Key": "secret"},
        sleep=sleep or RecordingSleep(),
        poll_policy=poll_policy,
        stream_timeout_seconds=stream_timeout_seconds,
    )
    request = client.build_request("POST", f"{API_BASE}/v1/graphs/kg1/mcp/call-tool")
    response = await client.send(request, stream=True)
    return await normalizer.normalize(response, graph_id="kg1"), pool


def test_classify_response_prefers_declared_stream_types() -> None:
    assert classify_response("text/event-stream; charset=utf-8", 200) is ResponseKind.EVENT_STREAM
    assert classify_response("application/x-ndjson", 202) is ResponseKind.LINE_STREAM
    assert classify_response("application/json", 202) is ResponseKind.QUEUED
    assert classify_response("application/json", 200) is ResponseKind.DOCUMENT
    assert classify_response("", 500) is ResponseKind.DOCUMENT


@pytest.mark.asyncio
async def test_document_text_envelope_is_pretty_printed() -> None:
    result, _ = await _normalize(FakeGraphAPI(), lambda _: text_document({"nodes": 3}))
    assert result == TextResult(text=json.dumps({"nodes": 3}, indent=2))


@pytest.mark.asyncio
async def test_document_plain_text_passes_through() -> None:
    result, _ = await _normalize(
        FakeGraphAPI(),
        lambda _: json_response({"result": {"type": "text", "text": "MATCH ok"}}),
    )
    assert result.text == "MATCH ok"


@pytest.mark.asyncio
async def test_document_without_result_reports_no_result() -> None:
    result, _ = await _normalize(FakeGraphAPI(), lambda _: json_response({"status": "ok"}))
    assert result.text == "No result"


@pytest.mark.asyncio
async def test_document_structured_result_is_stringified() -> None:
    result, _ = await _normalize(
        FakeGraphAPI(), lambda _: json_response({"result": {"rows": [[1]]}})
    )
    assert json.loads(result.text) == {"rows": [[1]]}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "category"),
    [(401, "client_error"), (404, "server_error"), (503, "server_error")],
)
async def test_document_error_status_raises_categorized_error(
    status_code: int, category: str
) -> None:
    with pytest.raises(RemoteCallError) as excinfo:
        await _normalize(FakeGraphAPI(), lambda _: json_response({}, status_code=status_code))
    assert excinfo.value.category == category
    assert str(excinfo.value).startswith(f"HTTP {status_code}")


@pytest.mark.asyncio
async def test_line_stream_merges_chunks_and_skips_malformed_lines() -> None:
    result, _ = await _normalize(
        FakeGraphAPI(),
        lambda _: line_stream_response(
            {"event": "query_chunk", "data": {"columns": ["a", "b"], "data": [[1, 2]]}},
            "{not json",
            {"event": "query_chunk", "data": {"data": [[3, 4]]}},
            {"event": "query_complete", "data": {}},
        ),
    )
    assert json.loads(result.text) == {
        "columns": ["a", "b"],
        "data": [[1, 2], [3, 4]],
        "row_count": 2,
    }


@pytest.mark.asyncio
async def test_line_stream_records_without_event_become_messages() -> None:
    result, _ = await _normalize(FakeGraphAPI(), lambda _: line_stream_response({"value": 1}))
    assert json.loads(result.text) == [{"event": "message", "data": {"value": 1}}]


@pytest.mark.asyncio
async def test_event_stream_complete_releases_connection() -> None:
    result, pool = await _normalize(
        FakeGraphAPI(),
        lambda _: event_stream_response(
            ("progress", {"percentage": 50, "message": "halfway"}),
            ("complete", {"result": {"count": 7}}),
            operation_id="op-1",
        ),
    )
    assert json.loads(result.text) == {"count": 7}
    assert "op-1" not in pool


@pytest.mark.asyncio
async def test_event_stream_bare_complete_returns_collected_messages() -> None:
    result, pool = await _normalize(
        FakeGraphAPI(),
        lambda _: event_stream_response(
            ("message", {"rows": [[1, 2]]}),
            ("complete", {}),
            operation_id="op-1b",
        ),
    )
    assert json.loads(result.text) == [{"event": "message", "data": {"rows": [[1, 2]]}}]
    assert "op-1b" not in pool


@pytest.mark.asyncio
async def test_event_stream_bare_operation_completed_keeps_chunks() -> None:
    result, _ = await _normalize(
        FakeGraphAPI(),
        lambda _: event_stream_response(
            ("query_chunk", {"columns": ["n"], "data": [[1]]}),
            ("operation_completed", "not json"),
            operation_id="op-1c",
        ),
    )
    assert json.loads(result.text) == {"columns": ["n"], "data": [[1]], "row_count": 1}


@pytest.mark.asyncio
async def test_event_stream_error_status_raises_before_pooling() -> None:
    api = FakeGraphAPI()
    pool = ConnectionPool(client=api.http_client())

    def unavailable(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            503,
            content=b"event: complete\ndata: {}\n\n",
            headers={"content-type": "text/event-stream", "x-operation-id": "op-down"},
        )

    with pytest.raises(RemoteCallError) as excinfo:
        await _normalize(api, unavailable, pool=pool)
    assert excinfo.value.category == "server_error"
    assert excinfo.value.retryable
    assert "op-down" not in pool


@pytest.mark.asyncio
async def test_line_stream_error_status_raises() -> None:
    def failing(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500,
            content=b'{"event": "query_complete", "data": {"result": "stale"}}\n',
            headers={"content-type": "application/x-ndjson"},
        )

    with pytest.raises(RemoteCallError) as excinfo:
        await _normalize(FakeGraphAPI(), failing)
    assert excinfo.value.category == "server_error"
    assert str(excinfo.value).startswith("HTTP 500")


@pytest.mark.asyncio
async def test_event_stream_operation_completed_releases_connection() -> None:
    result, pool = await _normalize(
        FakeGraphAPI(),
        lambda _: event_stream_response(
            ("operation_completed", {"result": "done"}),
            operation_id="op-2",
        ),
    )
    assert result.text == "done"
    assert "op-2" not in pool


@pytest.mark.asyncio
async def test_event_stream_operation_error_raises_stream_error() -> None:
    with pytest.raises(RemoteCallError) as excinfo:
        await _normalize(
            FakeGraphAPI(),
            lambda _: event_stream_response(
                ("operation_error", {"error": "cypher syntax"}),
                operation_id="op-3",
            ),
        )
    assert excinfo.value.category == "stream_error"
    assert str(excinfo.value) == "cypher syntax"


@pytest.mark.asyncio
async def test_event_stream_eof_aggregates_collected_events() -> None:
    result, pool = await _normalize(
        FakeGraphAPI(),
        lambda _: event_stream_response(
            ("query_chunk", {"columns": ["n"], "data": [[1]]}),
            ("query_chunk", "{broken"),
            ("query_chunk", {"data": [[2]]}),
            operation_id="op-4",
        ),
    )
    assert json.loads(result.text)["data"] == [[1], [2]]
    assert "op-4" not in pool


@pytest.mark.asyncio
async def test_event_stream_without_events_is_transport_failure() -> None:
    with pytest.raises(RemoteCallError) as excinfo:
        await _normalize(FakeGraphAPI(), lambda _: event_stream_response(operation_id="op-5"))
    assert excinfo.value.category == "transport_error"
    assert "op-5" in str(excinfo.value)


class _StalledConnection:
    def __init__(self) -> None:
        self.closed = False

    async def messages(self) -> AsyncIterator[SSEMessage]:
        await asyncio.sleep(10)
        yield SSEMessage(event="complete", data="{}")

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_event_stream_timeout_releases_connection() -> None:
    stalled = _StalledConnection()

    def factory(
        _endpoint: str, _headers: dict[str, str], response: httpx.Response | None
    ) -> StreamConnection:
        return stalled

    pool = ConnectionPool(factory=factory)
    with pytest.raises(RemoteCallError) as excinfo:
        await _normalize(
            FakeGraphAPI(),
            lambda _: event_stream_response(operation_id="slow"),
            pool=pool,
            stream_timeout_seconds=0.05,
        )
    assert excinfo.value.category == "timeout"
    assert "SSE timeout" in str(excinfo.value)
    assert "slow" not in pool
    assert stalled.closed


@pytest.mark.asyncio
async def test_queued_response_polls_until_completed() -> None:
    api = FakeGraphAPI()
    statuses = [{"status": "pending"}, {"status": "completed"}]
    api.routes["/v1/graphs/kg1/query/q-1/status"] = lambda _: json_response(statuses.pop(0))
    api.routes["/v1/graphs/kg1/query/q-1/result"] = lambda _: json_response({"rows": [[1]]})
    sleep = RecordingSleep()

    result, _ = await _normalize(
        api,
        lambda _: json_response({"queued": True, "queue_id": "q-1"}, status_code=202),
        sleep=sleep,
    )

    assert json.loads(result.text) == {"rows": [[1]]}
    assert sleep.delays == [1.0, 1.5]


@pytest.mark.asyncio
async def test_queued_response_uses_advertised_urls() -> None:
    api = FakeGraphAPI()
    api.routes["/custom/status"] = lambda _: json_response({"status": "failed", "error": "boom"})

    result, _ = await _normalize(
        api,
        lambda _: json_response(
            {"queued": True, "queue_id": "q-2", "status_url": "/custom/status"},
            status_code=202,
        ),
    )

    assert result.text == "Query failed: boom"


@pytest.mark.asyncio
async def test_queued_response_reports_cancellation() -> None:
    api = FakeGraphAPI()
    api.routes["/v1/graphs/kg1/query/q-3/status"] = lambda _: json_response(
        {"status": "cancelled"}
    )

    result, _ = await _normalize(
        api,
        lambda _: json_response({"queued": True, "queue_id": "q-3"}, status_code=202),
    )

    assert result.text == "Query was cancelled"


@pytest.mark.asyncio
async def test_queued_response_times_out_after_poll_budget() -> None:
    api = FakeGraphAPI()
    api.routes["/v1/graphs/kg1/query/q-4/status"] = lambda _: json_response({}, status_code=500)
    sleep = RecordingSleep()

    result, _ = await _normalize(
        api,
        lambda _: json_response({"queued": True, "queue_id": "q-4"}, status_code=202),
        sleep=sleep,
        poll_policy=PollPolicy(max_attempts=4, max_delay_seconds=2.0),
    )

    assert result.text == "Query timed out waiting for result"
    assert sleep.delays == [1.0, 1.5, 2.0, 2.0]


@pytest.mark.asyncio
async def test_accepted_payload_without_queue_id_is_returned() -> None:
    result, _ = await _normalize(
        FakeGraphAPI(),
        lambda _: json_response({"accepted": True}, status_code=202),
    )
    assert json.loads(result.text) == {"accepted": True}
