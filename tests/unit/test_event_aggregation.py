from __future__ import annotations

import json
from collections.abc import AsyncIterator

import pytest

from robomcp.mcp.normalizer import aggregate_events
from robomcp.mcp.streams import iter_sse_messages, split_lines
from robomcp.mcp.types import EventKind, StreamEvent, TextResult


async def _chunks(*parts: str) -> AsyncIterator[str]:
    for part in parts:
        yield part


def test_aggregate_merges_chunks_in_order() -> None:
    result = aggregate_events(
        [
            StreamEvent("query_chunk", {"columns": ["c1", "c2"], "data": [[1, 2]]}),
            StreamEvent("data_chunk", {"data": [[3, 4]]}),
        ]
    )
    assert json.loads(result.text) == {
        "columns": ["c1", "c2"],
        "data": [[1, 2], [3, 4]],
        "row_count": 2,
    }


def test_aggregate_error_wins_over_everything() -> None:
    result = aggregate_events(
        [
            StreamEvent("query_chunk", {"columns": ["a"], "data": [[1]]}),
            StreamEvent("query_result", {"result": "ignored"}),
            StreamEvent("error", {"message": "X"}),
        ]
    )
    assert "Error: X" in result.text


def test_aggregate_error_without_message_uses_default() -> None:
    result = aggregate_events([StreamEvent("operation_error", {})])
    assert result.text == "Error: Tool execution failed"
    assert result.is_error


def test_aggregate_prefers_query_result_over_chunks() -> None:
    result = aggregate_events(
        [
            StreamEvent("query_chunk", {"data": [[1]]}),
            StreamEvent("query_result", {"result": {"total": 1}}),
        ]
    )
    assert json.loads(result.text) == {"total": 1}


def test_aggregate_completion_without_result_uses_payload() -> None:
    result = aggregate_events(
        [StreamEvent("message", "hi"), StreamEvent("query_complete", {"rows": 0})]
    )
    assert json.loads(result.text) == {"rows": 0}


def test_aggregate_falls_back_to_event_sequence() -> None:
    result = aggregate_events([StreamEvent("heartbeat", None), StreamEvent("message", "hi")])
    assert json.loads(result.text) == [
        {"event": "heartbeat", "data": None},
        {"event": "message", "data": "hi"},
    ]


def test_event_kinds_cover_synonyms() -> None:
    assert StreamEvent("operation_completed", {}).kind is EventKind.COMPLETION
    assert StreamEvent("result", {}).kind is EventKind.COMPLETION
    assert StreamEvent("operation_progress", {}).kind is EventKind.PROGRESS
    assert StreamEvent("custom", {}).kind is EventKind.UNKNOWN


def test_text_result_from_payload() -> None:
    assert TextResult.from_payload({"type": "text", "text": "plain"}) == TextResult(text="plain")
    assert TextResult.from_payload("raw").text == "raw"
    assert TextResult(text="x").to_content() == {"type": "text", "text": "x"}


@pytest.mark.asyncio
async def test_split_lines_carries_partial_lines() -> None:
    lines = [line async for line in split_lines(_chunks('{"a":', "1}\n{", '"b":2}'))]
    assert lines == ['{"a":1}', '{"b":2}']


@pytest.mark.asyncio
async def test_sse_framing_handles_comments_multiline_data_and_eof() -> None:
    source = _chunks(
        ": keepalive",
        "event: progress",
        'data: {"percentage": 10}',
        "",
        "data: line one",
        "data: line two",
        "id: 7",
        "",
        "event: complete",
    )
    messages = [message async for message in iter_sse_messages(source)]

    assert [message.event for message in messages] == ["progress", "message", "complete"]
    assert messages[0].data == '{"percentage": 10}'
    assert messages[1].data == "line one\nline two"
    assert messages[1].id == "7"
    assert messages[2].data == ""
