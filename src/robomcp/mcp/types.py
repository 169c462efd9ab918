"""Wire-level types shared by the remote graph client."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

type JSONValue = None | bool | int | float | str | list[JSONValue] | dict[str, JSONValue]
type JSONObject = dict[str, JSONValue]


def to_pretty_json(value: object) -> str:
    """Serialize a value the way results are shown to agents."""
    return json.dumps(value, indent=2, default=str)


def stringify(value: object) -> str:
    """Pass strings through, pretty-print everything else."""
    if isinstance(value, str):
        return value
    return to_pretty_json(value)


@dataclass(slots=True, frozen=True)
class TextResult:
    """Uniform tool result returned across the client boundary.

    `is_error` marks failure texts; those are never cached.
    """

    text: str
    type: Literal["text"] = "text"
    is_error: bool = False

    def to_content(self) -> JSONObject:
        """Return the MCP content block for this result."""
        return {"type": self.type, "text": self.text}

    @classmethod
    def failure(cls, text: str) -> TextResult:
        return cls(text=text, is_error=True)

    @classmethod
    def from_payload(cls, value: JSONValue) -> TextResult:
        """Coerce a remote `result` field into a text result."""
        if isinstance(value, dict) and value.get("type") == "text":
            text = value.get("text")
            if isinstance(text, str):
                return cls(text=text)
        return cls(text=stringify(value))


class EventKind(StrEnum):
    """Classification of one streamed event."""

    DATA = "data"
    ERROR = "error"
    CHUNK = "chunk"
    PROGRESS = "progress"
    COMPLETION = "completion"
    UNKNOWN = "unknown"


_EVENT_KINDS: dict[str, EventKind] = {
    "error": EventKind.ERROR,
    "operation_error": EventKind.ERROR,
    "query_chunk": EventKind.CHUNK,
    "data_chunk": EventKind.CHUNK,
    "progress": EventKind.PROGRESS,
    "operation_progress": EventKind.PROGRESS,
    "operation_completed": EventKind.COMPLETION,
    "complete": EventKind.COMPLETION,
    "query_complete": EventKind.COMPLETION,
    "result": EventKind.COMPLETION,
    "query_result": EventKind.DATA,
    "message": EventKind.DATA,
}


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """One event collected while normalizing a streamed response."""

    name: str
    payload: JSONValue

    @property
    def kind(self) -> EventKind:
        return _EVENT_KINDS.get(self.name, EventKind.UNKNOWN)

    def field(self, key: str) -> JSONValue:
        """Read one payload field, tolerating non-object payloads."""
        if isinstance(self.payload, dict):
            return self.payload.get(key)
        return None

    def to_json(self) -> JSONObject:
        return {"event": self.name, "data": self.payload}

    @classmethod
    def from_line_object(cls, value: JSONValue) -> StreamEvent:
        """Build an event from one parsed line-delimited record."""
        if isinstance(value, dict):
            name = value.get("event")
            if isinstance(name, str) and name:
                return cls(name=name, payload=value.get("data"))
            if "data" in value:
                return cls(name="message", payload=value["data"])
        return cls(name="message", payload=value)
