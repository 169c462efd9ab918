"""TTL result cache keyed by tool, canonical arguments and active graph."""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from robomcp.mcp.types import JSONValue, TextResult

DEFAULT_CACHE_TTL_SECONDS: Final[int] = 300

CACHE_TTLS: Final[dict[str, int]] = {
    "get-graph-schema": 3600,
    "get-graph-info": 300,
    "describe-graph-structure": 1800,
}


def is_cacheable(tool_name: str) -> bool:
    """Whether results of `tool_name` may be served from cache."""
    return tool_name in CACHE_TTLS


def cache_ttl(tool_name: str) -> int:
    """TTL in seconds for one cacheable tool."""
    return CACHE_TTLS.get(tool_name, DEFAULT_CACHE_TTL_SECONDS)


def cache_key(
    tool_name: str,
    arguments: Mapping[str, JSONValue] | None,
    context_id: str | None = None,
) -> str:
    """Hash a canonical serialization of one call.

    Mapping key order never affects the key; sequence order does.
    """
    canonical = json.dumps(
        {"tool": tool_name, "args": arguments or {}, "context": context_id},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CacheEntry:
    """One cached result and its absolute expiry."""

    key: str
    value: TextResult
    expires_at: float


class ResultCache:
    """In-memory TTL cache; expired entries are dropped when read."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(
        self,
        tool_name: str,
        arguments: Mapping[str, JSONValue] | None,
        context_id: str | None = None,
    ) -> TextResult | None:
        """Return the live cached value, or `None` when absent or expired."""
        key = cache_key(tool_name, arguments, context_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at > self._clock():
            return entry.value
        del self._entries[key]
        return None

    def store(
        self,
        tool_name: str,
        arguments: Mapping[str, JSONValue] | None,
        value: TextResult,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        context_id: str | None = None,
    ) -> None:
        key = cache_key(tool_name, arguments, context_id)
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + ttl_seconds,
        )

    def clear(self) -> None:
        self._entries.clear()
