"""Bounded pool of reusable event-stream connections."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from robomcp.mcp.streams import EventSourceConnection, StreamConnection

logger = logging.getLogger(__name__)

type ConnectionFactory = Callable[[str, dict[str, str], httpx.Response | None], StreamConnection]

DEFAULT_MAX_CONNECTIONS = 5
DEFAULT_CONNECTION_TTL_SECONDS = 30.0


@dataclass(slots=True)
class PooledConnection:
    """Pool entry owning one streaming transport."""

    id: str
    transport: StreamConnection
    created_at: float
    last_used_at: float
    expiry: asyncio.Task[None] | None = None


class ConnectionPool:
    """Cache streaming handles by operation id with LRU eviction and idle expiry.

    Expiry is measured from creation; reuse refreshes `last_used_at` (which
    drives eviction order) but does not push the expiry back.
    """

    def __init__(
        self,
        *,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        ttl_seconds: float = DEFAULT_CONNECTION_TTL_SECONDS,
        factory: ConnectionFactory | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_connections = max(1, max_connections)
        self._ttl_seconds = ttl_seconds
        self._client = client
        self._factory = factory or self._default_factory
        self._clock = clock
        self._entries: dict[str, PooledConnection] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def get(self, connection_id: str) -> PooledConnection | None:
        return self._entries.get(connection_id)

    def ids(self) -> list[str]:
        return list(self._entries)

    async def acquire(
        self,
        connection_id: str,
        endpoint: str,
        headers: dict[str, str],
        *,
        response: httpx.Response | None = None,
    ) -> StreamConnection:
        """Return the handle for `connection_id`, creating it when absent.

        A `response` offered for an id that is already pooled is closed, so
        one id never holds two transports.
        """
        existing = self._entries.get(connection_id)
        if existing is not None:
            existing.last_used_at = self._clock()
            if response is not None:
                await response.aclose()
            return existing.transport

        transport = self._factory(endpoint, headers, response)
        evicted = self._pop_oldest() if len(self._entries) >= self._max_connections else None
        now = self._clock()
        entry = PooledConnection(
            id=connection_id,
            transport=transport,
            created_at=now,
            last_used_at=now,
        )
        self._entries[connection_id] = entry
        entry.expiry = asyncio.get_running_loop().create_task(
            self._expire_after(connection_id, entry),
            name=f"pool-expiry:{connection_id}",
        )
        if evicted is not None:
            logger.debug("Evicted pooled connection %s", evicted.id)
            await self._close(evicted)
        return entry.transport

    async def release(self, connection_id: str) -> bool:
        """Close and drop one entry; returns whether it was pooled."""
        entry = self._entries.pop(connection_id, None)
        if entry is None:
            return False
        self._cancel_expiry(entry)
        await self._close(entry)
        return True

    async def release_all(self) -> None:
        for connection_id in list(self._entries):
            await self.release(connection_id)

    def _pop_oldest(self) -> PooledConnection | None:
        if not self._entries:
            return None
        oldest = min(self._entries.values(), key=lambda item: item.last_used_at)
        del self._entries[oldest.id]
        self._cancel_expiry(oldest)
        return oldest

    async def _expire_after(self, connection_id: str, entry: PooledConnection) -> None:
        await asyncio.sleep(self._ttl_seconds)
        if self._entries.get(connection_id) is not entry:
            return
        del self._entries[connection_id]
        entry.expiry = None
        logger.debug("Pooled connection %s expired", connection_id)
        await self._close(entry)

    @staticmethod
    def _cancel_expiry(entry: PooledConnection) -> None:
        task = entry.expiry
        entry.expiry = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    async def _close(entry: PooledConnection) -> None:
        if not entry.transport.closed:
            await entry.transport.aclose()

    def _default_factory(
        self,
        endpoint: str,
        headers: dict[str, str],
        response: httpx.Response | None,
    ) -> StreamConnection:
        return EventSourceConnection(endpoint, headers, client=self._client, response=response)
