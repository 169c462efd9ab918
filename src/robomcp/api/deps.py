"""Shared API dependency providers."""

from __future__ import annotations

from robomcp.config import Settings, get_settings
from robomcp.mcp.client import RemoteGraphClient

_GRAPH_CLIENT: RemoteGraphClient | None = None


def build_graph_client(settings: Settings) -> RemoteGraphClient:
    return RemoteGraphClient(
        settings.api_url,
        settings.api_key,
        settings.graph_id,
        request_timeout_seconds=settings.request_timeout_seconds,
    )


def get_graph_client() -> RemoteGraphClient:
    global _GRAPH_CLIENT
    if _GRAPH_CLIENT is None:
        _GRAPH_CLIENT = build_graph_client(get_settings())
    return _GRAPH_CLIENT


async def close_graph_client() -> None:
    global _GRAPH_CLIENT
    client, _GRAPH_CLIENT = _GRAPH_CLIENT, None
    if client is not None:
        await client.aclose()
