"""FastAPI app entrypoint."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from robomcp.api.deps import close_graph_client, get_graph_client
from robomcp.api.routes.graph import router as graph_router
from robomcp.api.routes.mcp_transport import router as mcp_transport_router
from robomcp.config import get_settings
from robomcp.infra.logging import setup_logging
from robomcp.mcp.client import CLIENT_VERSION, RemoteGraphClient
from robomcp.mcp.retry import Sleep

logger = logging.getLogger(__name__)


async def log_metrics_periodically(
    client: RemoteGraphClient,
    interval_seconds: float,
    *,
    sleep: Sleep = asyncio.sleep,
) -> None:
    while True:
        await sleep(interval_seconds)
        logger.info("Metrics: %s", json.dumps(client.metrics().to_dict()))


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    client = get_graph_client()
    logger.info("RoboSystems MCP client v%s starting", CLIENT_VERSION)
    logger.info("API URL: %s", client.base_url)
    logger.info("Graph ID: %s", settings.graph_id)
    logger.info("API Key: %s", settings.masked_api_key)
    metrics_task = asyncio.create_task(
        log_metrics_periodically(client, settings.metrics_interval_seconds),
        name="metrics-logger",
    )
    try:
        yield
    finally:
        metrics_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await metrics_task
        await close_graph_client()


def create_app() -> FastAPI:
    app = FastAPI(title="RoboSystems MCP", version=CLIENT_VERSION, lifespan=lifespan)
    app.include_router(graph_router)
    app.include_router(mcp_transport_router)

    @app.get("/api/v1/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/mcp/.well-known", tags=["system"])
    async def mcp_discovery() -> dict[str, str]:
        return {
            "name": "robomcp",
            "transport": "streamable-http",
            "endpoint": "/mcp",
        }

    return app


app = create_app()


def run() -> None:
    try:
        settings = get_settings()
    except ValidationError as exc:
        setup_logging()
        logger.error("Invalid configuration (is ROBOSYSTEMS_API_KEY set?): %s", exc)
        sys.exit(1)
    setup_logging(settings.log_level)
    uvicorn.run("robomcp.api.app:app", host=settings.host, port=settings.port, reload=False)
