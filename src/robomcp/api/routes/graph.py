"""Read-only views of the graph client state."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from robomcp.api.deps import get_graph_client
from robomcp.api.schemas.graph import MetricsResponse, WorkspaceItem, WorkspacesResponse
from robomcp.mcp.client import RemoteGraphClient

router = APIRouter(prefix="/api/v1/graph", tags=["graph"])


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(
    graph_client: RemoteGraphClient = Depends(get_graph_client),
) -> MetricsResponse:
    return MetricsResponse(**graph_client.metrics().to_dict())


@router.get("/workspaces", response_model=WorkspacesResponse)
async def list_workspaces(
    graph_client: RemoteGraphClient = Depends(get_graph_client),
) -> WorkspacesResponse:
    manager = graph_client.workspaces
    return WorkspacesResponse(
        primary_workspace=manager.primary_id,
        active_workspace=manager.active_id,
        items=[WorkspaceItem.model_validate(item) for item in manager.snapshot()],
    )
