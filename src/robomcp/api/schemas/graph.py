"""Graph client API schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from robomcp.models.workspace import WorkspaceKind


class MetricsResponse(BaseModel):
    """Client metrics snapshot."""

    total_requests: int
    cache_hits: int
    cache_hit_rate: str
    errors: int
    workspace_switches: int
    active_connections: int
    active_workspace: str
    total_workspaces: int


class WorkspaceItem(BaseModel):
    """One locally known workspace."""

    id: str
    kind: WorkspaceKind
    name: str
    description: str | None = None
    parent_id: str | None = None
    created_at: datetime
    active: bool


class WorkspacesResponse(BaseModel):
    """Local workspace set with the active marker."""

    primary_workspace: str
    active_workspace: str
    items: list[WorkspaceItem]
