"""Workspace domain models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class WorkspaceKind(str, Enum):
    """Role of a workspace within one client."""

    PRIMARY = "primary"
    DERIVED = "derived"


class SubgraphKind(str, Enum):
    """Storage flavour requested when creating a derived workspace."""

    STATIC = "static"
    MEMORY = "memory"


class Workspace(BaseModel):
    """Remote graph context known to the client."""

    id: str = Field(min_length=1)
    kind: WorkspaceKind = WorkspaceKind.DERIVED
    name: str
    description: str | None = None
    parent_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_primary(self) -> bool:
        return self.kind is WorkspaceKind.PRIMARY
