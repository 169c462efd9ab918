"""Workspace (active graph context) lifecycle management."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final, Literal, Protocol

from pydantic import ValidationError

from robomcp.mcp.types import JSONObject, JSONValue
from robomcp.models.workspace import SubgraphKind, Workspace, WorkspaceKind

logger = logging.getLogger(__name__)

PRIMARY_ALIAS: Final[str] = "primary"
PRIMARY_WORKSPACE_NAME: Final[str] = "main"
REMOTE_CREATE_TOOL: Final[str] = "create-subgraph"
REMOTE_DELETE_TOOL: Final[str] = "delete-subgraph"
REMOTE_LIST_TOOL: Final[str] = "list-subgraphs"

_ID_KEYS: Final[tuple[str, ...]] = ("graph_id", "subgraph_id", "id")
_NAME_KEYS: Final[tuple[str, ...]] = ("name", "subgraph_name", "display_name")
_LISTING_KEYS: Final[tuple[str, ...]] = ("subgraphs", "workspaces", "items")


class WorkspaceRemote(Protocol):
    """Remote round-trip used for workspace CRUD."""

    async def __call__(self, tool_name: str, arguments: JSONObject) -> JSONValue:
        """Invoke one remote tool against the primary graph and return its decoded result."""


@dataclass(slots=True)
class WorkspaceListing:
    """Workspace set as served by `list`, authoritative or fallback."""

    source: Literal["remote", "fallback"]
    workspaces: list[Workspace]
    active_id: str
    primary_id: str
    error: str | None = None

    @property
    def fallback(self) -> bool:
        return self.source == "fallback"

    def to_payload(self) -> JSONObject:
        payload: JSONObject = {
            "success": True,
            "source": self.source,
            "fallback": self.fallback,
            "primary_workspace": self.primary_id,
            "active_workspace": self.active_id,
            "count": len(self.workspaces),
            "workspaces": [
                describe_workspace(workspace, active=workspace.id == self.active_id)
                for workspace in self.workspaces
            ],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def describe_workspace(workspace: Workspace, *, active: bool) -> JSONObject:
    payload: JSONObject = workspace.model_dump(mode="json")
    payload["active"] = active
    return payload


class WorkspaceManager:
    """Own the active context and mirror the remote workspace set.

    The primary workspace is seeded at construction and can be neither
    deleted nor dropped by reconciliation. Derived workspaces only enter or
    leave the local set after a successful remote round-trip.
    """

    def __init__(
        self,
        primary_id: str,
        remote: WorkspaceRemote,
        *,
        primary_name: str = PRIMARY_WORKSPACE_NAME,
    ) -> None:
        primary = Workspace(id=primary_id, kind=WorkspaceKind.PRIMARY, name=primary_name)
        self._primary_id = primary_id
        self._remote = remote
        self._workspaces: dict[str, Workspace] = {primary_id: primary}
        self._active_id = primary_id
        self._switch_count = 0

    @property
    def primary_id(self) -> str:
        return self._primary_id

    @property
    def active_id(self) -> str:
        return self._active_id

    @property
    def switch_count(self) -> int:
        return self._switch_count

    @property
    def workspaces(self) -> list[Workspace]:
        return list(self._workspaces.values())

    def get(self, workspace_id: str) -> Workspace | None:
        return self._workspaces.get(workspace_id)

    def known_ids(self) -> list[str]:
        return list(self._workspaces)

    def resolve(self, target: str) -> str:
        """Map the `primary` alias onto the primary id."""
        return self._primary_id if target == PRIMARY_ALIAS else target

    def snapshot(self) -> list[JSONObject]:
        """Local view of the workspace set, without a remote round-trip."""
        return [
            describe_workspace(workspace, active=workspace.id == self._active_id)
            for workspace in self._workspaces.values()
        ]

    async def create(
        self,
        name: str,
        description: str | None = None,
        *,
        fork_parent: bool = False,
        subgraph_kind: SubgraphKind | str = SubgraphKind.STATIC,
    ) -> JSONObject:
        """Create a derived workspace remotely and make it active."""
        try:
            kind = SubgraphKind(subgraph_kind)
        except ValueError:
            return {
                "success": False,
                "error": "Invalid subgraph type",
                "subgraph_type": str(subgraph_kind),
                "allowed": [item.value for item in SubgraphKind],
            }

        arguments: JSONObject = {
            "parent_graph_id": self._primary_id,
            "name": name,
            "fork_parent": fork_parent,
            "subgraph_type": kind.value,
        }
        if description is not None:
            arguments["description"] = description
        try:
            result = await self._remote(REMOTE_CREATE_TOOL, arguments)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to create workspace %s: %s", name, exc)
            return {"success": False, "error": f"Failed to create workspace: {exc}"}

        workspace_id = _first_string(result, _ID_KEYS)
        if workspace_id is None:
            logger.warning("Create of workspace %s returned no identifier", name)
            return {
                "success": False,
                "error": "Failed to create workspace: remote service returned no workspace id",
            }

        workspace = Workspace(
            id=workspace_id,
            name=name,
            description=description,
            parent_id=self._primary_id,
        )
        self._workspaces[workspace_id] = workspace
        previous = self._activate(workspace_id)
        logger.info("Created workspace %s (%s) and switched to it", name, workspace_id)
        return {
            "success": True,
            "workspace_id": workspace_id,
            "name": name,
            "subgraph_type": kind.value,
            "previous_workspace": previous,
            "switched_to": workspace_id,
            "message": f"Created workspace {name} ({workspace_id}) and switched to it",
        }

    async def switch(self, target: str) -> JSONObject:
        """Move the active pointer; purely local."""
        workspace_id = self.resolve(target)
        if workspace_id not in self._workspaces:
            return {
                "success": False,
                "error": "Unknown workspace",
                "workspace_id": target,
                "known_workspaces": self.known_ids(),
            }
        if workspace_id == self._active_id:
            return {
                "success": True,
                "message": f"Already in workspace {workspace_id}",
                "active_workspace": workspace_id,
            }
        previous = self._activate(workspace_id)
        logger.info("Switched workspace %s -> %s", previous, workspace_id)
        return {
            "success": True,
            "previous_workspace": previous,
            "switched_to": workspace_id,
            "message": f"Switched to workspace {workspace_id}",
        }

    async def delete(self, workspace_id: str, *, force: bool = False) -> JSONObject:
        """Delete a derived workspace remotely; fall back to primary if it was active."""
        target = self.resolve(workspace_id)
        if target == self._primary_id:
            return {
                "success": False,
                "error": "Cannot delete the primary workspace",
                "workspace_id": target,
            }
        try:
            await self._remote(
                REMOTE_DELETE_TOOL,
                {"parent_graph_id": self._primary_id, "subgraph_id": target, "force": force},
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to delete workspace %s: %s", target, exc)
            return {
                "success": False,
                "error": f"Failed to delete workspace: {exc}",
                "workspace_id": target,
            }

        self._workspaces.pop(target, None)
        was_active = self._active_id == target
        if was_active:
            self._active_id = self._primary_id
        logger.info("Deleted workspace %s", target)
        return {
            "success": True,
            "deleted": target,
            "active_workspace": self._active_id,
            "switched_to_primary": was_active,
        }

    async def list(self) -> WorkspaceListing:
        """Replace the local set with the remote listing, or serve it stale."""
        try:
            result = await self._remote(REMOTE_LIST_TOOL, {"parent_graph_id": self._primary_id})
            entries = _listing_entries(result)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Listing workspaces failed; serving local set: %s", exc)
            return WorkspaceListing(
                source="fallback",
                workspaces=self.workspaces,
                active_id=self._active_id,
                primary_id=self._primary_id,
                error=str(exc),
            )

        refreshed: dict[str, Workspace] = {self._primary_id: self._workspaces[self._primary_id]}
        for entry in entries:
            workspace = self._workspace_from_remote(entry)
            if workspace is None or workspace.id == self._primary_id:
                continue
            refreshed[workspace.id] = workspace
        self._workspaces = refreshed
        if self._active_id not in refreshed:
            logger.info("Active workspace %s vanished; reverting to primary", self._active_id)
            self._active_id = self._primary_id
        return WorkspaceListing(
            source="remote",
            workspaces=self.workspaces,
            active_id=self._active_id,
            primary_id=self._primary_id,
        )

    def _activate(self, workspace_id: str) -> str:
        previous = self._active_id
        self._active_id = workspace_id
        self._switch_count += 1
        return previous

    def _workspace_from_remote(self, entry: JSONValue) -> Workspace | None:
        workspace_id = _first_string(entry, _ID_KEYS)
        if workspace_id is None or not isinstance(entry, dict):
            logger.warning("Skipping workspace entry without an id: %r", entry)
            return None
        fields: dict[str, Any] = {
            "id": workspace_id,
            "name": _first_string(entry, _NAME_KEYS) or workspace_id,
            "parent_id": self._primary_id,
        }
        description = entry.get("description")
        if isinstance(description, str):
            fields["description"] = description
        created_at = entry.get("created_at")
        if isinstance(created_at, str) and created_at:
            fields["created_at"] = created_at
        try:
            return Workspace.model_validate(fields)
        except ValidationError as exc:
            logger.warning("Skipping invalid workspace entry %s: %s", workspace_id, exc)
            return None


def _first_string(value: JSONValue, keys: tuple[str, ...]) -> str | None:
    if not isinstance(value, dict):
        return None
    for key in keys:
        candidate = value.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def _listing_entries(value: JSONValue) -> list[JSONValue]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in _LISTING_KEYS:
            entries = value.get(key)
            if isinstance(entries, list):
                return entries
    msg = f"Unexpected workspace listing payload: {type(value).__name__}"
    raise ValueError(msg)
