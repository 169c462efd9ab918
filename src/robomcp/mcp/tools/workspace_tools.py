"""Workspace tool adapters for MCP exposure."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from robomcp.models.workspace import SubgraphKind

type WorkspaceOperation = Literal["create", "switch", "delete", "list"]


@dataclass(slots=True)
class WorkspaceToolCall:
    """Canonical workspace tool call payload."""

    operation: WorkspaceOperation
    workspace_id: str | None = None
    name: str | None = None
    description: str | None = None
    fork_parent: bool = False
    subgraph_kind: SubgraphKind = SubgraphKind.STATIC
    force: bool = False


WORKSPACE_TOOL_OPERATIONS: dict[str, WorkspaceOperation] = {
    "create-workspace": "create",
    "switch-workspace": "switch",
    "delete-workspace": "delete",
    "list-workspaces": "list",
}


def is_workspace_tool(tool_name: str) -> bool:
    return tool_name in WORKSPACE_TOOL_OPERATIONS


def parse_workspace_tool_call(
    tool_name: str, arguments: dict[str, Any]
) -> WorkspaceToolCall | None:
    """Parse MCP workspace tool call into normalized payload.

    Returns `None` when the tool is not a workspace tool.
    Raises `ValueError` for malformed arguments.
    """
    operation = WORKSPACE_TOOL_OPERATIONS.get(tool_name)
    if operation is None:
        return None

    if operation == "list":
        return WorkspaceToolCall(operation="list")

    if operation == "switch":
        return WorkspaceToolCall(
            operation="switch",
            workspace_id=_required_string(arguments, "workspace_id"),
        )

    if operation == "delete":
        return WorkspaceToolCall(
            operation="delete",
            workspace_id=_required_string(arguments, "workspace_id"),
            force=_parse_bool(arguments.get("force"), default=False),
        )

    raw_kind = _optional_string(arguments, "subgraph_type") or SubgraphKind.STATIC.value
    try:
        subgraph_kind = SubgraphKind(raw_kind.lower())
    except ValueError:
        allowed = ", ".join(kind.value for kind in SubgraphKind)
        msg = f"subgraph_type must be one of: {allowed}"
        raise ValueError(msg) from None

    return WorkspaceToolCall(
        operation="create",
        name=_required_string(arguments, "name"),
        description=_optional_string(arguments, "description"),
        fork_parent=_parse_bool(arguments.get("fork_parent"), default=False),
        subgraph_kind=subgraph_kind,
    )


def _required_string(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    msg = f"{key} is required"
    raise ValueError(msg)


def _optional_string(arguments: dict[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    msg = f"{key} must be a string"
    raise ValueError(msg)


def _parse_bool(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    return default
