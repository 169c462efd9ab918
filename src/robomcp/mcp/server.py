"""Locally served tool catalog entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from robomcp.mcp.types import JSONObject


@dataclass(slots=True)
class MCPTool:
    """MCP tool descriptor exposed to the agent host."""

    name: str
    description: str
    input_schema: JSONObject = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_descriptor(self) -> JSONObject:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


_WORKSPACE_TOOLS: Final[list[MCPTool]] = [
    MCPTool(
        name="create-workspace",
        description=(
            "Create an isolated workspace under the primary graph and make it the active "
            "context for subsequent tool calls"
        ),
        input_schema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Workspace name"},
                "description": {"type": "string", "description": "Optional description"},
                "fork_parent": {
                    "type": "boolean",
                    "description": "Copy the primary graph's data into the workspace",
                    "default": False,
                },
                "subgraph_type": {
                    "type": "string",
                    "enum": ["static", "memory"],
                    "default": "static",
                },
            },
            "required": ["name"],
        },
    ),
    MCPTool(
        name="switch-workspace",
        description="Switch the active context; use 'primary' to return to the main graph",
        input_schema={
            "type": "object",
            "properties": {
                "workspace_id": {
                    "type": "string",
                    "description": "Workspace id, or 'primary'",
                },
            },
            "required": ["workspace_id"],
        },
    ),
    MCPTool(
        name="delete-workspace",
        description="Delete a workspace; the active context falls back to the primary graph",
        input_schema={
            "type": "object",
            "properties": {
                "workspace_id": {"type": "string"},
                "force": {"type": "boolean", "default": False},
            },
            "required": ["workspace_id"],
        },
    ),
    MCPTool(
        name="list-workspaces",
        description="List workspaces known to the remote service and mark the active one",
    ),
]


def workspace_tools() -> list[MCPTool]:
    """Return all locally handled workspace tools."""
    return list(_WORKSPACE_TOOLS)


def find_tool(name: str) -> MCPTool | None:
    """Look up one local tool by name."""
    for tool in _WORKSPACE_TOOLS:
        if tool.name == name:
            return tool
    return None
