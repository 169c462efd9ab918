"""MCP JSON-RPC transport endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from robomcp.api.deps import get_graph_client
from robomcp.mcp.client import CLIENT_VERSION, RemoteGraphClient

router = APIRouter(tags=["mcp-transport"])

PROTOCOL_VERSION = "2025-06-18"
SERVER_NAME = "robomcp"


def _response(request_id: str | int | None, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: str | int | None, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {
            "code": code,
            "message": message,
        },
    }


@router.post("/mcp")
async def mcp_transport(
    payload: dict[str, Any],
    graph_client: RemoteGraphClient = Depends(get_graph_client),
) -> dict[str, Any]:
    request_id = payload.get("id")
    method = payload.get("method")
    params = payload.get("params", {})

    if not isinstance(method, str):
        return _error(request_id, -32600, "Invalid method")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return _error(request_id, -32602, "Invalid params")

    if method == "initialize":
        return _response(
            request_id,
            {
                "protocolVersion": PROTOCOL_VERSION,
                "serverInfo": {"name": SERVER_NAME, "version": CLIENT_VERSION},
                "capabilities": {"tools": {"listChanged": False}},
            },
        )

    if method in {"notifications/initialized", "ping"}:
        return _response(request_id, {})

    if method == "tools/list":
        return _response(request_id, {"tools": await graph_client.get_tools()})

    if method == "tools/call":
        tool_name = params.get("name")
        arguments = params.get("arguments", {})
        if arguments is None:
            arguments = {}
        if not isinstance(tool_name, str) or not tool_name:
            return _error(request_id, -32602, "Missing tool name")
        if not isinstance(arguments, dict):
            return _error(request_id, -32602, "Invalid tool arguments")
        result = await graph_client.call_tool(tool_name, arguments)
        payload: dict[str, Any] = {"content": [result.to_content()]}
        if result.is_error:
            payload["isError"] = True
        return _response(request_id, payload)

    return _error(request_id, -32601, f"Unknown method: {method}")
