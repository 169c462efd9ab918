"""Client facade over the remote graph API's MCP endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Final

import httpx

from robomcp.core.workspace_manager import WorkspaceManager
from robomcp.mcp.cache import ResultCache, cache_ttl, is_cacheable
from robomcp.mcp.errors import RemoteCallError
from robomcp.mcp.normalizer import ResponseNormalizer
from robomcp.mcp.pool import ConnectionPool
from robomcp.mcp.retry import RetryExecutor, Sleep
from robomcp.mcp.server import workspace_tools
from robomcp.mcp.streams import EVENT_STREAM_MEDIA_TYPE, JSON_MEDIA_TYPE, LINE_STREAM_MEDIA_TYPE
from robomcp.mcp.tools.workspace_tools import WorkspaceToolCall, parse_workspace_tool_call
from robomcp.mcp.types import JSONObject, JSONValue, TextResult, to_pretty_json

logger = logging.getLogger(__name__)

CLIENT_VERSION: Final[str] = "0.1.0"
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 30.0
STREAM_READ_TIMEOUT_SECONDS: Final[float] = 300.0
CALL_TOOL_ACCEPT: Final[str] = (
    f"{EVENT_STREAM_MEDIA_TYPE}, {LINE_STREAM_MEDIA_TYPE}, {JSON_MEDIA_TYPE}"
)


@dataclass(slots=True)
class ClientMetrics:
    """Mutable counters owned by one client."""

    total_requests: int = 0
    cache_hits: int = 0
    errors: int = 0

    @property
    def cache_hit_rate(self) -> str:
        if self.total_requests == 0:
            return "0%"
        return f"{self.cache_hits / self.total_requests * 100:.1f}%"


@dataclass(slots=True, frozen=True)
class ClientMetricsSnapshot:
    """Point-in-time view of client metrics."""

    total_requests: int
    cache_hits: int
    cache_hit_rate: str
    errors: int
    workspace_switches: int
    active_connections: int
    active_workspace: str
    total_workspaces: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RemoteGraphClient:
    """Tool-oriented facade routing calls to the remote API or the session manager.

    `call_tool` never raises: every outcome, including exhausted retries and
    malformed workspace arguments, comes back as a `TextResult`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        graph_id: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        pool: ConnectionPool | None = None,
        cache: ResultCache | None = None,
        retry: RetryExecutor | None = None,
        sleep: Sleep | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout_seconds)
        )
        self._request_timeout_seconds = request_timeout_seconds
        self._sleep = sleep or asyncio.sleep
        self._pool = pool or ConnectionPool(client=self._http)
        self._cache = cache or ResultCache()
        self._retry = retry or RetryExecutor(sleep=self._sleep)
        self._metrics = ClientMetrics()
        self._workspaces = WorkspaceManager(graph_id, self._call_primary)
        self._normalizer = ResponseNormalizer(
            client=self._http,
            pool=self._pool,
            base_url=self._base_url,
            headers=self.headers,
            sleep=self._sleep,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self._api_key,
            "Content-Type": JSON_MEDIA_TYPE,
            "User-Agent": f"robomcp/{CLIENT_VERSION}",
            "X-MCP-Client": CLIENT_VERSION,
        }

    @property
    def workspaces(self) -> WorkspaceManager:
        return self._workspaces

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def cache(self) -> ResultCache:
        return self._cache

    def tools_url(self, graph_id: str) -> str:
        return f"{self._base_url}/v1/graphs/{graph_id}/mcp/tools"

    def call_tool_url(self, graph_id: str) -> str:
        return f"{self._base_url}/v1/graphs/{graph_id}/mcp/call-tool"

    async def get_tools(self) -> list[JSONObject]:
        """Remote tool descriptors plus the locally handled workspace tools."""
        tools = await self._fetch_remote_tools(self._workspaces.active_id)
        known = {tool.get("name") for tool in tools}
        tools.extend(
            tool.to_descriptor() for tool in workspace_tools() if tool.name not in known
        )
        return tools

    async def _fetch_remote_tools(self, graph_id: str) -> list[JSONObject]:
        url = self.tools_url(graph_id)
        logger.info("Fetching tools from %s", url)
        try:
            response = await self._http.get(url, headers=self.headers)
        except httpx.HTTPError as exc:
            logger.error("Failed to get tools: %s", exc)
            return []
        if response.is_error:
            logger.error("API returned %d: %s", response.status_code, response.text)
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Failed to get tools: invalid JSON: %s", exc)
            return []
        tools = payload.get("tools") if isinstance(payload, dict) else None
        if not isinstance(tools, list):
            tools = []
        logger.info("Got %d tools from API", len(tools))
        return [tool for tool in tools if isinstance(tool, dict)]

    async def call_tool(self, name: str, arguments: JSONObject | None = None) -> TextResult:
        self._metrics.total_requests += 1
        try:
            return await self._dispatch(name, dict(arguments or {}))
        except Exception as exc:  # noqa: BLE001
            self._metrics.errors += 1
            logger.exception("Tool call %s failed unexpectedly", name)
            return TextResult.failure(f"Error: {exc}")

    async def _dispatch(self, name: str, args: JSONObject) -> TextResult:
        try:
            workspace_call = parse_workspace_tool_call(name, args)
        except ValueError as exc:
            return _json_result({"success": False, "error": str(exc)})
        if workspace_call is not None:
            return _json_result(await self._handle_workspace_call(workspace_call))

        graph_id = self._workspaces.active_id
        cacheable = is_cacheable(name)
        if cacheable:
            cached = self._cache.lookup(name, args, graph_id)
            if cached is not None:
                self._metrics.cache_hits += 1
                return cached

        async def attempt() -> TextResult:
            try:
                result = await self._invoke(name, args, graph_id=graph_id)
            except Exception:
                self._metrics.errors += 1
                raise
            if cacheable and not result.is_error:
                self._cache.store(name, args, result, cache_ttl(name), graph_id)
            return result

        return await self._retry.run(attempt)

    async def _invoke(self, name: str, arguments: JSONObject, *, graph_id: str) -> TextResult:
        """One POST + normalization; transport failures surface as `RemoteCallError`."""
        try:
            request = self._http.build_request(
                "POST",
                self.call_tool_url(graph_id),
                headers={**self.headers, "Accept": CALL_TOOL_ACCEPT},
                json={"name": name, "arguments": arguments},
                timeout=httpx.Timeout(
                    self._request_timeout_seconds, read=STREAM_READ_TIMEOUT_SECONDS
                ),
            )
            response = await self._http.send(request, stream=True)
            return await self._normalizer.normalize(response, graph_id=graph_id)
        except Exception as exc:
            logger.error("Failed to call tool %s: %s", name, exc)
            if isinstance(exc, (httpx.HTTPError, httpx.StreamError)):
                raise RemoteCallError.from_httpx(exc) from exc
            raise

    async def _call_primary(self, tool_name: str, arguments: JSONObject) -> JSONValue:
        """Workspace CRUD round-trip against the primary graph, without retry or cache."""
        result = await self._invoke(tool_name, arguments, graph_id=self._workspaces.primary_id)
        try:
            payload: JSONValue = json.loads(result.text)
        except ValueError:
            if result.text.startswith("Error"):
                raise RemoteCallError(result.text, category="session_error") from None
            return result.text
        if isinstance(payload, dict) and payload.get("error"):
            raise RemoteCallError(str(payload["error"]), category="session_error")
        return payload

    async def _handle_workspace_call(self, call: WorkspaceToolCall) -> JSONObject:
        match call.operation:
            case "create":
                return await self._workspaces.create(
                    call.name or "",
                    call.description,
                    fork_parent=call.fork_parent,
                    subgraph_kind=call.subgraph_kind,
                )
            case "switch":
                return await self._workspaces.switch(call.workspace_id or "")
            case "delete":
                return await self._workspaces.delete(call.workspace_id or "", force=call.force)
            case "list":
                listing = await self._workspaces.list()
                return listing.to_payload()

    def metrics(self) -> ClientMetricsSnapshot:
        return ClientMetricsSnapshot(
            total_requests=self._metrics.total_requests,
            cache_hits=self._metrics.cache_hits,
            cache_hit_rate=self._metrics.cache_hit_rate,
            errors=self._metrics.errors,
            workspace_switches=self._workspaces.switch_count,
            active_connections=len(self._pool),
            active_workspace=self._workspaces.active_id,
            total_workspaces=len(self._workspaces.workspaces),
        )

    async def aclose(self) -> None:
        await self._pool.release_all()
        self._cache.clear()
        if self._owns_http_client:
            await self._http.aclose()


def _json_result(payload: JSONObject) -> TextResult:
    return TextResult(text=to_pretty_json(payload))
