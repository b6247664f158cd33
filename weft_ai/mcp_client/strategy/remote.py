"""Remote tool servers over JSON-RPC 2.0 / HTTP POST.

Connection lifecycle per server:

1. ``initialize`` with ``protocolVersion``, empty capabilities and
   ``clientInfo``.
2. ``notifications/initialized`` (fire-and-forget; failures are ignored).
3. ``tools/list`` / ``tools/call`` as needed.

Session affinity: a ``Mcp-Session-Id`` response header is captured and
echoed on every later request to the same server; a server that never sends
one is treated as stateless. Responses are either a plain JSON body or a
``text/event-stream`` body; both decode into the same ``JSONRPCResponse``.

There is no internal retry. Network failures and non-2xx statuses raise
``TransportError``; JSON-RPC errors and malformed envelopes raise
``ProtocolError``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, List, Optional, Set

import httpx
from pydantic import ValidationError

from weft_ai.core.config import MCPConfig, settings
from weft_ai.mcp_client.errors import McpClientError, ProtocolError, TransportError
from weft_ai.mcp_client.models import JSONRPCRequest, JSONRPCResponse, ListToolsResult, MCPToolCallResult
from weft_ai.mcp_client.schemas.core import McpTool, ToolServerConfig, TransportKind
from weft_ai.mcp_client.transport.sse import decode_response, read_jsonrpc_frame

from .base import AsyncStrategy

SESSION_HEADER = "Mcp-Session-Id"
PROTOCOL_VERSION_HEADER = "MCP-Protocol-Version"


class RemoteMcpStrategy(AsyncStrategy):
    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[MCPConfig] = None,
    ) -> None:
        self._config = config or settings.mcp
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(timeout=self._config.request_timeout_seconds, follow_redirects=True)
        self._logger = logging.getLogger(__name__)
        self._ids = itertools.count(1)
        self._sessions: Dict[str, str] = {}
        self._initialized: Set[str] = set()
        self._init_locks: Dict[str, asyncio.Lock] = {}

    def supports(self, server: ToolServerConfig) -> bool:
        return server.transport.is_remote

    def session_id(self, server_id: str) -> Optional[str]:
        return self._sessions.get(server_id)

    def _headers(self, server: ToolServerConfig, auth_token: Optional[str]) -> Dict[str, str]:
        accept = "application/json, text/event-stream"
        if server.transport == TransportKind.http:
            accept = "application/json"
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": accept,
            PROTOCOL_VERSION_HEADER: self._config.protocol_version,
        }
        session = self._sessions.get(server.id)
        if session:
            headers[SESSION_HEADER] = session
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        return headers

    async def _post(
        self,
        server: ToolServerConfig,
        message: JSONRPCRequest,
        auth_token: Optional[str],
    ) -> Optional[JSONRPCResponse]:
        """Send one JSON-RPC message and decode its response.

        Returns ``None`` for notifications (messages without an id).
        """
        if not server.endpoint:
            raise TransportError(f"Remote server '{server.name}' has no endpoint configured")

        had_session = server.id in self._sessions
        self._logger.debug("RemoteMcpStrategy: POST %s method=%s id=%s", server.endpoint, message.method, message.id)
        try:
            async with self._http.stream(
                "POST",
                server.endpoint,
                headers=self._headers(server, auth_token),
                json=message.to_payload(),
            ) as r:
                session = r.headers.get(SESSION_HEADER)
                if session:
                    self._sessions[server.id] = session

                if r.status_code >= 400:
                    body = (await r.aread()).decode("utf-8", errors="replace")[:500]
                    if r.status_code == 404 and had_session:
                        # The server dropped our session; re-handshake on the next call.
                        await self.reset(server.id)
                    raise TransportError(
                        f"HTTP {r.status_code} from '{server.name}' for {message.method}: {body}",
                        status_code=r.status_code,
                    )

                if message.id is None:
                    return None

                content_type = r.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    return await read_jsonrpc_frame(r.aiter_bytes(), message.id)
                body = await r.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"Request to '{server.name}' failed: {e}") from e

        try:
            raw = json.loads(body)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON from '{server.name}' for {message.method}") from e
        frame = decode_response(raw)
        if frame.id != message.id:
            raise ProtocolError(f"Response id {frame.id!r} does not match request id {message.id!r}")
        return frame

    async def _request(
        self,
        server: ToolServerConfig,
        method: str,
        params: Optional[Dict[str, Any]],
        auth_token: Optional[str],
    ) -> Any:
        frame = await self._post(server, JSONRPCRequest(method=method, params=params, id=next(self._ids)), auth_token)
        assert frame is not None
        return frame.result

    async def _ensure_initialized(self, server: ToolServerConfig, auth_token: Optional[str]) -> None:
        if server.id in self._initialized:
            return
        lock = self._init_locks.setdefault(server.id, asyncio.Lock())
        async with lock:
            if server.id in self._initialized:
                return
            result = await self._request(
                server,
                "initialize",
                {
                    "protocolVersion": self._config.initialize_protocol_version,
                    "capabilities": {},
                    "clientInfo": {"name": self._config.client_name, "version": self._config.client_version},
                },
                auth_token,
            )
            info = result.get("serverInfo") if isinstance(result, dict) else None
            self._logger.info(
                "Initialized MCP server '%s' (session=%s, serverInfo=%s)",
                server.name,
                self._sessions.get(server.id),
                info,
            )
            try:
                await self._post(server, JSONRPCRequest(method="notifications/initialized"), auth_token)
            except McpClientError as e:
                self._logger.debug("notifications/initialized to '%s' ignored: %s", server.name, e)
            self._initialized.add(server.id)

    async def list_tools(self, server: ToolServerConfig, *, auth_token: Optional[str] = None) -> List[McpTool]:
        await self._ensure_initialized(server, auth_token)
        tools: List[McpTool] = []
        cursor: Optional[str] = None
        while True:
            result = await self._request(server, "tools/list", {"cursor": cursor} if cursor else None, auth_token)
            try:
                page = ListToolsResult.model_validate(result or {})
            except ValidationError as e:
                raise ProtocolError(f"Malformed tools/list result from '{server.name}'") from e
            tools.extend(page.tools)
            if not page.next_cursor or page.next_cursor == cursor:
                break
            cursor = page.next_cursor
        self._logger.debug("RemoteMcpStrategy.list_tools: server=%s tools=%d", server.name, len(tools))
        return tools

    async def call_tool(
        self,
        server: ToolServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        *,
        auth_token: Optional[str] = None,
    ) -> MCPToolCallResult:
        await self._ensure_initialized(server, auth_token)
        result = await self._request(server, "tools/call", {"name": tool_name, "arguments": args or {}}, auth_token)
        try:
            return MCPToolCallResult.model_validate(result or {})
        except ValidationError as e:
            raise ProtocolError(f"Malformed tools/call result from '{server.name}'") from e

    async def reset(self, server_id: str) -> None:
        self._sessions.pop(server_id, None)
        self._initialized.discard(server_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
