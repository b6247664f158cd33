from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from weft_ai.mcp_client.hosted import HostedToolServer, create_hosted_server
from weft_ai.mcp_client.models import MCPToolCallResult
from weft_ai.mcp_client.schemas.core import McpTool, ToolServerConfig, TransportKind

from .base import AsyncStrategy


class HostedMcpStrategy(AsyncStrategy):
    """Dispatch to in-process ``HostedToolServer`` instances.

    Instances are created lazily from ``ToolServerConfig.hosted_kind`` and
    kept per server id until ``reset``.
    """

    def __init__(self, *, instances: Optional[Dict[str, HostedToolServer]] = None) -> None:
        self._instances: Dict[str, HostedToolServer] = dict(instances or {})
        self._logger = logging.getLogger(__name__)

    def supports(self, server: ToolServerConfig) -> bool:
        return server.transport == TransportKind.hosted

    def _instance(self, server: ToolServerConfig, auth_token: Optional[str]) -> HostedToolServer:
        inst = self._instances.get(server.id)
        if inst is None:
            inst = create_hosted_server(server.hosted_kind, auth_token)
            self._instances[server.id] = inst
        return inst

    async def list_tools(self, server: ToolServerConfig, *, auth_token: Optional[str] = None) -> List[McpTool]:
        tools = self._instance(server, auth_token).get_tools()
        self._logger.debug("HostedMcpStrategy.list_tools: server=%s tools=%d", server.name, len(tools))
        return list(tools)

    async def call_tool(
        self,
        server: ToolServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        *,
        auth_token: Optional[str] = None,
    ) -> MCPToolCallResult:
        self._logger.debug(
            "HostedMcpStrategy.call_tool: server=%s tool=%s args_keys=%s",
            server.name,
            tool_name,
            list((args or {}).keys()),
        )
        return await self._instance(server, auth_token).call_tool(tool_name, dict(args or {}))

    async def reset(self, server_id: str) -> None:
        self._instances.pop(server_id, None)
