"""Asynchronous MCP client facade.

Provides one async API for listing and invoking tools on hosted and remote
servers, delegating to the first strategy that supports the server's
transport.

``call_tool`` never raises for tool failures: transport failures, protocol
errors, unknown servers and exceptions inside hosted servers all come back
as an ``MCPToolCallResult`` with ``is_error=True``. ``list_tools`` and
``connect`` do raise, so the registry can mark a server as errored.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .errors import McpClientError, ServerNotFoundError
from .models import MCPToolCallResult
from .schemas.core import McpTool, ToolServerConfig
from .strategy.base import AsyncStrategy
from .strategy.hosted import HostedMcpStrategy
from .strategy.remote import RemoteMcpStrategy

logger = logging.getLogger(__name__)


class AsyncMcpClient:
    def __init__(self, *, strategies: Iterable[AsyncStrategy]) -> None:
        self._strategies: List[AsyncStrategy] = list(strategies)
        for s in self._strategies:
            if not isinstance(s, AsyncStrategy):
                raise TypeError(f"Strategy {type(s).__name__} does not conform to AsyncStrategy protocol")

    @classmethod
    def default(cls, **remote_kwargs: Any) -> "AsyncMcpClient":
        """Client with the hosted strategy and an HTTP remote strategy."""
        return cls(strategies=[HostedMcpStrategy(), RemoteMcpStrategy(**remote_kwargs)])

    def _strategy_for(self, server: ToolServerConfig) -> AsyncStrategy:
        for s in self._strategies:
            if s.supports(server):
                return s
        raise ServerNotFoundError(server.id)

    async def connect(self, server: ToolServerConfig, *, auth_token: Optional[str] = None) -> List[McpTool]:
        """Drop connection state for ``server``, then handshake and list its tools."""
        strategy = self._strategy_for(server)
        await strategy.reset(server.id)
        return await strategy.list_tools(server, auth_token=auth_token)

    async def list_tools(self, server: ToolServerConfig, *, auth_token: Optional[str] = None) -> List[McpTool]:
        return await self._strategy_for(server).list_tools(server, auth_token=auth_token)

    async def call_tool(
        self,
        server: ToolServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        *,
        auth_token: Optional[str] = None,
    ) -> MCPToolCallResult:
        try:
            return await self._strategy_for(server).call_tool(server, tool_name, args, auth_token=auth_token)
        except McpClientError as e:
            logger.warning("Tool call %s/%s failed: %s", server.name, tool_name, e)
            return MCPToolCallResult.error_content(str(e))
        except Exception as e:
            logger.error("Tool call %s/%s raised unexpectedly", server.name, tool_name, exc_info=True)
            return MCPToolCallResult.error_content(f"Tool '{tool_name}' failed: {e}")

    async def aclose(self) -> None:
        for s in self._strategies:
            close = getattr(s, "aclose", None)
            if close is not None:
                await close()
