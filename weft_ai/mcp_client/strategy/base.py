from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from weft_ai.mcp_client.models import MCPToolCallResult
from weft_ai.mcp_client.schemas.core import McpTool, ToolServerConfig


@runtime_checkable
class AsyncStrategy(Protocol):
    """One way of reaching tool servers (in-process or over HTTP)."""

    def supports(self, server: ToolServerConfig) -> bool: ...

    async def list_tools(self, server: ToolServerConfig, *, auth_token: Optional[str] = None) -> List[McpTool]: ...

    async def call_tool(
        self,
        server: ToolServerConfig,
        tool_name: str,
        args: Dict[str, Any],
        *,
        auth_token: Optional[str] = None,
    ) -> MCPToolCallResult: ...

    async def reset(self, server_id: str) -> None:
        """Forget any per-server connection state (sessions, instances)."""
        ...
