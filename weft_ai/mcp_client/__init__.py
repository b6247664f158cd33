"""Tool protocol (MCP) client.

Hosted servers run in-process behind ``HostedToolServer``; remote servers
speak JSON-RPC 2.0 over HTTP POST with optional event-stream framing.
``AsyncMcpClient`` is the facade the rest of the system uses.
"""

from .client_async import AsyncMcpClient
from .errors import McpClientError, ProtocolError, ServerNotFoundError, TransportError
from .models import MCPContent, MCPToolCallResult
from .schemas.core import AuthType, McpTool, ServerStatus, ToolSchema, ToolServerConfig, TransportKind

__all__ = [
    "AsyncMcpClient",
    "AuthType",
    "MCPContent",
    "MCPToolCallResult",
    "McpClientError",
    "McpTool",
    "ProtocolError",
    "ServerNotFoundError",
    "ServerStatus",
    "ToolSchema",
    "ToolServerConfig",
    "TransportError",
    "TransportKind",
]
