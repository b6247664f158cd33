from __future__ import annotations

from typing import Any, Optional

from weft_ai.core.errors import WeftError


class McpClientError(WeftError):
    default_code = "MCP_CLIENT_ERROR"


class ProtocolError(McpClientError):
    """The peer answered, but with a JSON-RPC error or an undecodable envelope."""

    default_code = "MCP_PROTOCOL_ERROR"

    def __init__(self, message: str, *, rpc_code: Optional[int] = None, data: Optional[Any] = None) -> None:
        super().__init__(message)
        self.rpc_code = rpc_code
        self.data = data


class TransportError(McpClientError):
    """The round trip itself failed: network error, non-2xx status or truncated stream."""

    default_code = "MCP_TRANSPORT_ERROR"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ServerNotFoundError(McpClientError):
    default_code = "MCP_SERVER_NOT_FOUND"

    def __init__(self, server_id: str) -> None:
        super().__init__(f"MCP server not found: '{server_id}'")
        self.server_id = server_id
