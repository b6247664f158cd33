"""Core tool-server schemas shared by the client and the registry.

- ``ToolServerConfig``: a configured hosted or remote tool server.
- ``McpTool``: a tool as advertised by ``tools/list``.
- ``ToolSchema``: a tool cached for one server, with its approval-required
  fields.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from .base import WireSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransportKind(str, Enum):
    """How a tool server is reached.

    - ``hosted``: in-process adapter, no network.
    - ``streamable_http``: remote JSON-RPC over HTTP POST, responses may be
      plain JSON or ``text/event-stream`` framed.
    - ``http``: remote JSON-RPC over HTTP POST, plain JSON responses only.
    """

    hosted = "hosted"
    streamable_http = "streamable_http"
    http = "http"

    @property
    def is_remote(self) -> bool:
        return self is not TransportKind.hosted


class AuthType(str, Enum):
    none = "none"
    api_key = "api_key"
    oauth = "oauth"


class ServerStatus(str, Enum):
    disconnected = "disconnected"
    connected = "connected"
    error = "error"


class ToolServerConfig(WireSchema):
    """A tool server configured for a project."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    name: str = Field(..., description="Display name; also the prefix of qualified tool names")
    transport: TransportKind = TransportKind.streamable_http
    endpoint: Optional[str] = Field(default=None, description="Base URL of a remote server")
    hosted_kind: Optional[str] = Field(default=None, description="Hosted server factory key")
    auth_type: AuthType = AuthType.none
    credential_ref: Optional[str] = Field(default=None, description="Credential id used for auth headers")
    enabled: bool = True
    status: ServerStatus = ServerStatus.disconnected
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class McpTool(WireSchema):
    """Tool descriptor as returned by ``tools/list``."""

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    approval_required_fields: List[str] = Field(default_factory=list)


class ToolSchema(WireSchema):
    """Cached tool schema for one server.

    ``approval_required_fields`` lists argument names that must be approved
    by a human before a call carrying them may run.
    """

    server_id: str
    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    approval_required_fields: List[str] = Field(default_factory=list)
    cached_at: datetime = Field(default_factory=_utc_now)

    @classmethod
    def from_tool(cls, server_id: str, tool: McpTool) -> "ToolSchema":
        return cls(
            server_id=server_id,
            name=tool.name,
            description=tool.description,
            input_schema=dict(tool.input_schema),
            approval_required_fields=list(tool.approval_required_fields),
        )
