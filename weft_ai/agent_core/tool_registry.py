from __future__ import annotations

"""Tool registry and approval gating.

The registry resolves the tools a project's model may call and decides,
per call, whether a human checkpoint is required.

- ``ToolRegistry.load`` builds a ``ToolCatalog`` for a project from the
  cached schemas of its enabled servers. Servers that were never listed are
  connected once; servers that fail are marked ``error`` and skipped.
- ``ToolRegistry.reconnect`` is the only operation that replaces a server's
  cached schemas.
- ``ToolCatalog.gate`` reports the approval-required fields a call touches.
  A call whose gated set is non-empty must not reach the client until the
  checkpoint is approved; the catalog never calls tools itself.

Tools are exposed to the model under qualified names ``"{server}__{tool}"``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from weft_ai.core.errors import TerminalError
from weft_ai.mcp_client.client_async import AsyncMcpClient
from weft_ai.mcp_client.errors import ServerNotFoundError
from weft_ai.mcp_client.models import MCPToolCallResult
from weft_ai.mcp_client.schemas.core import ServerStatus, ToolSchema, ToolServerConfig

from .credentials import resolve_server_token
from .repos.interfaces import CredentialProvider, ToolServerRepository

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"[^A-Za-z0-9_-]")
MAX_TOOL_NAME_LENGTH = 64


def qualify_tool_name(server_name: str, tool_name: str) -> str:
    return _NAME_RE.sub("_", f"{server_name}__{tool_name}")[:MAX_TOOL_NAME_LENGTH]


def gated_fields(schema: ToolSchema, args: Mapping[str, Any]) -> List[str]:
    """Approval-required fields present in ``args``, in schema order."""
    return [f for f in schema.approval_required_fields if f in args]


@dataclass(frozen=True)
class RegisteredTool:
    qualified_name: str
    server: ToolServerConfig
    schema: ToolSchema


@dataclass(frozen=True)
class GateDecision:
    tool: RegisteredTool
    gated_fields: List[str]

    @property
    def requires_checkpoint(self) -> bool:
        return bool(self.gated_fields)


class ToolCatalog:
    """The tools available to one plan turn, keyed by qualified name."""

    def __init__(self, tools: Iterable[RegisteredTool], tokens: Optional[Dict[str, Optional[str]]] = None) -> None:
        self._tools: Dict[str, RegisteredTool] = {}
        for t in tools:
            if t.qualified_name in self._tools:
                logger.warning("Duplicate tool name %s; keeping the first registration", t.qualified_name)
                continue
            self._tools[t.qualified_name] = t
        self._tokens: Dict[str, Optional[str]] = dict(tokens or {})

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, qualified_name: str) -> Optional[RegisteredTool]:
        return self._tools.get(qualified_name)

    def token_for(self, server_id: str) -> Optional[str]:
        return self._tokens.get(server_id)

    def gate(self, qualified_name: str, args: Mapping[str, Any]) -> Optional[GateDecision]:
        """
        Decide whether a call needs a checkpoint.

        Returns:
            The decision, or None when the tool is unknown.
        """
        tool = self._tools.get(qualified_name)
        if tool is None:
            return None
        return GateDecision(tool=tool, gated_fields=gated_fields(tool.schema, args))

    def definitions(self) -> List[Dict[str, Any]]:
        """
        Tool definitions handed to the reasoning backend.

        Raises:
            TerminalError: A cached input schema is not a JSON object schema.
        """
        out: List[Dict[str, Any]] = []
        for name, t in self._tools.items():
            schema = t.schema.input_schema
            if not isinstance(schema, dict) or schema.get("type", "object") != "object":
                raise TerminalError(f"Malformed tool schema for {name}: input schema must be a JSON object schema")
            out.append({"name": name, "description": t.schema.description or "", "input_schema": schema})
        return out


class ToolRegistry:
    def __init__(
        self,
        *,
        servers: ToolServerRepository,
        client: AsyncMcpClient,
        credentials: Optional[CredentialProvider] = None,
    ) -> None:
        self._servers = servers
        self._client = client
        self._credentials = credentials

    async def load(self, project_id: str) -> ToolCatalog:
        tools: List[RegisteredTool] = []
        tokens: Dict[str, Optional[str]] = {}
        for server in await self._servers.list_for_project(project_id, enabled_only=True):
            token = await resolve_server_token(server, self._credentials)
            tokens[server.id] = token
            schemas = await self._servers.get_tools(server.id)
            if not schemas:
                try:
                    schemas = await self._refresh(server, token)
                except Exception as e:
                    logger.warning("Skipping tool server %s: %s", server.name, e)
                    continue
            for schema in schemas:
                tools.append(RegisteredTool(qualify_tool_name(server.name, schema.name), server, schema))
        logger.debug("Loaded %d tools for project %s", len(tools), project_id)
        return ToolCatalog(tools, tokens)

    async def reconnect(self, server_id: str) -> List[ToolSchema]:
        """
        Re-handshake with a server and replace its cached schemas.

        Raises:
            ServerNotFoundError: The server id is unknown.
            McpClientError: The server could not be listed; it is marked ``error``.
        """
        server = await self._servers.get(server_id)
        if server is None:
            raise ServerNotFoundError(server_id)
        token = await resolve_server_token(server, self._credentials)
        return await self._refresh(server, token)

    async def _refresh(self, server: ToolServerConfig, token: Optional[str]) -> List[ToolSchema]:
        try:
            listed = await self._client.connect(server, auth_token=token)
        except Exception:
            await self._servers.update(server.id, status=ServerStatus.error)
            raise

        previous = {t.name: t for t in await self._servers.get_tools(server.id)}
        schemas: List[ToolSchema] = []
        for tool in listed:
            schema = ToolSchema.from_tool(server.id, tool)
            # Keep approval fields configured on the previous cache entry.
            old = previous.get(tool.name)
            if old is not None:
                for f in old.approval_required_fields:
                    if f not in schema.approval_required_fields:
                        schema.approval_required_fields.append(f)
            schemas.append(schema)

        await self._servers.cache_tools(server.id, schemas)
        await self._servers.update(server.id, status=ServerStatus.connected)
        logger.info("Tool server %s connected with %d tools", server.name, len(schemas))
        return schemas

    async def set_approval_fields(self, server_id: str, tool_name: str, fields: List[str]) -> ToolSchema:
        """
        Replace the approval-required fields of one cached tool.

        Raises:
            KeyError: The tool is not in the server's cache.
        """
        tools = await self._servers.get_tools(server_id)
        for t in tools:
            if t.name == tool_name:
                t.approval_required_fields = list(dict.fromkeys(fields))
                await self._servers.cache_tools(server_id, tools)
                return t
        raise KeyError(f"Tool {tool_name!r} is not cached for server {server_id!r}")

    async def call(self, catalog: ToolCatalog, tool: RegisteredTool, args: Dict[str, Any]) -> MCPToolCallResult:
        """Invoke an ungated (or approved) tool call. Never raises for tool failures."""
        return await self._client.call_tool(
            tool.server, tool.schema.name, args, auth_token=catalog.token_for(tool.server.id)
        )
