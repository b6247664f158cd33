"""Credential lookups used by the service, engine and tool registry."""

from __future__ import annotations

from typing import Optional

from weft_ai.core.config import AnthropicConfig
from weft_ai.mcp_client.schemas.core import AuthType, ToolServerConfig

from .repos.interfaces import CredentialProvider
from .schemas.domain import CredentialType

MISSING_REASONING_KEY = "Anthropic API key not configured. Set ANTHROPIC_API_KEY in your environment."


async def resolve_reasoning_key(
    project_id: str,
    *,
    config: AnthropicConfig,
    credentials: Optional[CredentialProvider] = None,
) -> Optional[str]:
    """Environment key first, then the project's stored credential."""
    if config.api_key:
        return config.api_key
    if credentials is None:
        return None
    return await credentials.get_value(project_id, CredentialType.anthropic_api_key.value)


async def resolve_server_token(
    server: ToolServerConfig,
    credentials: Optional[CredentialProvider],
) -> Optional[str]:
    """Secret for a tool server's ``Authorization`` header, if it uses one."""
    if server.auth_type == AuthType.none or not server.credential_ref or credentials is None:
        return None
    return await credentials.get_value_by_id(server.project_id, server.credential_ref)
