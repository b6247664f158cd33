"""OAuth provider registry.

The set of providers is closed: ``OAuthProviderKind`` maps to exactly one
``OAuthProvider`` in ``OAUTH_PROVIDERS``; an unknown kind fails at lookup.

- ``github`` / ``google``: static endpoints, client credentials from
  ``OAuthConfig``, a userinfo call to name the stored credential.
- ``mcp``: endpoints are discovered from the tool server itself
  (``/.well-known/oauth-protected-resource`` then
  ``/.well-known/oauth-authorization-server``), and the client is registered
  dynamically when the authorization server supports it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from weft_ai.agent_core.schemas.domain import CredentialType
from weft_ai.core.config import OAuthConfig
from weft_ai.core.errors import ConfigurationError
from weft_ai.mcp_client.schemas.core import TransportKind

logger = logging.getLogger(__name__)


class OAuthProviderKind(str, Enum):
    github = "github"
    google = "google"
    mcp = "mcp"


@dataclass(frozen=True)
class ToolServerTemplate:
    """A tool server registered (or refreshed) when a provider connects."""

    name: str
    transport: TransportKind
    endpoint: Optional[str] = None
    hosted_kind: Optional[str] = None


@dataclass(frozen=True)
class OAuthProvider:
    kind: OAuthProviderKind
    credential_type: CredentialType
    authorize_url: Optional[str] = None
    token_url: Optional[str] = None
    userinfo_url: Optional[str] = None
    scopes: Tuple[str, ...] = ()
    tool_servers: Tuple[ToolServerTemplate, ...] = ()
    extra_authorize_params: Mapping[str, str] = field(default_factory=dict)

    def client_credentials(self, config: OAuthConfig) -> Tuple[Optional[str], Optional[str]]:
        if self.kind == OAuthProviderKind.github:
            return config.github_client_id, config.github_client_secret
        if self.kind == OAuthProviderKind.google:
            return config.google_client_id, config.google_client_secret
        return None, None

    def credential_name(self, identity: Mapping[str, Any]) -> str:
        label = identity.get("login") or identity.get("email") or identity.get("name") or identity.get("id")
        prefix = self.kind.value.capitalize() if self.kind != OAuthProviderKind.mcp else "MCP"
        return f"{prefix}: {label}" if label else prefix


OAUTH_PROVIDERS: Dict[OAuthProviderKind, OAuthProvider] = {
    OAuthProviderKind.github: OAuthProvider(
        kind=OAuthProviderKind.github,
        credential_type=CredentialType.github_oauth,
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scopes=("repo", "read:user", "read:org"),
        tool_servers=(
            ToolServerTemplate(
                name="GitHub",
                transport=TransportKind.streamable_http,
                endpoint="https://api.githubcopilot.com/mcp/",
            ),
        ),
    ),
    OAuthProviderKind.google: OAuthProvider(
        kind=OAuthProviderKind.google,
        credential_type=CredentialType.google_oauth,
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
        scopes=("openid", "email", "profile"),
        extra_authorize_params={"access_type": "offline", "prompt": "consent"},
    ),
    OAuthProviderKind.mcp: OAuthProvider(
        kind=OAuthProviderKind.mcp,
        credential_type=CredentialType.mcp_oauth,
    ),
}


def get_provider(kind: OAuthProviderKind | str) -> OAuthProvider:
    """
    Raises:
        ConfigurationError: The provider is not supported.
    """
    try:
        return OAUTH_PROVIDERS[OAuthProviderKind(kind)]
    except (ValueError, KeyError) as e:
        raise ConfigurationError(f"Unsupported OAuth provider: {kind}", code="UNSUPPORTED_OAUTH_PROVIDER") from e


@dataclass(frozen=True)
class DiscoveredEndpoints:
    authorize_url: str
    token_url: str
    registration_url: Optional[str]
    scopes: List[str]
    resource: str


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


async def _get_json(http: httpx.AsyncClient, url: str) -> Optional[Dict[str, Any]]:
    try:
        resp = await http.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        logger.debug("Discovery request to %s failed: %s", url, e)
        return None
    if resp.status_code != 200:
        return None
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


async def discover_endpoints(http: httpx.AsyncClient, server_url: str) -> DiscoveredEndpoints:
    """
    Discover the authorization server of a remote tool server.

    Raises:
        ConfigurationError: No usable authorization server metadata was found.
    """
    origin = _origin(server_url)
    resource_meta = await _get_json(http, f"{origin}/.well-known/oauth-protected-resource") or {}
    servers = resource_meta.get("authorization_servers") or [origin]
    issuer = str(servers[0]).rstrip("/")

    meta = await _get_json(http, f"{_origin(issuer)}/.well-known/oauth-authorization-server")
    if not meta or not meta.get("authorization_endpoint") or not meta.get("token_endpoint"):
        raise ConfigurationError(
            f"No OAuth authorization server metadata found for {server_url}", code="OAUTH_DISCOVERY_FAILED"
        )
    return DiscoveredEndpoints(
        authorize_url=meta["authorization_endpoint"],
        token_url=meta["token_endpoint"],
        registration_url=meta.get("registration_endpoint"),
        scopes=list(resource_meta.get("scopes_supported") or meta.get("scopes_supported") or []),
        resource=str(resource_meta.get("resource") or server_url),
    )


async def register_client(
    http: httpx.AsyncClient,
    registration_url: str,
    *,
    redirect_uri: str,
    client_name: str,
) -> str:
    """
    Dynamic client registration (RFC 7591) for a public PKCE client.

    Raises:
        ConfigurationError: Registration failed.
    """
    try:
        resp = await http.post(
            registration_url,
            json={
                "client_name": client_name,
                "redirect_uris": [redirect_uri],
                "grant_types": ["authorization_code", "refresh_token"],
                "response_types": ["code"],
                "token_endpoint_auth_method": "none",
            },
        )
        resp.raise_for_status()
        client_id = resp.json().get("client_id")
    except (httpx.HTTPError, ValueError) as e:
        raise ConfigurationError(f"OAuth client registration failed: {e}", code="OAUTH_DISCOVERY_FAILED") from e
    if not client_id:
        raise ConfigurationError("OAuth client registration returned no client_id", code="OAUTH_DISCOVERY_FAILED")
    return str(client_id)
