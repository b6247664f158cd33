from __future__ import annotations

"""OAuth authorization-code + PKCE bootstrap for tool servers.

``begin`` creates a ``PendingAuthorization`` (verifier, redirect URI,
endpoints) keyed by a random nonce and returns the provider URL carrying a
signed state token. ``complete`` runs on the provider callback:

1. verify the state signature and age; nothing is written before this;
2. consume the pending record (single use; a missing record is a replay);
3. exchange the code with the verifier and fetch the account identity;
4. store the token as a credential, attach it to the tool server(s) and
   reconnect them so their tool schemas are refreshed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from weft_ai.agent_core.repos.interfaces import (
    CredentialProvider,
    PendingAuthorizationRepository,
    ToolServerRepository,
)
from weft_ai.agent_core.schemas.domain import PendingAuthorization
from weft_ai.agent_core.tool_registry import ToolRegistry
from weft_ai.core.config import OAuthConfig, settings
from weft_ai.core.errors import ConfigurationError, InputValidationError, InvalidStateError, WeftError
from weft_ai.mcp_client.schemas.core import AuthType, ToolServerConfig

from .pkce import code_challenge, generate_code_verifier, generate_nonce
from .providers import (
    OAuthProvider,
    OAuthProviderKind,
    ToolServerTemplate,
    discover_endpoints,
    get_provider,
    register_client,
)
from .state import decode_state, encode_state

logger = logging.getLogger(__name__)


class OAuthExchangeError(WeftError):
    default_code = "OAUTH_FAILED"


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str


@dataclass(frozen=True)
class OAuthResult:
    project_id: str
    provider: str
    credential_id: str
    server_ids: List[str] = field(default_factory=list)


class OAuthBootstrap:
    def __init__(
        self,
        *,
        pending: PendingAuthorizationRepository,
        credentials: CredentialProvider,
        servers: ToolServerRepository,
        registry: ToolRegistry,
        http: Optional[httpx.AsyncClient] = None,
        config: Optional[OAuthConfig] = None,
        client_name: str = "weft-ai",
    ) -> None:
        self._pending = pending
        self._credentials = credentials
        self._servers = servers
        self._registry = registry
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self._config = config or settings.oauth
        self._client_name = client_name

    async def begin(
        self,
        project_id: str,
        provider: OAuthProviderKind | str,
        redirect_uri: str,
        *,
        server_id: Optional[str] = None,
        scopes: Optional[List[str]] = None,
    ) -> AuthorizationRequest:
        """
        Start an authorization and return the URL to send the user to.

        Raises:
            ConfigurationError: The provider is unsupported or not configured,
                or a tool server's authorization endpoints cannot be found.
            InputValidationError: ``mcp`` was requested without a known server.
        """
        oauth_provider = get_provider(provider)
        pending = await self._build_pending(
            oauth_provider, project_id, redirect_uri, server_id=server_id, scopes=scopes
        )
        await self._pending.create(pending)

        state = encode_state(
            project_id=project_id,
            server_id=server_id,
            nonce=pending.state,
            secret=self._config.state_secret,
        )
        params: Dict[str, str] = {
            "response_type": "code",
            "client_id": pending.client_id or "",
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge(pending.code_verifier),
            "code_challenge_method": "S256",
        }
        if pending.scopes:
            params["scope"] = " ".join(pending.scopes)
        if pending.resource:
            params["resource"] = pending.resource
        params.update(oauth_provider.extra_authorize_params)
        authorize_url = self._authorize_url(oauth_provider, pending)
        logger.info("OAuth %s started for project %s", oauth_provider.kind.value, project_id)
        return AuthorizationRequest(url=f"{authorize_url}?{urlencode(params)}", state=state)

    async def complete(self, code: str, state: str, redirect_uri: Optional[str] = None) -> OAuthResult:
        """
        Finish an authorization from the provider callback.

        Raises:
            InvalidStateError: The state is invalid, expired, or was already used.
            OAuthExchangeError: The token exchange failed.
        """
        payload = decode_state(
            state,
            secret=self._config.state_secret,
            max_age_seconds=self._config.state_max_age_seconds,
        )
        pending = await self._pending.pop(payload.nonce)
        if pending is None:
            raise InvalidStateError("OAuth state was already used or is unknown", code="OAUTH_STATE_REPLAYED")
        if pending.is_expired():
            raise InvalidStateError("OAuth authorization expired", code="OAUTH_STATE_EXPIRED")
        if pending.project_id != payload.project_id or pending.server_id != payload.server_id:
            raise InvalidStateError("OAuth state does not match the pending authorization", code="INVALID_OAUTH_STATE")
        if redirect_uri is not None and redirect_uri != pending.redirect_uri:
            raise InvalidStateError("Redirect URI does not match the authorization request", code="INVALID_OAUTH_STATE")

        oauth_provider = get_provider(pending.provider)
        token = await self._exchange_code(oauth_provider, pending, code)
        access_token = token["access_token"]
        identity = await self._fetch_identity(oauth_provider, access_token)

        credential_id = await self._credentials.create(
            pending.project_id,
            credential_type=oauth_provider.credential_type.value,
            name=oauth_provider.credential_name(identity),
            value=access_token,
            metadata=self._credential_metadata(token, identity),
        )
        server_ids = await self._attach(oauth_provider, pending, credential_id)
        logger.info(
            "OAuth %s completed for project %s (%d tool server(s))",
            oauth_provider.kind.value,
            pending.project_id,
            len(server_ids),
        )
        return OAuthResult(
            project_id=pending.project_id,
            provider=oauth_provider.kind.value,
            credential_id=credential_id,
            server_ids=server_ids,
        )

    async def purge_expired(self) -> int:
        return await self._pending.delete_expired()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # begin helpers
    # ------------------------------------------------------------------

    async def _build_pending(
        self,
        oauth_provider: OAuthProvider,
        project_id: str,
        redirect_uri: str,
        *,
        server_id: Optional[str],
        scopes: Optional[List[str]],
    ) -> PendingAuthorization:
        common = dict(
            project_id=project_id,
            server_id=server_id,
            provider=oauth_provider.kind.value,
            state=generate_nonce(),
            code_verifier=generate_code_verifier(),
            redirect_uri=redirect_uri,
        )
        if oauth_provider.kind != OAuthProviderKind.mcp:
            client_id, _ = oauth_provider.client_credentials(self._config)
            if not client_id:
                raise ConfigurationError(f"{oauth_provider.kind.value} OAuth is not configured", code="NOT_CONFIGURED")
            return PendingAuthorization(
                **common,
                scopes=list(scopes or oauth_provider.scopes),
                client_id=client_id,
                token_endpoint=oauth_provider.token_url,
            )

        server = await self._servers.get(server_id) if server_id else None
        if server is None or not server.endpoint:
            raise InputValidationError(
                "MCP OAuth requires an existing remote tool server", code="SERVER_NOT_FOUND"
            )
        endpoints = await discover_endpoints(self._http, server.endpoint)
        if not endpoints.registration_url:
            raise ConfigurationError(
                f"Authorization server for {server.name} does not support dynamic client registration",
                code="OAUTH_DISCOVERY_FAILED",
            )
        client_id = await register_client(
            self._http, endpoints.registration_url, redirect_uri=redirect_uri, client_name=self._client_name
        )
        return PendingAuthorization(
            **common,
            scopes=list(scopes or endpoints.scopes),
            client_id=client_id,
            token_endpoint=endpoints.token_url,
            resource=endpoints.resource,
            authorize_endpoint=endpoints.authorize_url,
        )

    def _authorize_url(self, oauth_provider: OAuthProvider, pending: PendingAuthorization) -> str:
        url = pending.authorize_endpoint or oauth_provider.authorize_url
        if not url:
            raise ConfigurationError(
                f"No authorization endpoint for {oauth_provider.kind.value}", code="NOT_CONFIGURED"
            )
        return url

    # ------------------------------------------------------------------
    # complete helpers
    # ------------------------------------------------------------------

    async def _exchange_code(
        self, oauth_provider: OAuthProvider, pending: PendingAuthorization, code: str
    ) -> Dict[str, Any]:
        token_url = pending.token_endpoint or oauth_provider.token_url
        if not token_url:
            raise ConfigurationError(f"No token endpoint for {oauth_provider.kind.value}", code="NOT_CONFIGURED")
        form: Dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": pending.redirect_uri,
            "code_verifier": pending.code_verifier,
        }
        if pending.client_id:
            form["client_id"] = pending.client_id
        _, client_secret = oauth_provider.client_credentials(self._config)
        if client_secret:
            form["client_secret"] = client_secret
        if pending.resource:
            form["resource"] = pending.resource

        try:
            resp = await self._http.post(token_url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"Token exchange with {oauth_provider.kind.value} failed: {e}") from e
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or not isinstance(body, dict) or not body.get("access_token"):
            detail = body.get("error_description") or body.get("error") if isinstance(body, dict) else None
            raise OAuthExchangeError(
                f"Token exchange with {oauth_provider.kind.value} failed: {detail or f'HTTP {resp.status_code}'}"
            )
        return body

    async def _fetch_identity(self, oauth_provider: OAuthProvider, access_token: str) -> Dict[str, Any]:
        if not oauth_provider.userinfo_url:
            return {}
        try:
            resp = await self._http.get(
                oauth_provider.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise OAuthExchangeError(f"Fetching {oauth_provider.kind.value} account failed: {e}") from e
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _credential_metadata(token: Dict[str, Any], identity: Dict[str, Any]) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "scope": token.get("scope"),
            "account": identity.get("login") or identity.get("email"),
            "account_id": identity.get("id") or identity.get("sub"),
        }
        if token.get("refresh_token"):
            meta["refresh_token"] = token["refresh_token"]
        if token.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(token["expires_in"]))
            meta["expires_at"] = expires_at.isoformat()
        return {k: v for k, v in meta.items() if v is not None}

    async def _attach(
        self, oauth_provider: OAuthProvider, pending: PendingAuthorization, credential_id: str
    ) -> List[str]:
        """Point the tool server(s) at the new credential and reconnect them."""
        server_ids: List[str] = []
        if pending.server_id:
            await self._servers.update(pending.server_id, credential_ref=credential_id, auth_type=AuthType.oauth)
            server_ids.append(pending.server_id)
        else:
            existing = {s.name: s for s in await self._servers.list_for_project(pending.project_id, enabled_only=False)}
            for template in oauth_provider.tool_servers:
                server_ids.append(await self._upsert(pending.project_id, template, existing, credential_id))

        for server_id in server_ids:
            try:
                await self._registry.reconnect(server_id)
            except Exception as e:
                # The credential is stored; the server stays in ``error`` until reconnected.
                logger.warning("Reconnecting tool server %s after OAuth failed: %s", server_id, e)
        return server_ids

    async def _upsert(
        self,
        project_id: str,
        template: ToolServerTemplate,
        existing: Dict[str, ToolServerConfig],
        credential_id: str,
    ) -> str:
        current = existing.get(template.name)
        if current is not None:
            await self._servers.update(current.id, credential_ref=credential_id, auth_type=AuthType.oauth, enabled=True)
            return current.id
        created = await self._servers.create(
            ToolServerConfig(
                project_id=project_id,
                name=template.name,
                transport=template.transport,
                endpoint=template.endpoint,
                hosted_kind=template.hosted_kind,
                auth_type=AuthType.oauth,
                credential_ref=credential_id,
            )
        )
        return created.id
