from __future__ import annotations

"""Convenience factories for wiring the orchestration core.

``build_runtime`` assembles the repositories, tool protocol client, tool
registry, engine, runner, service and OAuth bootstrap from ``Settings``.
Tests and advanced deployments can pass their own repositories, client or
backend factory instead.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from weft_ai.core.config import Settings, settings as default_settings
from weft_ai.core.logging_config import setup_logging
from weft_ai.core.monitoring import initialize_logfire
from weft_ai.mcp_client.client_async import AsyncMcpClient
from weft_ai.oauth.bootstrap import OAuthBootstrap

from .notifications import NotificationSink, NullNotificationSink
from .reasoning.base import BackendFactory
from .reasoning.pydantic_ai_backend import PydanticAIReasoningBackend
from .repos.interfaces import (
    CredentialProvider,
    LogRepository,
    PendingAuthorizationRepository,
    PlanRepository,
    ToolServerRepository,
)
from .repos.sql import build_sql_repos, create_engine, create_sessionmaker
from .runtime.engine import WorkflowEngine
from .runtime.models import EngineDeps
from .runtime.runner import WorkflowRunner
from .service import WorkflowService, WorkflowServiceDeps
from .tool_registry import ToolRegistry


@dataclass(frozen=True)
class WorkflowRuntime:
    """Everything an application needs to drive plans."""

    service: WorkflowService
    engine: WorkflowEngine
    runner: WorkflowRunner
    registry: ToolRegistry
    client: AsyncMcpClient
    oauth: Optional[OAuthBootstrap]

    async def aclose(self) -> None:
        await self.runner.aclose()
        await self.client.aclose()
        if self.oauth is not None:
            await self.oauth.aclose()


def anthropic_backend_factory_for(cfg: Settings) -> BackendFactory:
    """Backend factory bound to the configured Anthropic model and token limit."""

    def _factory(api_key: str, model: Optional[str] = None) -> PydanticAIReasoningBackend:
        return PydanticAIReasoningBackend.for_anthropic(api_key, model, config=cfg.anthropic)

    return _factory


def build_runtime(
    *,
    plans: PlanRepository,
    logs: LogRepository,
    servers: ToolServerRepository,
    credentials: Optional[CredentialProvider] = None,
    pending_authorizations: Optional[PendingAuthorizationRepository] = None,
    notifications: Optional[NotificationSink] = None,
    client: Optional[AsyncMcpClient] = None,
    backend_factory: Optional[BackendFactory] = None,
    cfg: Optional[Settings] = None,
) -> WorkflowRuntime:
    """Wire the core from explicit repositories.

    The OAuth bootstrap is only built when both a pending-authorization
    repository and a credential provider are given.
    """
    cfg = cfg or default_settings
    sink = notifications or NullNotificationSink()
    client = client or AsyncMcpClient.default(config=cfg.mcp)
    registry = ToolRegistry(servers=servers, client=client, credentials=credentials)

    workflow = cfg.workflow
    engine = WorkflowEngine(
        deps=EngineDeps(
            plans=plans,
            logs=logs,
            tools=registry,
            backend_factory=backend_factory or anthropic_backend_factory_for(cfg),
            notifications=sink,
            credentials=credentials,
            anthropic=cfg.anthropic,
            max_turns=workflow.max_turns,
            system_prompt=workflow.system_prompt,
        )
    )
    runner = WorkflowRunner(engine=engine, plans=plans)
    service = WorkflowService(
        deps=WorkflowServiceDeps(
            plans=plans,
            logs=logs,
            runner=runner,
            credentials=credentials,
            notifications=sink,
            anthropic=cfg.anthropic,
        )
    )

    oauth: Optional[OAuthBootstrap] = None
    if pending_authorizations is not None and credentials is not None:
        oauth = OAuthBootstrap(
            pending=pending_authorizations,
            credentials=credentials,
            servers=servers,
            registry=registry,
            config=cfg.oauth,
            client_name=cfg.mcp.client_name,
        )
    return WorkflowRuntime(
        service=service,
        engine=engine,
        runner=runner,
        registry=registry,
        client=client,
        oauth=oauth,
    )


def build_sql_runtime(
    *,
    credentials: Optional[CredentialProvider] = None,
    notifications: Optional[NotificationSink] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    cfg: Optional[Settings] = None,
    configure_observability: bool = True,
) -> WorkflowRuntime:
    """Wire the core on the SQL repositories for ``Settings.database_url``."""
    cfg = cfg or default_settings
    if configure_observability:
        setup_logging(log_level=cfg.log_level)
        initialize_logfire()
    if session_factory is None:
        session_factory = create_sessionmaker(create_engine(cfg.database_url))
    repos = build_sql_repos(session_factory=session_factory)
    return build_runtime(
        plans=repos.plans,
        logs=repos.logs,
        servers=repos.servers,
        credentials=credentials,
        pending_authorizations=repos.pending_authorizations,
        notifications=notifications,
        cfg=cfg,
    )
