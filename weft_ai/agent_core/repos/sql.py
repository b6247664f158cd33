from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a SQL-backed persistence implementation for the
repository interfaces defined in ``weft_ai.agent_core.repos.interfaces``.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (tests/dev; production uses the Alembic
  migration under ``alembic/versions``).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Every persisted artifact (plan transition, log entry, cached
schema) is durable when the method returns.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from weft_ai.mcp_client.schemas.core import ToolSchema, ToolServerConfig

from ..schemas.domain import (
    PendingAuthorization,
    PlanUpdate,
    WorkflowLog,
    WorkflowPlan,
)
from .interfaces import (
    LogRepository,
    PendingAuthorizationRepository,
    PlanRepository,
    ToolServerRepository,
)
from .models import (
    Base,
    LogRow,
    PendingAuthorizationRow,
    PlanRow,
    ToolSchemaRow,
    ToolServerRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are normalized to the async driver, e.g. ``postgresql://``
    and ``postgres+psycopg2://`` become ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# row <-> domain
# ---------------------------------------------------------------------------


def _plan_from_row(row: PlanRow) -> WorkflowPlan:
    return WorkflowPlan.model_validate(
        {
            "id": row.id,
            "task_id": row.task_id,
            "project_id": row.project_id,
            "status": row.status,
            "summary": row.summary,
            "steps": row.steps or [],
            "current_step_index": row.current_step_index or 0,
            "checkpoint_data": row.checkpoint_data,
            "result": row.result,
            "conversation_history": row.conversation_history or [],
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


def _server_from_row(row: ToolServerRow) -> ToolServerConfig:
    return ToolServerConfig(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        transport=row.transport,
        endpoint=row.endpoint,
        hosted_kind=row.hosted_kind,
        auth_type=row.auth_type,
        credential_ref=row.credential_ref,
        enabled=row.enabled,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _pending_from_row(row: PendingAuthorizationRow) -> PendingAuthorization:
    return PendingAuthorization(
        id=row.id,
        project_id=row.project_id,
        server_id=row.server_id,
        provider=row.provider,
        state=row.state,
        code_verifier=row.code_verifier,
        redirect_uri=row.redirect_uri,
        resource=row.resource,
        scopes=list(row.scopes or []),
        client_id=row.client_id,
        authorize_endpoint=row.authorize_endpoint,
        token_endpoint=row.token_endpoint,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _json_value(value: Any) -> Any:
    """Convert pydantic values (or lists of them) into JSON column payloads."""
    if isinstance(value, list):
        return [_json_value(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if hasattr(value, "value"):
        return value.value
    return value


# ---------------------------------------------------------------------------
# repositories
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SqlPlanRepository(PlanRepository):
    """SQL implementation of ``PlanRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, plan: WorkflowPlan) -> WorkflowPlan:
        data = plan.to_json_dict()
        async with self.session_factory() as s:
            s.add(
                PlanRow(
                    id=plan.id,
                    task_id=plan.task_id,
                    project_id=plan.project_id,
                    status=plan.status.value,
                    summary=plan.summary,
                    steps=data["steps"],
                    current_step_index=plan.current_step_index,
                    checkpoint_data=data["checkpoint_data"],
                    result=data["result"],
                    conversation_history=data["conversation_history"],
                    created_at=plan.created_at,
                    updated_at=plan.updated_at,
                )
            )
            await s.commit()
        return plan

    async def get(self, plan_id: str) -> Optional[WorkflowPlan]:
        async with self.session_factory() as s:
            row = await s.get(PlanRow, plan_id)
            return _plan_from_row(row) if row is not None else None

    async def update(self, plan_id: str, patch: PlanUpdate) -> Optional[WorkflowPlan]:
        async with self.session_factory() as s:
            row = await s.get(PlanRow, plan_id)
            if row is None:
                return None
            for name, value in patch.changes().items():
                setattr(row, name, _json_value(value))
            row.updated_at = _utc_now()
            await s.commit()
            return _plan_from_row(row)

    async def list_for_task(self, task_id: str, limit: int = 20) -> List[WorkflowPlan]:
        async with self.session_factory() as s:
            stmt = select(PlanRow).where(PlanRow.task_id == task_id).order_by(PlanRow.created_at.desc()).limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [_plan_from_row(r) for r in rows]


@dataclass(frozen=True)
class SqlLogRepository(LogRepository):
    """SQL implementation of ``LogRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, log: WorkflowLog) -> None:
        async with self.session_factory() as s:
            s.add(
                LogRow(
                    id=log.id,
                    plan_id=log.plan_id,
                    step_id=log.step_id,
                    timestamp=log.timestamp,
                    level=log.level.value,
                    message=log.message,
                    meta=log.metadata,
                )
            )
            await s.commit()

    async def list(self, plan_id: str, *, limit: int = 100, offset: int = 0) -> List[WorkflowLog]:
        async with self.session_factory() as s:
            stmt = (
                select(LogRow)
                .where(LogRow.plan_id == plan_id)
                .order_by(LogRow.timestamp.asc(), LogRow.id.asc())
                .limit(limit)
                .offset(offset)
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [
                WorkflowLog(
                    id=r.id,
                    plan_id=r.plan_id,
                    step_id=r.step_id,
                    timestamp=r.timestamp,
                    level=r.level,
                    message=r.message,
                    metadata=r.meta,
                )
                for r in rows
            ]


@dataclass(frozen=True)
class SqlToolServerRepository(ToolServerRepository):
    """SQL implementation of ``ToolServerRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, server_id: str) -> Optional[ToolServerConfig]:
        async with self.session_factory() as s:
            row = await s.get(ToolServerRow, server_id)
            return _server_from_row(row) if row is not None else None

    async def list_for_project(self, project_id: str, *, enabled_only: bool = True) -> List[ToolServerConfig]:
        async with self.session_factory() as s:
            stmt = select(ToolServerRow).where(ToolServerRow.project_id == project_id)
            if enabled_only:
                stmt = stmt.where(ToolServerRow.enabled.is_(True))
            rows = (await s.execute(stmt.order_by(ToolServerRow.created_at.asc()))).scalars().all()
            return [_server_from_row(r) for r in rows]

    async def create(self, server: ToolServerConfig) -> ToolServerConfig:
        async with self.session_factory() as s:
            s.add(
                ToolServerRow(
                    id=server.id,
                    project_id=server.project_id,
                    name=server.name,
                    transport=server.transport.value,
                    endpoint=server.endpoint,
                    hosted_kind=server.hosted_kind,
                    auth_type=server.auth_type.value,
                    credential_ref=server.credential_ref,
                    enabled=server.enabled,
                    status=server.status.value,
                    created_at=server.created_at,
                    updated_at=server.updated_at,
                )
            )
            await s.commit()
        return server

    async def update(self, server_id: str, **changes: Any) -> Optional[ToolServerConfig]:
        async with self.session_factory() as s:
            row = await s.get(ToolServerRow, server_id)
            if row is None:
                return None
            for name, value in changes.items():
                setattr(row, name, _json_value(value))
            row.updated_at = _utc_now()
            await s.commit()
            return _server_from_row(row)

    async def get_tools(self, server_id: str) -> List[ToolSchema]:
        async with self.session_factory() as s:
            stmt = select(ToolSchemaRow).where(ToolSchemaRow.server_id == server_id).order_by(ToolSchemaRow.name)
            rows = (await s.execute(stmt)).scalars().all()
            return [
                ToolSchema(
                    server_id=r.server_id,
                    name=r.name,
                    description=r.description,
                    input_schema=r.input_schema or {},
                    approval_required_fields=list(r.approval_required_fields or []),
                    cached_at=r.cached_at,
                )
                for r in rows
            ]

    async def cache_tools(self, server_id: str, tools: List[ToolSchema]) -> None:
        async with self.session_factory() as s:
            await s.execute(delete(ToolSchemaRow).where(ToolSchemaRow.server_id == server_id))
            for t in tools:
                s.add(
                    ToolSchemaRow(
                        server_id=server_id,
                        name=t.name,
                        description=t.description,
                        input_schema=dict(t.input_schema),
                        approval_required_fields=list(t.approval_required_fields),
                        cached_at=t.cached_at,
                    )
                )
            await s.commit()


@dataclass(frozen=True)
class SqlPendingAuthorizationRepository(PendingAuthorizationRepository):
    """SQL implementation of ``PendingAuthorizationRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, pending: PendingAuthorization) -> None:
        async with self.session_factory() as s:
            s.add(
                PendingAuthorizationRow(
                    id=pending.id,
                    state=pending.state,
                    project_id=pending.project_id,
                    server_id=pending.server_id,
                    provider=pending.provider,
                    code_verifier=pending.code_verifier,
                    redirect_uri=pending.redirect_uri,
                    resource=pending.resource,
                    scopes=list(pending.scopes),
                    client_id=pending.client_id,
                    authorize_endpoint=pending.authorize_endpoint,
                    token_endpoint=pending.token_endpoint,
                    created_at=pending.created_at,
                    expires_at=pending.expires_at,
                )
            )
            await s.commit()

    async def pop(self, state: str) -> Optional[PendingAuthorization]:
        async with self.session_factory() as s:
            stmt = select(PendingAuthorizationRow).where(PendingAuthorizationRow.state == state).with_for_update()
            row = (await s.execute(stmt)).scalars().first()
            if row is None:
                return None
            pending = _pending_from_row(row)
            await s.delete(row)
            await s.commit()
            return pending

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or _utc_now()
        async with self.session_factory() as s:
            res = await s.execute(delete(PendingAuthorizationRow).where(PendingAuthorizationRow.expires_at <= now))
            await s.commit()
            return int(res.rowcount or 0)


@dataclass(frozen=True)
class SqlRepoBundle:
    plans: SqlPlanRepository
    logs: SqlLogRepository
    servers: SqlToolServerRepository
    pending_authorizations: SqlPendingAuthorizationRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build all SQL repositories sharing one session factory."""
    return SqlRepoBundle(
        plans=SqlPlanRepository(session_factory),
        logs=SqlLogRepository(session_factory),
        servers=SqlToolServerRepository(session_factory),
        pending_authorizations=SqlPendingAuthorizationRepository(session_factory),
    )
