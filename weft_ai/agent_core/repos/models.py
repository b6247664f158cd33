from __future__ import annotations

"""SQLAlchemy ORM models for workflow persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``weft_ai.agent_core.repos.sql``.

Design
------

- Plans store status plus the JSON documents the engine needs to resume
  (steps, checkpoint data, result, conversation history).
- Logs form an append-only timeline per plan.
- Tool servers and their cached tool schemas back the tool registry.
- Pending OAuth authorizations are single-use rows keyed by state nonce.

JSON columns use JSONB on Postgres and plain JSON elsewhere (SQLite in
tests). Table names are prefixed with ``wf_`` to avoid collisions in shared
databases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class PlanRow(Base):
    """Row model for ``wf_workflow_plans``."""

    __tablename__ = "wf_workflow_plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(64), index=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)

    status: Mapped[str] = mapped_column(String(32))
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    steps: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    current_step_index: Mapped[int] = mapped_column(Integer, default=0)
    checkpoint_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    conversation_history: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class LogRow(Base):
    """Row model for ``wf_workflow_logs``. Append-only."""

    __tablename__ = "wf_workflow_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan_id: Mapped[str] = mapped_column(String(64), index=True)
    step_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    level: Mapped[str] = mapped_column(String(16))
    message: Mapped[str] = mapped_column(Text)
    # ``metadata`` is reserved on declarative classes.
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)


class ToolServerRow(Base):
    """Row model for ``wf_tool_servers``."""

    __tablename__ = "wf_tool_servers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(128))
    transport: Mapped[str] = mapped_column(String(32))
    endpoint: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hosted_kind: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    auth_type: Mapped[str] = mapped_column(String(32), default="none")
    credential_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(32), default="disconnected")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ToolSchemaRow(Base):
    """Row model for ``wf_tool_schemas``; one row per cached tool."""

    __tablename__ = "wf_tool_schemas"

    server_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("wf_tool_servers.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    input_schema: Mapped[Dict[str, Any]] = mapped_column(JSONType)
    approval_required_fields: Mapped[List[str]] = mapped_column(JSONType, default=list)
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class PendingAuthorizationRow(Base):
    """Row model for ``wf_oauth_pending``."""

    __tablename__ = "wf_oauth_pending"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    project_id: Mapped[str] = mapped_column(String(64))
    server_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provider: Mapped[str] = mapped_column(String(32))
    code_verifier: Mapped[str] = mapped_column(String(256))
    redirect_uri: Mapped[str] = mapped_column(Text)
    resource: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scopes: Mapped[List[str]] = mapped_column(JSONType, default=list)
    client_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    authorize_endpoint: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_endpoint: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
