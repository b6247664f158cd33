"""Workflow plans, logs, tool servers and OAuth pending authorizations

Revision ID: 20261019_000000
Revises: None
Create Date: 2026-10-19 00:00:00.000000

This is the initial migration for the Weft-AI orchestration core. It creates:
- Workflow plans and their append-only log timeline
- Tool servers and their cached tool schemas
- Single-use pending OAuth authorizations

Revision format: YYYYMMDD_HHMMSS_description

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all workflow tables."""

    # Create wf_workflow_plans table
    op.create_table(
        "wf_workflow_plans",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("task_id", sa.String(64), nullable=False),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("steps", JSONB(), nullable=False, server_default="[]"),
        sa.Column("current_step_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("checkpoint_data", JSONB(), nullable=True),
        sa.Column("result", JSONB(), nullable=True),
        sa.Column("conversation_history", JSONB(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_wf_workflow_plans_task_id", "task_id"),
        sa.Index("ix_wf_workflow_plans_project_id", "project_id"),
    )

    # Create wf_workflow_logs table
    op.create_table(
        "wf_workflow_logs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("plan_id", sa.String(64), nullable=False),
        sa.Column("step_id", sa.String(64), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("level", sa.String(16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_wf_workflow_logs_plan_id", "plan_id"),
        sa.Index("ix_wf_workflow_logs_timestamp", "timestamp"),
    )

    # Create wf_tool_servers table
    op.create_table(
        "wf_tool_servers",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("transport", sa.String(32), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=True),
        sa.Column("hosted_kind", sa.String(64), nullable=True),
        sa.Column("auth_type", sa.String(32), nullable=False, server_default="none"),
        sa.Column("credential_ref", sa.String(64), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(32), nullable=False, server_default="disconnected"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_wf_tool_servers_project_id", "project_id"),
    )

    # Create wf_tool_schemas table
    op.create_table(
        "wf_tool_schemas",
        sa.Column("server_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("input_schema", JSONB(), nullable=False),
        sa.Column("approval_required_fields", JSONB(), nullable=False, server_default="[]"),
        sa.Column("cached_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("server_id", "name"),
        sa.ForeignKeyConstraint(["server_id"], ["wf_tool_servers.id"], ondelete="CASCADE"),
    )

    # Create wf_oauth_pending table
    op.create_table(
        "wf_oauth_pending",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("state", sa.String(128), nullable=False),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("server_id", sa.String(64), nullable=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("code_verifier", sa.String(256), nullable=False),
        sa.Column("redirect_uri", sa.Text(), nullable=False),
        sa.Column("resource", sa.Text(), nullable=True),
        sa.Column("scopes", JSONB(), nullable=False, server_default="[]"),
        sa.Column("client_id", sa.String(256), nullable=True),
        sa.Column("authorize_endpoint", sa.Text(), nullable=True),
        sa.Column("token_endpoint", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_wf_oauth_pending_state", "state", unique=True),
        sa.Index("ix_wf_oauth_pending_expires_at", "expires_at"),
    )


def downgrade() -> None:
    """Drop all tables created in upgrade."""
    op.drop_table("wf_oauth_pending")
    op.drop_table("wf_tool_schemas")
    op.drop_table("wf_tool_servers")
    op.drop_table("wf_workflow_logs")
    op.drop_table("wf_workflow_plans")
