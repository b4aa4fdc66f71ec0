"""push core

Revision ID: 0001_push_core
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_push_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "admin_users",
    sa.Column("user_id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )

  op.create_table(
    "users",
    sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
    sa.Column("auth_user_id", postgresql.UUID(as_uuid=False), nullable=True),
    sa.Column("name", sa.String(), nullable=True),
    sa.Column("nickname", sa.String(), nullable=True),
    sa.Column("phone_number", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_auth_user_id", "users", ["auth_user_id"], unique=False)

  op.create_table(
    "help_desk_questions",
    sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
    sa.Column("auth_user_id", postgresql.UUID(as_uuid=False), nullable=True),
    sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("title", sa.String(), nullable=False, server_default=""),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )

  op.create_table(
    "reports",
    sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
    sa.Column("auth_user_id", postgresql.UUID(as_uuid=False), nullable=True),
    sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )

  op.create_table(
    "device_push_tokens",
    sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
    sa.Column("token", sa.Text(), nullable=False),
    sa.Column("user_id", postgresql.UUID(as_uuid=False), nullable=False),
    sa.Column("platform", sa.String(), nullable=True),
    sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_device_push_tokens_token", "device_push_tokens", ["token"], unique=True)
  op.create_index("ix_device_push_tokens_user_id", "device_push_tokens", ["user_id"], unique=False)

  op.create_table(
    "push_jobs",
    sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
    sa.Column("created_by", postgresql.UUID(as_uuid=False), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("title", sa.Text(), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("data", postgresql.JSONB(), nullable=True),
    sa.Column("audience", postgresql.JSONB(), nullable=True),
    sa.Column("target_user_ids", postgresql.JSONB(), nullable=True),
    sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("status", sa.String(), nullable=False, server_default="queued"),
    sa.Column("result", postgresql.JSONB(), nullable=True),
  )
  op.create_index("ix_push_jobs_status", "push_jobs", ["status"], unique=False)
  op.create_index("ix_push_jobs_scheduled_at", "push_jobs", ["scheduled_at"], unique=False)

  op.create_table(
    "audit_events",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("actor_id", postgresql.UUID(as_uuid=False), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)


def downgrade() -> None:
  op.drop_index("ix_audit_events_event_type", table_name="audit_events")
  op.drop_table("audit_events")
  op.drop_index("ix_push_jobs_scheduled_at", table_name="push_jobs")
  op.drop_index("ix_push_jobs_status", table_name="push_jobs")
  op.drop_table("push_jobs")
  op.drop_index("ix_device_push_tokens_user_id", table_name="device_push_tokens")
  op.drop_index("ix_device_push_tokens_token", table_name="device_push_tokens")
  op.drop_table("device_push_tokens")
  op.drop_table("reports")
  op.drop_table("help_desk_questions")
  op.drop_index("ix_users_auth_user_id", table_name="users")
  op.drop_table("users")
  op.drop_table("admin_users")
