from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")
BigId = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


class Base(DeclarativeBase):
  pass


class AdminUser(Base):
  __tablename__ = "admin_users"

  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AppUser(Base):
  """Public profile row; `id` is the app-internal numeric id, `auth_user_id` the device-addressable one."""

  __tablename__ = "users"

  id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
  auth_user_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True, index=True)
  name: Mapped[str | None] = mapped_column(String, nullable=True)
  nickname: Mapped[str | None] = mapped_column(String, nullable=True)
  phone_number: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class HelpDeskQuestion(Base):
  __tablename__ = "help_desk_questions"

  id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
  auth_user_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
  title: Mapped[str] = mapped_column(String, nullable=False, default="")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Report(Base):
  __tablename__ = "reports"

  id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
  auth_user_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class DeviceToken(Base):
  __tablename__ = "device_push_tokens"

  id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
  token: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
  platform: Mapped[str | None] = mapped_column(String, nullable=True)
  enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class PushJob(Base):
  __tablename__ = "push_jobs"

  id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
  created_by: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
  audience: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
  target_user_ids: Mapped[list[Any] | None] = mapped_column(JSONType, nullable=True)
  dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="queued", index=True)
  result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
  actor_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
