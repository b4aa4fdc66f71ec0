from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


_TZ_SUFFIX_RE = re.compile(r"(Z|[+-]\d{2}:\d{2})$")


def _parse_dt_utc_require_tz(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    if value.tzinfo is None:
      raise ValueError("datetime must include timezone")
    return value.astimezone(timezone.utc)
  if isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if not _TZ_SUFFIX_RE.search(s):
      raise ValueError("datetime must include timezone")
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    return dt.astimezone(timezone.utc)
  return value


def _required_text(v: str) -> str:
  if not (v or "").strip():
    raise ValueError("must not be blank")
  return v


class PushJobOut(BaseModel):
  id: int
  createdBy: str | None = None
  createdAt: datetime
  title: str
  body: str
  data: dict[str, Any] | None = None
  audience: dict[str, Any] | None = None
  targetUserIds: list[Any] | None = None
  dryRun: bool = False
  scheduledAt: datetime | None = None
  status: str
  result: dict[str, Any] | None = None


class PushJobEnvelopeOut(BaseModel):
  ok: bool = True
  job: PushJobOut


class PushEnqueueIn(BaseModel):
  title: str = Field(max_length=200)
  body: str = Field(max_length=4000)
  data: dict[str, Any] | None = None
  audience: dict[str, Any] | None = None
  targetUserIds: list[str] | None = None
  imageUrl: str | None = Field(default=None, max_length=2000)
  scheduledAt: datetime | None = None

  @field_validator("title", "body")
  @classmethod
  def _not_blank(cls, v: str) -> str:
    return _required_text(v)

  @field_validator("scheduledAt", mode="before")
  @classmethod
  def _scheduled_to_utc(cls, v: object) -> object:
    return _parse_dt_utc_require_tz(v)


class PushTargetIn(BaseModel):
  authUserId: str | None = None
  appUserId: int | None = None
  helpdeskId: int | None = None
  reportId: int | None = None

  @model_validator(mode="after")
  def _one_target(self) -> PushTargetIn:
    if not (self.authUserId or self.appUserId is not None or self.helpdeskId is not None or self.reportId is not None):
      raise ValueError("target requires authUserId, appUserId, helpdeskId or reportId")
    return self


class PushNotifyUserIn(BaseModel):
  title: str = Field(max_length=200)
  body: str = Field(max_length=4000)
  data: dict[str, Any] | None = None
  target: PushTargetIn

  @field_validator("title", "body")
  @classmethod
  def _not_blank(cls, v: str) -> str:
    return _required_text(v)


class PushUserProfileOut(BaseModel):
  appUserId: int | None = None
  name: str | None = None
  nickname: str | None = None
  phone: str | None = None


class PushUserSearchItemOut(BaseModel):
  userId: str
  lastSeen: datetime | None = None
  profile: PushUserProfileOut | None = None


class PushUserSearchOut(BaseModel):
  ok: bool = True
  items: list[PushUserSearchItemOut]


class PushScheduledRunOut(BaseModel):
  ok: bool = True
  processed: int
  results: list[dict[str, Any]]
