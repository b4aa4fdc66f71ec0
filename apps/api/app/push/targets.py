from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AppUser, DeviceToken, HelpDeskQuestion, PushJob, Report
from app.push.errors import ResolutionError


@dataclass(frozen=True)
class DeviceTarget:
  token: str
  platform: str | None = None


@dataclass(frozen=True)
class ExplicitUsers:
  user_ids: tuple[str, ...]


@dataclass(frozen=True)
class AllUsers:
  pass


@dataclass(frozen=True)
class AppUserRef:
  app_user_id: int


@dataclass(frozen=True)
class ForeignReference:
  entity_kind: str
  entity_id: int


Addressing = Union[ExplicitUsers, AllUsers, AppUserRef, ForeignReference]

REFERENCE_MODELS: dict[str, Any] = {
  "help_desk": HelpDeskQuestion,
  "report": Report,
}


def addressing_for_job(job: PushJob) -> Addressing:
  """Explicit ids win over `audience`; a job with neither goes to every enabled device."""
  ids = [str(x) for x in (job.target_user_ids or []) if x is not None and str(x).strip()]
  if ids:
    return ExplicitUsers(tuple(ids))
  audience = job.audience or {}
  ref = audience.get("reference") if isinstance(audience, dict) else None
  if isinstance(ref, dict):
    kind = str(ref.get("kind") or "")
    if kind == "app_user":
      return AppUserRef(int(ref["id"]))
    if kind == "auth_user":
      return ExplicitUsers((str(ref["id"]),))
    return ForeignReference(kind, int(ref["id"]))
  return AllUsers()


def _recency(row: Any) -> datetime | None:
  return row.last_seen or row.created_at


def pick_latest_per_user(rows: Iterable[Any]) -> list[DeviceTarget]:
  """
  Keep the most recently seen token per user, then drop repeated token strings.

  Ties keep the first row seen, so callers should pass rows in a stable order.
  """
  by_user: dict[str, Any] = {}
  for r in rows:
    prev = by_user.get(r.user_id)
    if prev is None:
      by_user[r.user_id] = r
      continue
    t, pt = _recency(r), _recency(prev)
    if t is not None and (pt is None or t > pt):
      by_user[r.user_id] = r

  uniq: dict[str, DeviceTarget] = {}
  for r in by_user.values():
    token = (r.token or "").strip()
    if token and token not in uniq:
      uniq[token] = DeviceTarget(token=token, platform=r.platform)
  return list(uniq.values())


async def _token_rows(db: AsyncSession, user_ids: list[str] | None) -> list[Any]:
  stmt = select(
    DeviceToken.token,
    DeviceToken.user_id,
    DeviceToken.platform,
    DeviceToken.last_seen,
    DeviceToken.created_at,
  ).where(DeviceToken.enabled.is_(True))
  if user_ids is not None:
    stmt = stmt.where(DeviceToken.user_id.in_(user_ids))
  res = await db.execute(stmt.order_by(DeviceToken.id.asc()))
  return list(res.all())


async def _auth_id_for_app_user(db: AsyncSession, app_user_id: int) -> str | None:
  res = await db.execute(select(AppUser.auth_user_id).where(AppUser.id == app_user_id))
  return res.scalar_one_or_none()


async def _owner_auth_id(db: AsyncSession, ref: ForeignReference) -> str | None:
  model = REFERENCE_MODELS.get(ref.entity_kind)
  if model is None:
    raise ResolutionError(f"Unknown reference kind: {ref.entity_kind}")
  res = await db.execute(select(model.auth_user_id, model.user_id).where(model.id == ref.entity_id))
  row = res.one_or_none()
  if row is None:
    return None
  if row.auth_user_id:
    return row.auth_user_id
  if row.user_id is not None:
    return await _auth_id_for_app_user(db, int(row.user_id))
  return None


async def _resolve_rows(db: AsyncSession, addressing: Addressing) -> list[Any]:
  if isinstance(addressing, AllUsers):
    return await _token_rows(db, None)
  if isinstance(addressing, ExplicitUsers):
    if not addressing.user_ids:
      return []
    return await _token_rows(db, list(dict.fromkeys(addressing.user_ids)))
  if isinstance(addressing, AppUserRef):
    auth_id = await _auth_id_for_app_user(db, addressing.app_user_id)
    return await _token_rows(db, [auth_id]) if auth_id else []
  if isinstance(addressing, ForeignReference):
    auth_id = await _owner_auth_id(db, addressing)
    return await _token_rows(db, [auth_id]) if auth_id else []
  raise ResolutionError(f"Unsupported addressing: {addressing!r}")


async def resolve_targets(db: AsyncSession, addressing: Addressing) -> list[DeviceTarget]:
  try:
    rows = await _resolve_rows(db, addressing)
  except SQLAlchemyError as exc:
    raise ResolutionError(f"Target lookup failed: {exc}") from exc
  return pick_latest_per_user(rows)
