from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AppUser, DeviceToken

_UUID_RE = re.compile(r"^[0-9a-f-]{32,36}$", re.IGNORECASE)


def _profile(u: AppUser | None) -> dict[str, Any] | None:
  if u is None:
    return None
  return {"appUserId": u.id, "name": u.name, "nickname": u.nickname, "phone": u.phone_number}


async def search_push_users(db: AsyncSession, *, q: str = "", limit: int = 200) -> list[dict[str, Any]]:
  """
  Find users who own an enabled device token, newest `last_seen` first.

  An empty query lists the most recently seen tokens; a uuid-looking query matches the auth id
  directly; anything else is matched against name, nickname and phone number.
  """
  q = (q or "").strip()
  limit = max(1, min(int(limit), 500))

  matched: list[str] | None = None
  if q:
    if _UUID_RE.fullmatch(q):
      matched = [q]
    else:
      like = f"%{q}%"
      res = await db.execute(
        select(AppUser.auth_user_id)
        .where(
          or_(AppUser.name.ilike(like), AppUser.nickname.ilike(like), AppUser.phone_number.ilike(like)),
          AppUser.auth_user_id.is_not(None),
        )
        .limit(500)
      )
      matched = [r for r in res.scalars().all() if r]
      if not matched:
        return []

  stmt = (
    select(DeviceToken.user_id, DeviceToken.last_seen)
    .where(DeviceToken.enabled.is_(True))
    .order_by(DeviceToken.last_seen.desc().nulls_last(), DeviceToken.id.desc())
  )
  if matched is not None:
    stmt = stmt.where(DeviceToken.user_id.in_(matched))
  else:
    stmt = stmt.limit(limit)
  rows = (await db.execute(stmt)).all()
  if not rows:
    return []

  auth_ids = list(dict.fromkeys(r.user_id for r in rows))
  ures = await db.execute(select(AppUser).where(AppUser.auth_user_id.in_(auth_ids)).limit(1000))
  by_auth: dict[str, AppUser] = {u.auth_user_id: u for u in ures.scalars().all() if u.auth_user_id}

  # One entry per user; rows are already newest-first.
  seen: dict[str, datetime | None] = {}
  for r in rows:
    if r.user_id not in seen:
      seen[r.user_id] = r.last_seen
  return [
    {"userId": uid, "lastSeen": last_seen, "profile": _profile(by_auth.get(uid))}
    for uid, last_seen in list(seen.items())[:limit]
  ]
