from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import DeviceToken

logger = logging.getLogger(__name__)

_CHUNK = 500


async def disable_tokens(db: AsyncSession, tokens: Iterable[str]) -> int:
  """Flip `enabled` off for dead tokens. Rows are kept; already-disabled rows are left alone."""
  uniq = sorted({t for t in tokens if t})
  if not uniq:
    return 0
  changed = 0
  for i in range(0, len(uniq), _CHUNK):
    res = await db.execute(
      update(DeviceToken)
      .where(DeviceToken.token.in_(uniq[i : i + _CHUNK]), DeviceToken.enabled.is_(True))
      .values(enabled=False)
      .execution_options(synchronize_session=False)
    )
    changed += int(res.rowcount or 0)
  await db.commit()
  if changed:
    logger.info("Disabled dead push tokens", extra={"count": changed})
  return changed
