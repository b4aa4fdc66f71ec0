from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.push.credentials import GatewayCredentials
from app.push.dispatcher import RetryPolicy
from app.push.errors import LedgerError
from app.push.ledger import claim_job, due_jobs, get_job, rollback_quietly
from app.push.pipeline import open_gateway, run_job

logger = logging.getLogger(__name__)


async def process_due_jobs_once(
  db: AsyncSession,
  credentials: GatewayCredentials,
  *,
  now: datetime | None = None,
  limit: int | None = None,
  cfg: Settings = settings,
  policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
  """
  One scheduler tick.

  - Picks up to `limit` queued jobs whose `scheduled_at` has passed, oldest first.
  - Credentials are checked before anything is claimed, so a misconfigured gateway leaves
    the jobs queued for the next tick.
  - Jobs run one after another; a failing job is recorded (or logged, when even that write
    fails) and the tick moves on.
  """
  now = now or datetime.now(timezone.utc)
  limit = int(limit if limit is not None else cfg.push_scheduler_batch_limit)

  job_ids = [j.id for j in await due_jobs(db, now=now, limit=limit)]
  if not job_ids:
    return []

  gateway, url = await open_gateway(credentials)
  results: list[dict[str, Any]] = []
  async with gateway:
    for job_id in job_ids:
      try:
        if not await claim_job(db, job_id):
          continue
        job = await get_job(db, job_id)
        if job is None:
          continue
        final = await run_job(db, job, gateway, url, cfg=cfg, policy=policy)
      except LedgerError:
        logger.exception("Scheduled push job left without a terminal state", extra={"job_id": job_id})
        continue
      except Exception:
        await rollback_quietly(db)
        logger.exception("Scheduled push job crashed", extra={"job_id": job_id})
        continue
      outcome: dict[str, Any] = {"jobId": final.id, "status": final.status}
      outcome.update(final.result or {})
      results.append(outcome)
  logger.info("Scheduled push tick finished", extra={"due": len(job_ids), "processed": len(results)})
  return results
