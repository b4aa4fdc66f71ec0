from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import write_audit
from app.models import PushJob
from app.push.errors import LedgerError

logger = logging.getLogger(__name__)

QUEUED = "queued"
PROCESSING = "processing"
DONE = "done"
FAILED = "failed"
TERMINAL = (DONE, FAILED)


def _now() -> datetime:
  return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
  return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


async def rollback_quietly(db: AsyncSession) -> None:
  try:
    await db.rollback()
  except SQLAlchemyError:
    logger.exception("Rollback after ledger failure also failed")


async def get_job(db: AsyncSession, job_id: int) -> PushJob | None:
  try:
    res = await db.execute(select(PushJob).where(PushJob.id == job_id).execution_options(populate_existing=True))
  except SQLAlchemyError as exc:
    await rollback_quietly(db)
    logger.exception("Push job read failed", extra={"job_id": job_id})
    raise LedgerError(f"Push job {job_id} could not be read: {exc}", job_id=job_id) from exc
  return res.scalar_one_or_none()


async def create_job(
  db: AsyncSession,
  *,
  title: str,
  body: str,
  data: dict[str, Any] | None = None,
  audience: dict[str, Any] | None = None,
  target_user_ids: list[Any] | None = None,
  created_by: str | None = None,
  scheduled_at: datetime | None = None,
  dry_run: bool = False,
  now: datetime | None = None,
) -> PushJob:
  """Insert a job: `queued` when `scheduled_at` is in the future, `processing` otherwise."""
  now = now or _now()
  if scheduled_at is not None:
    scheduled_at = _as_utc(scheduled_at)
  status = QUEUED if scheduled_at is not None and scheduled_at > now else PROCESSING
  job = PushJob(
    created_by=created_by,
    created_at=now,
    title=title,
    body=body,
    data=data,
    audience=audience,
    target_user_ids=target_user_ids,
    dry_run=dry_run,
    scheduled_at=scheduled_at,
    status=status,
  )
  try:
    db.add(job)
    await db.flush()
    await write_audit(
      db,
      event_type="push.job.enqueued",
      entity_type="PushJob",
      entity_id=job.id,
      actor_id=created_by,
      payload={"status": status, "scheduledAt": scheduled_at, "audience": audience, "targets": len(target_user_ids or [])},
    )
    await db.commit()
  except SQLAlchemyError as exc:
    await rollback_quietly(db)
    logger.exception("Push job insert failed", extra={"title": title})
    raise LedgerError(f"Push job insert failed: {exc}") from exc
  return job


async def claim_job(db: AsyncSession, job_id: int) -> bool:
  """Move a `queued` job to `processing`. Returns False if another caller already moved it."""
  try:
    res = await db.execute(
      update(PushJob)
      .where(PushJob.id == job_id, PushJob.status == QUEUED)
      .values(status=PROCESSING)
      .execution_options(synchronize_session=False)
    )
    await db.commit()
  except SQLAlchemyError as exc:
    await rollback_quietly(db)
    logger.exception("Push job claim failed", extra={"job_id": job_id})
    raise LedgerError(f"Push job {job_id} claim failed: {exc}", job_id=job_id) from exc
  return int(res.rowcount or 0) == 1


async def _finish(db: AsyncSession, job_id: int, *, status: str, result: dict[str, Any], allowed_from: tuple[str, ...]) -> PushJob:
  try:
    res = await db.execute(
      update(PushJob)
      .where(PushJob.id == job_id, PushJob.status.in_(allowed_from))
      .values(status=status, result=result)
      .execution_options(synchronize_session=False)
    )
    moved = int(res.rowcount or 0) == 1
    if moved:
      await write_audit(
        db,
        event_type=f"push.job.{'completed' if status == DONE else 'failed'}",
        entity_type="PushJob",
        entity_id=job_id,
        payload=result,
      )
    await db.commit()
  except SQLAlchemyError as exc:
    await rollback_quietly(db)
    # No reconciliation exists: the job stays in `processing` until an operator requeues it.
    logger.exception("Push job state write failed", extra={"job_id": job_id, "target_status": status})
    raise LedgerError(f"Push job {job_id} could not be marked {status}: {exc}", job_id=job_id) from exc

  job = await get_job(db, job_id)
  if job is None:
    raise LedgerError(f"Push job {job_id} not found", job_id=job_id)
  if not moved:
    raise LedgerError(f"Push job {job_id} is {job.status}; cannot mark {status}", job_id=job_id)
  return job


async def complete_job(db: AsyncSession, job_id: int, result: dict[str, Any]) -> PushJob:
  return await _finish(db, job_id, status=DONE, result=result, allowed_from=(PROCESSING,))


async def fail_job(db: AsyncSession, job_id: int, error: str) -> PushJob:
  return await _finish(db, job_id, status=FAILED, result={"error": error}, allowed_from=(PROCESSING,))


async def due_jobs(db: AsyncSession, *, now: datetime | None = None, limit: int = 10) -> list[PushJob]:
  now = now or _now()
  res = await db.execute(
    select(PushJob)
    .where(PushJob.status == QUEUED, PushJob.scheduled_at.is_not(None), PushJob.scheduled_at <= now)
    .order_by(PushJob.scheduled_at.asc(), PushJob.id.asc())
    .limit(int(limit))
  )
  return list(res.scalars().all())


async def list_recent_jobs(db: AsyncSession, *, limit: int = 50) -> list[PushJob]:
  res = await db.execute(select(PushJob).order_by(PushJob.created_at.desc(), PushJob.id.desc()).limit(int(limit)))
  return list(res.scalars().all())
