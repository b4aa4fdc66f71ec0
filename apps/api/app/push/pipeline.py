from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.models import PushJob
from app.push.credentials import GatewayClient, GatewayCredentials
from app.push.dispatcher import DispatchSummary, RetryPolicy, dispatch_all
from app.push.errors import ConfigurationError, LedgerError
from app.push.hygiene import disable_tokens
from app.push.ledger import QUEUED, complete_job, create_job, fail_job, rollback_quietly
from app.push.messages import MessageParams
from app.push.targets import addressing_for_job, resolve_targets

logger = logging.getLogger(__name__)


def message_params_for_job(job: PushJob, cfg: Settings = settings) -> MessageParams:
  data = dict(job.data or {})
  return MessageParams(
    title=job.title,
    body=job.body,
    data=data,
    image_url=data.get("image") if isinstance(data.get("image"), str) else None,
    nid=f"push-{job.id}",
    channel_id=cfg.android_channel_id,
  )


async def open_gateway(credentials: GatewayCredentials) -> tuple[GatewayClient, str]:
  """Load credentials and fetch an access token up front so config problems surface before any send."""
  client, url = credentials.get_gateway_client()
  try:
    await credentials.access_token()
  except BaseException:
    await client.aclose()
    raise
  return client, url


async def run_job(
  db: AsyncSession,
  job: PushJob,
  gateway: GatewayClient,
  send_url: str,
  *,
  cfg: Settings = settings,
  policy: RetryPolicy | None = None,
) -> PushJob:
  """
  Drive a `processing` job to a terminal state: resolve, build, dispatch, disable dead
  tokens, then record the outcome. Pipeline-stage errors mark the job `failed`; ledger
  write errors propagate.
  """
  job_id = job.id
  try:
    targets = await resolve_targets(db, addressing_for_job(job))
    if not targets:
      result = DispatchSummary().as_result(dry_run=job.dry_run)
      result["message"] = "No valid tokens"
      return await complete_job(db, job_id, result)

    params = message_params_for_job(job, cfg)
    if job.dry_run:
      summary = DispatchSummary(total=len(targets))
    else:
      summary = await dispatch_all(
        gateway,
        send_url,
        targets,
        params,
        policy=policy or RetryPolicy.from_settings(cfg),
        batch_size=cfg.push_batch_size,
      )
      await disable_tokens(db, summary.dead_tokens)
  except LedgerError:
    raise
  except Exception as exc:
    await rollback_quietly(db)
    logger.exception("Push job pipeline failed", extra={"job_id": job_id})
    return await fail_job(db, job_id, str(exc) or exc.__class__.__name__)

  logger.info(
    "Push job finished",
    extra={"job_id": job_id, "total": summary.total, "sent": summary.sent, "failed": summary.failed, "dead": len(summary.dead_tokens)},
  )
  return await complete_job(db, job_id, summary.as_result(dry_run=job.dry_run))


async def run_job_with_credentials(
  db: AsyncSession,
  job: PushJob,
  credentials: GatewayCredentials,
  *,
  cfg: Settings = settings,
  policy: RetryPolicy | None = None,
) -> PushJob:
  """Immediate path. A `ConfigurationError` is recorded on the job and then re-raised."""
  try:
    gateway, url = await open_gateway(credentials)
  except ConfigurationError as exc:
    logger.error("Push gateway not configured", extra={"job_id": job.id, "error": str(exc)})
    await fail_job(db, job.id, str(exc))
    raise
  async with gateway:
    return await run_job(db, job, gateway, url, cfg=cfg, policy=policy)


def merge_image(data: dict[str, Any] | None, image_url: str | None) -> dict[str, Any] | None:
  if isinstance(data, dict):
    out = dict(data)
    if image_url:
      out["image"] = image_url
    return out
  return {"image": image_url} if image_url else None


async def enqueue(
  db: AsyncSession,
  credentials: GatewayCredentials,
  *,
  actor_id: str | None,
  title: str,
  body: str,
  data: dict[str, Any] | None = None,
  audience: dict[str, Any] | None = None,
  target_user_ids: list[Any] | None = None,
  image_url: str | None = None,
  scheduled_at: datetime | None = None,
  now: datetime | None = None,
  policy: RetryPolicy | None = None,
) -> PushJob:
  """Broadcast or explicit-user send. Future `scheduled_at` only queues the job."""
  explicit = [x for x in (target_user_ids or []) if x is not None and str(x).strip()]
  job = await create_job(
    db,
    title=title.strip(),
    body=body,
    data=merge_image(data, image_url),
    audience=None if explicit else (audience or {"all": True}),
    target_user_ids=explicit or None,
    created_by=actor_id,
    scheduled_at=scheduled_at,
    now=now,
  )
  if job.status == QUEUED:
    logger.info("Push job queued", extra={"job_id": job.id, "scheduled_at": str(job.scheduled_at)})
    return job
  return await run_job_with_credentials(db, job, credentials, policy=policy)


def reference_audience(
  *,
  auth_user_id: str | None = None,
  app_user_id: int | None = None,
  helpdesk_id: int | None = None,
  report_id: int | None = None,
) -> dict[str, Any] | None:
  if auth_user_id:
    return {"reference": {"kind": "auth_user", "id": auth_user_id}}
  if app_user_id is not None:
    return {"reference": {"kind": "app_user", "id": int(app_user_id)}}
  if helpdesk_id is not None:
    return {"reference": {"kind": "help_desk", "id": int(helpdesk_id)}}
  if report_id is not None:
    return {"reference": {"kind": "report", "id": int(report_id)}}
  return None


async def notify_target_reference(
  db: AsyncSession,
  credentials: GatewayCredentials,
  *,
  actor_id: str | None,
  title: str,
  body: str,
  audience: dict[str, Any],
  data: dict[str, Any] | None = None,
  policy: RetryPolicy | None = None,
) -> PushJob:
  """Notify the owner of one entity (a user, a help-desk question, a report) immediately."""
  job = await create_job(
    db,
    title=title.strip(),
    body=body,
    data=data if isinstance(data, dict) else None,
    audience=audience,
    target_user_ids=None,
    created_by=actor_id,
  )
  return await run_job_with_credentials(db, job, credentials, policy=policy)
