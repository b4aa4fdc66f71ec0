from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.deps import Admin, get_current_admin, get_db, get_gateway_credentials
from app.models import PushJob
from app.push.credentials import GatewayCredentials
from app.push.directory import search_push_users
from app.push.ledger import FAILED, get_job, list_recent_jobs
from app.push.pipeline import enqueue, notify_target_reference, reference_audience
from app.push.scheduler import process_due_jobs_once
from app.schemas import (
  PushEnqueueIn,
  PushJobEnvelopeOut,
  PushJobOut,
  PushNotifyUserIn,
  PushScheduledRunOut,
  PushUserSearchOut,
)

router = APIRouter(prefix="/push", tags=["push"])


def _job_out(j: PushJob) -> PushJobOut:
  return PushJobOut(
    id=j.id,
    createdBy=j.created_by,
    createdAt=j.created_at,
    title=j.title,
    body=j.body,
    data=j.data,
    audience=j.audience,
    targetUserIds=j.target_user_ids,
    dryRun=bool(j.dry_run),
    scheduledAt=j.scheduled_at,
    status=j.status,
    result=j.result,
  )


def _envelope(j: PushJob) -> PushJobEnvelopeOut | JSONResponse:
  out = PushJobEnvelopeOut(ok=j.status != FAILED, job=_job_out(j))
  if j.status == FAILED:
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=out.model_dump(mode="json"))
  return out


@router.post("/enqueue", response_model=PushJobEnvelopeOut)
async def enqueue_push(
  payload: PushEnqueueIn,
  admin: Admin = Depends(get_current_admin),
  credentials: GatewayCredentials = Depends(get_gateway_credentials),
  db: AsyncSession = Depends(get_db),
):
  job = await enqueue(
    db,
    credentials,
    actor_id=admin.user_id,
    title=payload.title,
    body=payload.body,
    data=payload.data,
    audience=payload.audience,
    target_user_ids=payload.targetUserIds,
    image_url=(payload.imageUrl or "").strip() or None,
    scheduled_at=payload.scheduledAt,
  )
  return _envelope(job)


@router.post("/notify-user", response_model=PushJobEnvelopeOut)
async def notify_user(
  payload: PushNotifyUserIn,
  admin: Admin = Depends(get_current_admin),
  credentials: GatewayCredentials = Depends(get_gateway_credentials),
  db: AsyncSession = Depends(get_db),
):
  t = payload.target
  audience = reference_audience(
    auth_user_id=t.authUserId,
    app_user_id=t.appUserId,
    helpdesk_id=t.helpdeskId,
    report_id=t.reportId,
  )
  job = await notify_target_reference(
    db,
    credentials,
    actor_id=admin.user_id,
    title=payload.title,
    body=payload.body,
    audience=audience,
    data=payload.data,
  )
  return _envelope(job)


@router.get("/jobs", response_model=list[PushJobOut])
async def list_jobs(
  limit: int = Query(default=50),
  _: Admin = Depends(get_current_admin),
  db: AsyncSession = Depends(get_db),
) -> list[PushJobOut]:
  limit = max(1, min(int(limit), 200))
  return [_job_out(j) for j in await list_recent_jobs(db, limit=limit)]


@router.get("/jobs/{job_id}", response_model=PushJobOut)
async def get_push_job(
  job_id: int,
  _: Admin = Depends(get_current_admin),
  db: AsyncSession = Depends(get_db),
) -> PushJobOut:
  j = await get_job(db, job_id)
  if not j:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Push job not found")
  return _job_out(j)


@router.get("/search-users", response_model=PushUserSearchOut)
async def search_users(
  q: str = Query(default=""),
  limit: int = Query(default=200),
  _: Admin = Depends(get_current_admin),
  db: AsyncSession = Depends(get_db),
) -> PushUserSearchOut:
  items = await search_push_users(db, q=q, limit=limit)
  return PushUserSearchOut(items=items)


@router.post("/scheduled/run", response_model=PushScheduledRunOut)
async def run_scheduled(
  _: Admin = Depends(get_current_admin),
  credentials: GatewayCredentials = Depends(get_gateway_credentials),
  db: AsyncSession = Depends(get_db),
) -> PushScheduledRunOut:
  results = await process_due_jobs_once(db, credentials)
  return PushScheduledRunOut(processed=len(results), results=results)
