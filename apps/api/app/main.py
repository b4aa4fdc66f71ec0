from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.db import SessionLocal
from app.push.credentials import GatewayCredentials
from app.push.errors import ConfigurationError
from app.push.scheduler import process_due_jobs_once
from app.routers.push import router as push_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
  title="Safety Admin Push API",
  version="0.1.0",
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)
app.state.gateway_credentials = GatewayCredentials()


@app.exception_handler(ConfigurationError)
async def _push_configuration_error_handler(_, exc: ConfigurationError) -> JSONResponse:
  return JSONResponse(status_code=503, content={"detail": str(exc)})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["GET", "POST", "OPTIONS"],
  allow_headers=["Authorization", "Content-Type"],
)

app.include_router(push_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


_push_loop_task: asyncio.Task | None = None


def _is_test_db() -> bool:
  try:
    db_name = settings.database_url.rsplit("/", 1)[-1]
    return "test" in db_name
  except Exception:
    return False


async def _scheduled_push_loop() -> None:
  while True:
    await asyncio.sleep(max(10, int(settings.push_scheduler_interval_seconds)))
    async with SessionLocal() as db:
      try:
        await process_due_jobs_once(db, app.state.gateway_credentials)
      except ConfigurationError as exc:
        logger.error("Scheduled push skipped: gateway not configured", extra={"error": str(exc)})
      except Exception:
        logger.exception("Scheduled push tick failed")


@app.on_event("startup")
async def _startup() -> None:
  global _push_loop_task
  if _is_test_db():
    return
  if settings.push_scheduler_enabled and _push_loop_task is None:
    _push_loop_task = asyncio.create_task(_scheduled_push_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _push_loop_task
  if _push_loop_task is not None:
    _push_loop_task.cancel()
    _push_loop_task = None
