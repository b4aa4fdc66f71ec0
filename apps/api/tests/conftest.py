from __future__ import annotations

import json
import os
import sys
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'safety_admin_push_test.db'}")
os.environ.setdefault("PUSH_BACKOFF_BASE_MS", "1")
os.environ.setdefault("PUSH_BACKOFF_JITTER_MS", "0")
os.environ.setdefault("PUSH_SCHEDULER_ENABLED", "false")

from app.config import settings  # noqa: E402
from app.db import SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import AdminUser, AppUser, Base, DeviceToken, utcnow  # noqa: E402
from app.push.credentials import GatewayCredentials  # noqa: E402

TOKEN_URI = "https://oauth2.test/token"
PROJECT_ID = "safety-test"
SEND_URL = f"https://fcm.googleapis.com/v1/projects/{PROJECT_ID}/messages:send"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture(scope="session")
def private_key_pem() -> str:
  key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
  return key.private_bytes(
    encoding=serialization.Encoding.PEM,
    format=serialization.PrivateFormat.PKCS8,
    encryption_algorithm=serialization.NoEncryption(),
  ).decode("utf-8")


@pytest.fixture
def service_account_json(private_key_pem: str) -> str:
  return json.dumps(
    {
      "type": "service_account",
      "project_id": PROJECT_ID,
      "private_key_id": "test-key-1",
      "private_key": private_key_pem,
      "client_email": "push@safety-test.iam.gserviceaccount.com",
      "token_uri": TOKEN_URI,
    }
  )


@pytest.fixture
def push_settings(service_account_json: str):
  return settings.model_copy(
    update={
      "google_service_account_json": service_account_json,
      "google_service_account_json_base64": None,
      "firebase_project_id": None,
    }
  )


@dataclass
class FakeFcm:
  """In-memory stand-in for the token endpoint and the FCM send endpoint."""

  statuses: dict[str, int] = field(default_factory=dict)
  token_requests: int = 0
  sends: list[dict[str, Any]] = field(default_factory=list)

  def handler(self, request: httpx.Request) -> httpx.Response:
    if str(request.url) == TOKEN_URI:
      self.token_requests += 1
      return httpx.Response(200, json={"access_token": f"access-{self.token_requests}", "expires_in": 3600})
    message = json.loads(request.content)["message"]
    self.sends.append(message)
    status = self.statuses.get(message["token"], 200)
    if status == 404:
      return httpx.Response(404, json={"error": {"code": 404, "status": "NOT_FOUND", "message": "Requested entity was not found."}})
    if status >= 400:
      return httpx.Response(status, json={"error": {"code": status, "status": "UNAVAILABLE", "message": "try again"}})
    return httpx.Response(200, json={"name": f"projects/{PROJECT_ID}/messages/{len(self.sends)}"})

  def attempts_for(self, token: str) -> int:
    return sum(1 for m in self.sends if m["token"] == token)

  def transport(self) -> httpx.MockTransport:
    return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_fcm() -> FakeFcm:
  return FakeFcm()


@pytest.fixture
def gateway_credentials(push_settings, fake_fcm: FakeFcm) -> GatewayCredentials:
  return GatewayCredentials(push_settings, transport=fake_fcm.transport())


async def _reset_schema() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def schema() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError("Refusing to run destructive tests against non-test DB. Set DATABASE_URL to a *_test database.")
  await _reset_schema()
  yield
  await engine.dispose()


@pytest.fixture
async def db(schema):
  async with SessionLocal() as session:
    yield session


@pytest.fixture
async def client(schema, gateway_credentials: GatewayCredentials) -> AsyncClient:
  previous = app.state.gateway_credentials
  app.state.gateway_credentials = gateway_credentials
  transport = ASGITransport(app=app)
  try:
    async with AsyncClient(transport=transport, base_url="http://localhost") as c:
      yield c
  finally:
    app.state.gateway_credentials = previous


def access_token_for(user_id: str, *, audience: str | None = None, secret: str | None = None) -> str:
  now = int(time.time())
  return jwt.encode(
    {"sub": user_id, "aud": audience or settings.supabase_jwt_audience, "iat": now, "exp": now + 600},
    secret or settings.supabase_jwt_secret,
    algorithm="HS256",
  )


def bearer(user_id: str) -> dict[str, str]:
  return {"Authorization": f"Bearer {access_token_for(user_id)}"}


async def create_admin() -> str:
  admin_id = str(uuid.uuid4())
  async with SessionLocal() as s:
    s.add(AdminUser(user_id=admin_id))
    await s.commit()
  return admin_id


async def add_token(
  user_id: str,
  token: str,
  *,
  platform: str | None = "android",
  enabled: bool = True,
  last_seen: datetime | None = None,
) -> None:
  async with SessionLocal() as s:
    s.add(DeviceToken(token=token, user_id=user_id, platform=platform, enabled=enabled, last_seen=last_seen))
    await s.commit()


async def add_app_user(auth_user_id: str | None, *, name: str | None = None, nickname: str | None = None, phone: str | None = None) -> int:
  async with SessionLocal() as s:
    u = AppUser(auth_user_id=auth_user_id, name=name, nickname=nickname, phone_number=phone, created_at=utcnow())
    s.add(u)
    await s.commit()
    return u.id


async def token_enabled(token: str) -> bool:
  async with SessionLocal() as s:
    res = await s.execute(select(DeviceToken.enabled).where(DeviceToken.token == token))
    return bool(res.scalar_one())


def ts(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
  return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def storage_failure() -> Exception:
  return OperationalError("SELECT 1", {}, Exception("database is locked"))


def fail_next_execute(monkeypatch, session, *, times: int = 1) -> list[object]:
  """Make the next `times` calls to `session.execute` raise a storage error, then behave normally."""
  original = session.execute
  seen: list[object] = []

  async def execute(statement, *args, **kwargs):
    if len(seen) < times:
      seen.append(statement)
      raise storage_failure()
    return await original(statement, *args, **kwargs)

  monkeypatch.setattr(session, "execute", execute)
  return seen
