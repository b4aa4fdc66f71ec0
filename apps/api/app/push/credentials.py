from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import jwt

from app.config import Settings, settings
from app.push.errors import ConfigurationError, SendError

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
ASSERTION_TTL_SECONDS = 3600


@dataclass(frozen=True)
class ServiceAccount:
  client_email: str
  private_key: str
  project_id: str | None
  token_uri: str
  private_key_id: str | None = None


def load_service_account(*, raw_json: str | None, raw_b64: str | None) -> ServiceAccount:
  """Base64 form wins over the plain JSON form when both are set."""
  text: str | None = None
  if raw_b64 and raw_b64.strip():
    try:
      text = base64.b64decode(raw_b64.strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
      raise ConfigurationError("GOOGLE_SERVICE_ACCOUNT_JSON_BASE64 is not valid base64") from exc
  elif raw_json and raw_json.strip():
    text = raw_json
  if not text:
    raise ConfigurationError("Missing GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_SERVICE_ACCOUNT_JSON_BASE64")

  try:
    obj = json.loads(text)
  except ValueError as exc:
    raise ConfigurationError("Service account JSON cannot be parsed") from exc
  if not isinstance(obj, dict):
    raise ConfigurationError("Service account JSON must be an object")

  email = str(obj.get("client_email") or "").strip()
  key = str(obj.get("private_key") or "")
  if not email or not key.strip():
    raise ConfigurationError("Service account JSON missing client_email/private_key")
  return ServiceAccount(
    client_email=email,
    private_key=key,
    project_id=(str(obj.get("project_id") or "").strip() or None),
    token_uri=(str(obj.get("token_uri") or "").strip() or DEFAULT_TOKEN_URI),
    private_key_id=(str(obj.get("private_key_id") or "").strip() or None),
  )


@dataclass
class AccessToken:
  value: str
  expires_at: float


class CredentialCache:
  """
  Process-scoped OAuth access token for the push gateway.

  The token is reused until `refresh_margin_seconds` before it expires, then exchanged again
  with a freshly signed service-account assertion.
  """

  def __init__(
    self,
    account: ServiceAccount,
    *,
    scope: str,
    refresh_margin_seconds: int = 300,
    timeout: float = 15.0,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.time,
  ) -> None:
    self.account = account
    self.scope = scope
    self.refresh_margin_seconds = refresh_margin_seconds
    self._timeout = timeout
    self._transport = transport
    self._clock = clock
    self._token: AccessToken | None = None
    self._lock = asyncio.Lock()

  def is_fresh(self) -> bool:
    if self._token is None:
      return False
    return self._clock() < self._token.expires_at - self.refresh_margin_seconds

  def invalidate(self) -> None:
    self._token = None

  async def access_token(self) -> str:
    async with self._lock:
      if not self.is_fresh():
        self._token = await self._exchange()
      return self._token.value

  def _assertion(self, now: int) -> str:
    headers = {"kid": self.account.private_key_id} if self.account.private_key_id else None
    claims = {
      "iss": self.account.client_email,
      "scope": self.scope,
      "aud": self.account.token_uri,
      "iat": now,
      "exp": now + ASSERTION_TTL_SECONDS,
    }
    try:
      return jwt.encode(claims, self.account.private_key, algorithm="RS256", headers=headers)
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
      raise ConfigurationError("Service account private_key cannot sign an assertion") from exc

  async def _exchange(self) -> AccessToken:
    now = int(self._clock())
    assertion = self._assertion(now)
    try:
      async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
        r = await client.post(self.account.token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion})
    except httpx.HTTPError as exc:
      raise ConfigurationError(f"Token endpoint unreachable: {exc}") from exc
    if r.status_code >= 400:
      raise ConfigurationError(f"Failed to get access token ({r.status_code}): {(r.text or '')[:500]}")
    try:
      payload = r.json()
    except ValueError as exc:
      raise ConfigurationError("Token endpoint returned a non-JSON body") from exc
    value = str((payload or {}).get("access_token") or "")
    if not value:
      raise ConfigurationError("Token endpoint response has no access_token")
    expires_in = int((payload or {}).get("expires_in") or ASSERTION_TTL_SECONDS)
    logger.info("Push gateway access token refreshed", extra={"expires_in": expires_in})
    return AccessToken(value=value, expires_at=now + expires_in)


class _BearerAuth(httpx.Auth):
  def __init__(self, cache: CredentialCache) -> None:
    self._cache = cache

  async def async_auth_flow(self, request: httpx.Request):
    request.headers["Authorization"] = f"Bearer {await self._cache.access_token()}"
    response = yield request
    if response.status_code == 401:
      self._cache.invalidate()
      request.headers["Authorization"] = f"Bearer {await self._cache.access_token()}"
      yield request


def _extract_gateway_error(r: httpx.Response) -> tuple[str | None, str]:
  try:
    payload: Any = r.json()
  except ValueError:
    return "UNKNOWN", (r.text or "")[:500] or f"HTTP {r.status_code}"
  err = payload.get("error") if isinstance(payload, dict) else None
  if isinstance(err, dict):
    code = err.get("status")
    msg = err.get("message") or f"HTTP {r.status_code}"
    return (str(code) if code else None), str(msg)
  return "UNKNOWN", f"HTTP {r.status_code}"


class GatewayClient:
  """Authenticated caller for the FCM v1 send endpoint. Never exposes credentials."""

  def __init__(self, cache: CredentialCache, *, timeout: float, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._http = httpx.AsyncClient(auth=_BearerAuth(cache), timeout=timeout, transport=transport)

  async def send(self, url: str, message: dict[str, Any]) -> str | None:
    try:
      r = await self._http.post(url, json={"message": message})
    except httpx.HTTPError as exc:
      raise SendError(status=None, code=None, message=str(exc) or exc.__class__.__name__) from exc
    if r.status_code >= 400:
      code, msg = _extract_gateway_error(r)
      raise SendError(status=r.status_code, code=code, message=msg)
    try:
      body = r.json()
    except ValueError:
      return None
    return body.get("name") if isinstance(body, dict) else None

  async def aclose(self) -> None:
    await self._http.aclose()

  async def __aenter__(self) -> GatewayClient:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    await self.aclose()


class GatewayCredentials:
  """
  Owns the service account and the shared `CredentialCache` for the lifetime of the process.

  Secrets are read on first use, so a misconfigured deployment still boots and reports
  `ConfigurationError` when a dispatch is attempted.
  """

  def __init__(
    self,
    cfg: Settings = settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.time,
  ) -> None:
    self._cfg = cfg
    self._transport = transport
    self._clock = clock
    self._cache: CredentialCache | None = None
    self._send_url: str | None = None

  def _ensure_loaded(self) -> CredentialCache:
    if self._cache is not None:
      return self._cache
    account = load_service_account(
      raw_json=self._cfg.google_service_account_json,
      raw_b64=self._cfg.google_service_account_json_base64,
    )
    project_id = (self._cfg.firebase_project_id or "").strip() or account.project_id
    if not project_id:
      raise ConfigurationError("Missing FIREBASE_PROJECT_ID")
    base = self._cfg.fcm_base_url.rstrip("/")
    self._send_url = f"{base}/v1/projects/{project_id}/messages:send"
    self._cache = CredentialCache(
      account,
      scope=self._cfg.fcm_scope,
      refresh_margin_seconds=self._cfg.push_token_refresh_margin_seconds,
      timeout=self._cfg.push_http_timeout_seconds,
      transport=self._transport,
      clock=self._clock,
    )
    return self._cache

  async def access_token(self) -> str:
    return await self._ensure_loaded().access_token()

  def get_gateway_client(self) -> tuple[GatewayClient, str]:
    cache = self._ensure_loaded()
    client = GatewayClient(cache, timeout=self._cfg.push_http_timeout_seconds, transport=self._transport)
    return client, str(self._send_url)
