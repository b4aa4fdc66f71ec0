from __future__ import annotations

from typing import Any

import jwt

from app.config import settings


class InvalidAccessToken(RuntimeError):
  pass


def decode_access_token(token: str) -> dict[str, Any]:
  """Verify a Supabase-issued access token and return its claims."""
  try:
    claims = jwt.decode(
      token,
      settings.supabase_jwt_secret,
      algorithms=["HS256"],
      audience=settings.supabase_jwt_audience,
      options={"require": ["sub", "exp"]},
    )
  except jwt.PyJWTError as exc:
    raise InvalidAccessToken(str(exc)) from exc
  return claims
