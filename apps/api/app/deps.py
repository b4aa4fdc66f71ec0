from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import SessionLocal
from app.models import AdminUser
from app.push.credentials import GatewayCredentials
from app.security import InvalidAccessToken, decode_access_token


@dataclass(frozen=True)
class Admin:
  user_id: str
  email: str | None = None


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


def get_gateway_credentials(request: Request) -> GatewayCredentials:
  return request.app.state.gateway_credentials


async def get_current_admin(
  request: Request,
  db: AsyncSession = Depends(get_db),
) -> Admin:
  auth = request.headers.get("authorization") or ""
  if not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  try:
    claims = decode_access_token(token)
  except InvalidAccessToken:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

  user_id = str(claims.get("sub") or "")
  try:
    uuid.UUID(user_id)
  except ValueError:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  res = await db.execute(select(AdminUser).where(AdminUser.user_id == user_id))
  if res.scalar_one_or_none() is None:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin required")
  return Admin(user_id=user_id, email=claims.get("email"))
