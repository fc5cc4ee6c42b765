from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.db import SessionLocal
from tasktracker.models import Session as DbSession, User, utcnow
from tasktracker.security import SESSION_COOKIE_NAME


async def get_db() -> AsyncIterator[AsyncSession]:
  async with SessionLocal() as session:
    yield session


async def get_current_user(
  db: AsyncSession = Depends(get_db),
  session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> User:
  if not session_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

  res = await db.execute(
    select(User)
    .join(DbSession, DbSession.user_id == User.id)
    .where(DbSession.id == session_id, DbSession.expires_at > utcnow())
  )
  u = res.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session")
  return u


def client_ip(request: Request) -> str | None:
  return request.client.host if request.client else None
