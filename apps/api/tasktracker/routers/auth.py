from __future__ import annotations

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.audit import write_audit
from tasktracker.config import settings
from tasktracker.deps import client_ip, get_current_user, get_db
from tasktracker.models import Session as DbSession, User
from tasktracker.rate_limit import limiter
from tasktracker.schemas import LoginIn, PasswordChangeIn, ProfileUpdateIn, RegisterIn, UserOut
from tasktracker.security import (
  SESSION_COOKIE_NAME,
  hash_password,
  new_session_expires_at,
  normalize_email,
  session_ttl_seconds,
  verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_out(u: User) -> UserOut:
  return UserOut(
    id=u.id,
    email=u.email,
    name=u.name,
    role=u.role,
    avatarUrl=u.avatar_url,
    createdAt=u.created_at,
  )


def _rate_limit_or_429(*, key: str, limit: int, window_seconds: int) -> None:
  allowed, retry_after = limiter.hit(key, limit=limit, window_seconds=window_seconds)
  if allowed:
    return
  raise HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail={"code": "rate_limited", "message": "Too many requests", "retryAfterSeconds": retry_after},
    headers={"Retry-After": str(retry_after)},
  )


async def _email_taken(db: AsyncSession, email: str, *, exclude_user_id: str | None = None) -> bool:
  q = select(User.id).where(User.email == email)
  if exclude_user_id:
    q = q.where(User.id != exclude_user_id)
  res = await db.execute(q)
  return res.first() is not None


async def _start_session(db: AsyncSession, request: Request, response: Response, u: User) -> None:
  s = DbSession(
    user_id=u.id,
    expires_at=new_session_expires_at(),
    created_ip=client_ip(request),
    user_agent=request.headers.get("user-agent"),
  )
  db.add(s)
  await db.flush()
  response.set_cookie(
    key=SESSION_COOKIE_NAME,
    value=s.id,
    httponly=True,
    secure=settings.cookie_secure,
    samesite="lax",
    domain=settings.cookie_domain or None,
    max_age=session_ttl_seconds(),
    expires=s.expires_at,
    path="/",
  )


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> UserOut:
  email = normalize_email(payload.email)
  if "@" not in email:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please provide a valid email")
  if await _email_taken(db, email):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

  u = User(email=email, name=payload.name, password_hash=hash_password(payload.password), role="member")
  db.add(u)
  await db.flush()
  await write_audit(db, event_type="auth.register", entity_type="User", entity_id=u.id, actor_id=u.id, payload={"email": email})
  await _start_session(db, request, response, u)
  await db.commit()
  return _user_out(u)


@router.post("/login", response_model=UserOut)
async def login(payload: LoginIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> UserOut:
  ip = client_ip(request) or "unknown"
  email = normalize_email(payload.email)
  _rate_limit_or_429(key=f"auth:login:ip:{ip}", limit=int(settings.rate_limit_login_ip_per_minute), window_seconds=60)
  if email:
    _rate_limit_or_429(key=f"auth:login:email:{email}", limit=int(settings.rate_limit_login_email_per_minute), window_seconds=60)

  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u or not verify_password(payload.password, u.password_hash):
    await write_audit(db, event_type="auth.login.failed", entity_type="Auth", entity_id=None, payload={"email": email, "ip": ip})
    await db.commit()
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

  await _start_session(db, request, response, u)
  await write_audit(db, event_type="auth.login.success", entity_type="User", entity_id=u.id, actor_id=u.id)
  await db.commit()
  return _user_out(u)


@router.post("/logout")
async def logout(
  response: Response,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  # Signs the user out everywhere, not just this browser.
  await db.execute(delete(DbSession).where(DbSession.user_id == user.id))
  response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
  await db.commit()
  return {"ok": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return _user_out(user)


@router.get("/users", response_model=list[UserOut])
async def list_users(
  search: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[UserOut]:
  q = select(User)
  if search and search.strip():
    like = f"%{search.strip()}%"
    q = q.where(or_(User.name.ilike(like), User.email.ilike(like)))
  res = await db.execute(q.order_by(User.name.asc(), User.email.asc()).limit(200))
  return [_user_out(u) for u in res.scalars().all()]


@router.patch("/profile", response_model=UserOut)
async def update_profile(
  payload: ProfileUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> UserOut:
  fields_set = payload.model_fields_set
  if "email" in fields_set and payload.email:
    email = normalize_email(payload.email)
    if email != user.email:
      if "@" not in email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please provide a valid email")
      if await _email_taken(db, email, exclude_user_id=user.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is already in use")
      user.email = email
  if "name" in fields_set and payload.name:
    user.name = payload.name.strip()
  if "avatarUrl" in fields_set:
    user.avatar_url = payload.avatarUrl or None
  await write_audit(
    db,
    event_type="user.profile.updated",
    entity_type="User",
    entity_id=user.id,
    actor_id=user.id,
    payload={"fields": sorted(fields_set)},
  )
  await db.commit()
  return _user_out(user)


@router.patch("/password")
async def change_password(
  payload: PasswordChangeIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> dict:
  if not verify_password(payload.currentPassword, user.password_hash):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")
  user.password_hash = hash_password(payload.newPassword)
  # Keep the current session; every other one has to sign in again.
  await db.execute(delete(DbSession).where(DbSession.user_id == user.id, DbSession.id != session_id))
  await write_audit(db, event_type="user.password.changed", entity_type="User", entity_id=user.id, actor_id=user.id)
  await db.commit()
  return {"ok": True}
