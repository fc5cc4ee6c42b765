from __future__ import annotations

from datetime import datetime, timedelta, timezone

from passlib.context import CryptContext

from tasktracker.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_COOKIE_NAME = "tt_session"


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def session_ttl_seconds() -> int:
  return int(max(1, settings.session_ttl_days) * 86400)


def new_session_expires_at() -> datetime:
  return datetime.now(timezone.utc) + timedelta(seconds=session_ttl_seconds())


def normalize_email(email: str | None) -> str:
  return (email or "").strip().lower()
