from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tasktracker.config import settings


def _normalize_database_url(url: str) -> str:
  # Plain postgres DSNs from hosting providers need the async driver spelled out.
  if url.startswith("postgresql://"):
    return url.replace("postgresql://", "postgresql+asyncpg://", 1)
  if url.startswith("postgres://"):
    return url.replace("postgres://", "postgresql+asyncpg://", 1)
  return url


def _ensure_sqlite_dir(url: str) -> None:
  u = make_url(url)
  if not u.drivername.startswith("sqlite") or not u.database or u.database == ":memory:":
    return
  Path(u.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


database_url = _normalize_database_url(settings.database_url)
_ensure_sqlite_dir(database_url)

engine = create_async_engine(database_url, pool_pre_ping=not database_url.startswith("sqlite"))
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def init_models() -> None:
  from tasktracker.models import Base

  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)


async def drop_models() -> None:
  from tasktracker.models import Base

  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
