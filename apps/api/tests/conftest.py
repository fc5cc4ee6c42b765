from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# Settings are read at import time; point them at a throwaway database first.
_TMP = Path(tempfile.mkdtemp(prefix="tasktracker-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP / 'tasktracker_test.db'}")
os.environ["REDIS_URL"] = ""

from tasktracker.config import settings
from tasktracker.dashboard.cache import dashboard_cache
from tasktracker.db import SessionLocal, drop_models, engine, init_models
from tasktracker.main import app
from tasktracker.rate_limit import limiter

DEFAULT_PASSWORD = "secret123"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  limiter.reset()
  dashboard_cache.clear()
  await drop_models()
  await init_models()
  await engine.dispose()


@pytest.fixture
async def fresh_db() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. tasktracker_test.db)."
    )
  await _reset_db()
  yield
  await engine.dispose()


@pytest.fixture
async def client(fresh_db) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


@pytest.fixture
async def db(fresh_db):
  async with SessionLocal() as session:
    yield session


async def register(client: AsyncClient, name: str, *, email: str | None = None, password: str = DEFAULT_PASSWORD) -> dict:
  email = email or f"{name.lower()}@example.com"
  res = await client.post("/auth/register", json={"name": name, "email": email, "password": password})
  assert res.status_code == 201, res.text
  cookie = res.headers.get("set-cookie")
  assert cookie and "tt_session=" in cookie
  return res.json()


async def login(client: AsyncClient, email: str, password: str = DEFAULT_PASSWORD) -> dict:
  res = await client.post("/auth/login", json={"email": email, "password": password})
  assert res.status_code == 200, res.text
  cookie = res.headers.get("set-cookie")
  assert cookie and "tt_session=" in cookie
  return res.json()


async def create_project(client: AsyncClient, name: str = "Launch") -> dict:
  res = await client.post("/projects", json={"name": name})
  assert res.status_code == 201, res.text
  return res.json()


async def add_member(client: AsyncClient, project_id: str, user_id: str, role: str = "member") -> dict:
  res = await client.post(f"/projects/{project_id}/members", json={"userId": user_id, "role": role})
  assert res.status_code == 201, res.text
  return res.json()


async def create_task(client: AsyncClient, project_id: str, title: str, status: str = "todo", **extra) -> dict:
  res = await client.post(f"/projects/{project_id}/tasks", json={"title": title, "status": status, **extra})
  assert res.status_code == 201, res.text
  return res.json()


async def column(client: AsyncClient, project_id: str, status: str) -> list[tuple[str, int]]:
  res = await client.get(f"/projects/{project_id}/tasks", params={"status": status})
  assert res.status_code == 200, res.text
  return [(t["title"], t["order"]) for t in res.json()]
