from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import delete
from starlette.middleware.trustedhost import TrustedHostMiddleware

from tasktracker.config import settings
from tasktracker.dashboard.cache import dashboard_cache
from tasktracker.db import SessionLocal, init_models
from tasktracker.errors import StoreConflictError, TaskTrackerError
from tasktracker.logging_setup import setup_logging
from tasktracker.models import Session as DbSession, utcnow
from tasktracker.routers.auth import router as auth_router
from tasktracker.routers.comments import router as comments_router
from tasktracker.routers.dashboard import router as dashboard_router
from tasktracker.routers.projects import router as projects_router
from tasktracker.routers.tasks import router as tasks_router
from tasktracker.tasks.events import change_hub

logger = logging.getLogger(__name__)

app = FastAPI(
  title="Task Tracker API",
  version=settings.app_version,
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)

change_hub.subscribe(dashboard_cache.on_change)


@app.exception_handler(TaskTrackerError)
async def _task_tracker_error_handler(_, exc: TaskTrackerError) -> JSONResponse:
  content: dict = {"detail": exc.message}
  if exc.details:
    content.update(exc.details)
  if isinstance(exc, StoreConflictError):
    content["retryable"] = True
  return JSONResponse(status_code=exc.status_code, content=content)


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(comments_router)
app.include_router(dashboard_router)


@app.middleware("http")
async def _security_headers_middleware(request, call_next):
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


async def _purge_expired_sessions() -> int:
  async with SessionLocal() as db:
    res = await db.execute(delete(DbSession).where(DbSession.expires_at <= utcnow()))
    await db.commit()
    return int(res.rowcount or 0)


@app.on_event("startup")
async def _startup() -> None:
  setup_logging(level=settings.log_level, log_dir=settings.log_dir)
  if settings.auto_create_tables:
    await init_models()
  purged = await _purge_expired_sessions()
  logger.info("task tracker api %s started (%d expired sessions purged)", settings.app_version, purged)
