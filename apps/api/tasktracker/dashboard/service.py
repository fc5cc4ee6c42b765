from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.dashboard.cache import DashboardCache, dashboard_cache
from tasktracker.enums import ProjectStatus, TaskStatus
from tasktracker.models import Project, ProjectMember, Task, User, as_utc

UPCOMING_DAYS = 7
UPCOMING_LIMIT = 5


def _upcoming_window(now: datetime) -> tuple[datetime, datetime]:
  # From the start of today through the end of the seventh day ahead (UTC).
  start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
  end = datetime.combine((now + timedelta(days=UPCOMING_DAYS)).date(), time.max, tzinfo=timezone.utc)
  return start, end


async def compute_overview(db: AsyncSession, user: User, *, now: datetime | None = None) -> dict[str, Any]:
  now = now or datetime.now(timezone.utc)

  pres = await db.execute(
    select(func.count(func.distinct(Project.id)))
    .join(ProjectMember, ProjectMember.project_id == Project.id)
    .where(ProjectMember.user_id == user.id, Project.status == ProjectStatus.ACTIVE.value)
  )
  projects_count = int(pres.scalar_one())

  sres = await db.execute(
    select(Task.status, func.count(Task.id)).where(Task.assignee_id == user.id).group_by(Task.status)
  )
  by_status = {s.value: 0 for s in TaskStatus}
  for status, count in sres.all():
    if status in by_status:
      by_status[status] = int(count)

  start, end = _upcoming_window(now)
  ures = await db.execute(
    select(Task, Project)
    .join(Project, Project.id == Task.project_id)
    .where(
      Task.assignee_id == user.id,
      Task.due_date.is_not(None),
      Task.due_date >= start,
      Task.due_date <= end,
      Task.status != TaskStatus.DONE.value,
    )
    .order_by(Task.due_date.asc())
    .limit(UPCOMING_LIMIT)
  )
  upcoming = [
    {
      "id": t.id,
      "title": t.title,
      "description": t.description,
      "status": t.status,
      "priority": t.priority,
      "dueDate": as_utc(t.due_date),
      "projectId": p.id,
      "projectName": p.name,
      "projectColor": p.color,
    }
    for t, p in ures.all()
  ]

  return jsonable_encoder(
    {
      "projectsCount": projects_count,
      "tasksAssignedCount": sum(by_status.values()),
      "tasksByStatus": by_status,
      "upcomingTasks": upcoming,
    }
  )


async def get_overview(db: AsyncSession, user: User, *, cache: DashboardCache = dashboard_cache) -> dict[str, Any]:
  cached = cache.get(user.id)
  if cached is not None:
    return cached
  payload = await compute_overview(db, user)
  cache.set(user.id, payload)
  return payload
