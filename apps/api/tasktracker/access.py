from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.enums import ROLE_RANK, ProjectRole
from tasktracker.errors import ForbiddenError, NotFoundError
from tasktracker.models import Project, ProjectMember


async def get_project(db: AsyncSession, project_id: str) -> Project:
  res = await db.execute(select(Project).where(Project.id == project_id))
  p = res.scalar_one_or_none()
  if not p:
    raise NotFoundError("Project not found")
  return p


async def role_of(db: AsyncSession, user_id: str, project_id: str) -> ProjectRole | None:
  res = await db.execute(select(Project.owner_id).where(Project.id == project_id))
  owner_id = res.scalar_one_or_none()
  if owner_id is None:
    return None
  if owner_id == user_id:
    return ProjectRole.OWNER
  mres = await db.execute(
    select(ProjectMember.role).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
  )
  role = mres.scalar_one_or_none()
  return ProjectRole(role) if role else None


async def has_access(db: AsyncSession, user_id: str, project_id: str) -> bool:
  return (await role_of(db, user_id, project_id)) is not None


async def require_access(db: AsyncSession, user_id: str, project_id: str) -> ProjectRole:
  await get_project(db, project_id)
  role = await role_of(db, user_id, project_id)
  if role is None:
    raise ForbiddenError("Access denied")
  return role


async def require_role(db: AsyncSession, user_id: str, project_id: str, min_role: ProjectRole) -> ProjectRole:
  role = await require_access(db, user_id, project_id)
  if ROLE_RANK[role.value] < ROLE_RANK[min_role.value]:
    raise ForbiddenError("Insufficient role")
  return role
