from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.access import get_project, require_access, require_role
from tasktracker.audit import write_audit
from tasktracker.deps import get_current_user, get_db
from tasktracker.enums import ProjectRole, ProjectStatus
from tasktracker.errors import ForbiddenError, InvalidInputError, NotFoundError
from tasktracker.models import Project, ProjectMember, Task, User, as_utc, utcnow
from tasktracker.schemas import (
  MemberAddIn,
  ProjectCreateIn,
  ProjectListOut,
  ProjectMemberOut,
  ProjectOut,
  ProjectPageOut,
  ProjectUpdateIn,
)
from tasktracker.security import normalize_email
from tasktracker.tasks.events import TaskChange, change_hub

router = APIRouter(prefix="/projects", tags=["projects"])

DEFAULT_COLOR = "#3b82f6"


async def _members_by_project(db: AsyncSession, project_ids: list[str]) -> dict[str, list[ProjectMemberOut]]:
  out: dict[str, list[ProjectMemberOut]] = {pid: [] for pid in project_ids}
  if not project_ids:
    return out
  res = await db.execute(
    select(ProjectMember, User)
    .join(User, User.id == ProjectMember.user_id)
    .where(ProjectMember.project_id.in_(project_ids))
    .order_by(ProjectMember.created_at.asc())
  )
  for m, u in res.all():
    out[m.project_id].append(
      ProjectMemberOut(userId=u.id, name=u.name, email=u.email, avatarUrl=u.avatar_url, role=ProjectRole(m.role))
    )
  return out


def _project_out(p: Project, members: list[ProjectMemberOut]) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description or "",
    ownerId=p.owner_id,
    status=ProjectStatus(p.status),
    startDate=p.start_date,
    dueDate=p.due_date,
    color=p.color or DEFAULT_COLOR,
    members=members,
    createdAt=p.created_at,
    updatedAt=p.updated_at,
  )


async def _project_with_members(db: AsyncSession, p: Project) -> ProjectOut:
  members = await _members_by_project(db, [p.id])
  return _project_out(p, members[p.id])


async def _member_ids(db: AsyncSession, project_id: str) -> frozenset[str]:
  res = await db.execute(select(ProjectMember.user_id).where(ProjectMember.project_id == project_id))
  return frozenset(res.scalars().all())


def _check_dates(start, due) -> None:
  start, due = as_utc(start), as_utc(due)
  if start is not None and due is not None and due < start:
    raise InvalidInputError("dueDate must not be before startDate")


@router.get("", response_model=ProjectListOut)
async def list_projects(
  status_filter: ProjectStatus | None = Query(default=None, alias="status"),
  search: str | None = None,
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=10, ge=1, le=100),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectListOut:
  member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user.id)
  where = [or_(Project.owner_id == user.id, Project.id.in_(member_of))]
  if status_filter is not None:
    where.append(Project.status == status_filter.value)
  if search and search.strip():
    where.append(Project.name.ilike(f"%{search.strip()}%"))

  total = int((await db.execute(select(func.count(Project.id)).where(*where))).scalar_one())
  res = await db.execute(
    select(Project).where(*where).order_by(Project.updated_at.desc()).offset((page - 1) * limit).limit(limit)
  )
  projects = list(res.scalars().all())
  members = await _members_by_project(db, [p.id for p in projects])
  return ProjectListOut(
    projects=[_project_out(p, members[p.id]) for p in projects],
    pagination=ProjectPageOut(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
  )


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(payload: ProjectCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  if not payload.name:
    raise InvalidInputError("Project name is required")
  _check_dates(payload.startDate, payload.dueDate)

  p = Project(
    name=payload.name,
    description=payload.description or "",
    owner_id=user.id,
    status=ProjectStatus.ACTIVE.value,
    start_date=payload.startDate,
    due_date=payload.dueDate,
    color=payload.color or DEFAULT_COLOR,
  )
  db.add(p)
  await db.flush()
  db.add(ProjectMember(project_id=p.id, user_id=user.id, role=ProjectRole.OWNER.value))
  await write_audit(
    db,
    event_type="project.created",
    entity_type="Project",
    entity_id=p.id,
    project_id=p.id,
    actor_id=user.id,
    payload={"name": p.name},
  )
  await db.commit()
  change_hub.publish(TaskChange("project.created", p.id, user_ids=frozenset([user.id])))
  return await _project_with_members(db, p)


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project_detail(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  await require_access(db, user.id, project_id)
  p = await get_project(db, project_id)
  return await _project_with_members(db, p)


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  p = await get_project(db, project_id)
  await require_access(db, user.id, project_id)
  try:
    await require_role(db, user.id, project_id, ProjectRole.MANAGER)
  except ForbiddenError as exc:
    raise ForbiddenError("Only owner or manager can update project") from exc

  fields_set = payload.model_fields_set
  if "name" in fields_set:
    name = (payload.name or "").strip()
    if not name:
      raise InvalidInputError("Project name is required")
    p.name = name
  if "description" in fields_set:
    p.description = payload.description or ""
  if "startDate" in fields_set:
    p.start_date = payload.startDate
  if "dueDate" in fields_set:
    p.due_date = payload.dueDate
  if "color" in fields_set and payload.color:
    p.color = payload.color
  if "status" in fields_set and payload.status is not None:
    p.status = payload.status.value
  _check_dates(p.start_date, p.due_date)
  p.updated_at = utcnow()

  await write_audit(
    db,
    event_type="project.updated",
    entity_type="Project",
    entity_id=p.id,
    project_id=p.id,
    actor_id=user.id,
    payload={"fields": sorted(fields_set)},
  )
  await db.commit()
  change_hub.publish(TaskChange("project.updated", p.id, user_ids=await _member_ids(db, p.id)))
  return await _project_with_members(db, p)


@router.delete("/{project_id}")
async def archive_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  p = await get_project(db, project_id)
  if p.owner_id != user.id:
    await require_access(db, user.id, project_id)
    raise ForbiddenError("Only owner can archive project")

  p.status = ProjectStatus.ARCHIVED.value
  p.updated_at = utcnow()
  await write_audit(db, event_type="project.archived", entity_type="Project", entity_id=p.id, project_id=p.id, actor_id=user.id)
  await db.commit()
  change_hub.publish(TaskChange("project.archived", p.id, user_ids=await _member_ids(db, p.id)))
  return {"ok": True, "message": "Project archived successfully"}


@router.get("/{project_id}/members", response_model=list[ProjectMemberOut])
async def list_members(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectMemberOut]:
  await require_access(db, user.id, project_id)
  members = await _members_by_project(db, [project_id])
  return members[project_id]


@router.post("/{project_id}/members", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def add_member(
  project_id: str,
  payload: MemberAddIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  if not payload.userId and not payload.email:
    raise InvalidInputError("Either userId or email is required, along with role")
  p = await get_project(db, project_id)
  await require_access(db, user.id, project_id)
  try:
    await require_role(db, user.id, project_id, ProjectRole.MANAGER)
  except ForbiddenError as exc:
    raise ForbiddenError("Only owner or manager can add members") from exc

  if payload.userId:
    ures = await db.execute(select(User).where(User.id == payload.userId))
    missing = "User not found"
  else:
    ures = await db.execute(select(User).where(User.email == normalize_email(payload.email)))
    missing = "User with this email not found"
  member = ures.scalar_one_or_none()
  if not member:
    raise NotFoundError(missing)

  existing = await db.execute(
    select(ProjectMember.id).where(ProjectMember.project_id == project_id, ProjectMember.user_id == member.id)
  )
  if existing.scalar_one_or_none() or member.id == p.owner_id:
    raise InvalidInputError("User is already a member")

  db.add(ProjectMember(project_id=project_id, user_id=member.id, role=payload.role))
  p.updated_at = utcnow()
  await write_audit(
    db,
    event_type="project.member.added",
    entity_type="ProjectMember",
    entity_id=member.id,
    project_id=project_id,
    actor_id=user.id,
    payload={"userId": member.id, "role": payload.role},
  )
  await db.commit()
  change_hub.publish(TaskChange("project.member.added", project_id, user_ids=frozenset([member.id])))
  return await _project_with_members(db, p)


@router.delete("/{project_id}/members/{member_user_id}", response_model=ProjectOut)
async def remove_member(
  project_id: str,
  member_user_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  p = await get_project(db, project_id)
  await require_access(db, user.id, project_id)
  try:
    await require_role(db, user.id, project_id, ProjectRole.MANAGER)
  except ForbiddenError as exc:
    raise ForbiddenError("Only owner or manager can remove members") from exc
  if member_user_id == p.owner_id:
    raise InvalidInputError("Cannot remove project owner")

  res = await db.execute(
    select(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == member_user_id)
  )
  m = res.scalar_one_or_none()
  if not m:
    raise NotFoundError("Member not found")

  await db.delete(m)
  # Tasks can only be assigned to people with project access.
  await db.execute(
    update(Task).where(Task.project_id == project_id, Task.assignee_id == member_user_id).values(assignee_id=None, version=Task.version + 1)
  )
  p.updated_at = utcnow()
  await write_audit(
    db,
    event_type="project.member.removed",
    entity_type="ProjectMember",
    entity_id=member_user_id,
    project_id=project_id,
    actor_id=user.id,
    payload={"userId": member_user_id},
  )
  await db.commit()
  change_hub.publish(TaskChange("project.member.removed", project_id, user_ids=frozenset([member_user_id])))
  return await _project_with_members(db, p)
