from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.deps import get_current_user, get_db
from tasktracker.enums import TaskStatus
from tasktracker.models import Task, User, as_utc
from tasktracker.schemas import AttachmentOut, SubtaskOut, TaskCreateIn, TaskOut, TaskReorderIn, TaskUpdateIn
from tasktracker.tasks import service

router = APIRouter(tags=["tasks"])


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    projectId=t.project_id,
    title=t.title,
    description=t.description or "",
    status=TaskStatus(t.status),
    order=t.order_index,
    priority=t.priority,
    assigneeId=t.assignee_id,
    createdById=t.created_by_id,
    dueDate=as_utc(t.due_date),
    tags=list(t.tags or []),
    subtasks=[SubtaskOut(**s) for s in (t.subtasks or [])],
    attachments=[AttachmentOut(**a) for a in (t.attachments or [])],
    commentsCount=t.comments_count,
    version=t.version,
    createdAt=as_utc(t.created_at),
    updatedAt=as_utc(t.updated_at),
  )


@router.get("/projects/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  project_id: str,
  status_filter: TaskStatus | None = Query(default=None, alias="status"),
  assigneeId: str | None = None,
  search: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  tasks = await service.list_tasks(db, user, project_id, status=status_filter, assignee_id=assigneeId, search=search)
  return [_task_out(t) for t in tasks]


@router.post("/projects/{project_id}/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
  project_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await service.create_task(db, user, project_id, payload)
  return _task_out(t)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  return _task_out(await service.get_task(db, user, task_id))


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await service.update_task(db, user, task_id, payload)
  return _task_out(t)


@router.patch("/tasks/{task_id}/reorder", response_model=TaskOut)
async def reorder_task(
  task_id: str,
  payload: TaskReorderIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await service.reorder_task(db, user, task_id, status=payload.status, order=payload.order, version=payload.version)
  return _task_out(t)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await service.delete_task(db, user, task_id)
  return {"ok": True}
