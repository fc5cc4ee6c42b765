"""
Task CRUD orchestration.

Placement bookkeeping lives in `ordering` (pure planning) and `store`
(locked reads, atomic apply). This module is the only caller of either, and
`reorder_task` is the only way a task changes column.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.access import has_access, require_access
from tasktracker.audit import write_audit
from tasktracker.config import settings
from tasktracker.enums import TaskStatus
from tasktracker.errors import ConflictError, InvalidInputError, NotFoundError, StoreConflictError
from tasktracker.models import Comment, Task, User, new_id
from tasktracker.schemas import AttachmentIn, SubtaskIn, TaskCreateIn, TaskUpdateIn
from tasktracker.tasks import store
from tasktracker.tasks.events import TaskChange, change_hub, users_of
from tasktracker.tasks.ordering import coerce_order, coerce_status, plan_reorder

logger = logging.getLogger(__name__)


def _subtasks_json(items: list[SubtaskIn]) -> list[dict[str, Any]]:
  return [{"id": s.id or new_id(), "title": s.title, "isCompleted": bool(s.isCompleted)} for s in items]


def _attachments_json(items: list[AttachmentIn]) -> list[dict[str, Any]]:
  now = datetime.now(timezone.utc)
  return [
    {
      "id": a.id or new_id(),
      "url": a.url,
      "fileName": a.fileName,
      "fileType": a.fileType or "",
      "fileSize": a.fileSize,
      "uploadedAt": (a.uploadedAt or now).isoformat(),
    }
    for a in items
  ]


def _actor_id(user: User) -> str:
  # A store rollback expires every instance in the session, `user` included;
  # the identity key stays readable without a lazy reload.
  identity = inspect(user).identity
  if identity:
    return identity[0]
  return user.id


async def _validate_assignee(db: AsyncSession, project_id: str, assignee_id: str | None) -> None:
  if not assignee_id:
    return
  if not await has_access(db, assignee_id, project_id):
    raise InvalidInputError("Invalid assigneeId (must be a project member)")


async def _load_task(db: AsyncSession, task_id: str, *, for_update: bool = False) -> Task:
  q = select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
  if for_update:
    q = q.with_for_update()
  res = await db.execute(q)
  t = res.scalar_one_or_none()
  if not t:
    raise NotFoundError("Task not found")
  return t


async def get_task(db: AsyncSession, user: User, task_id: str) -> Task:
  t = await _load_task(db, task_id)
  await require_access(db, _actor_id(user), t.project_id)
  return t


async def list_tasks(
  db: AsyncSession,
  user: User,
  project_id: str,
  *,
  status: TaskStatus | str | None = None,
  assignee_id: str | None = None,
  search: str | None = None,
) -> list[Task]:
  await require_access(db, _actor_id(user), project_id)
  q = select(Task).where(Task.project_id == project_id)
  if status is not None:
    q = q.where(Task.status == coerce_status(status).value)
  if assignee_id:
    q = q.where(Task.assignee_id == assignee_id)
  if search:
    like = f"%{search}%"
    q = q.where(or_(Task.title.ilike(like), Task.description.ilike(like)))
  q = q.order_by(Task.status.asc(), Task.order_index.asc())
  res = await db.execute(q)
  return list(res.scalars().all())


async def create_task(db: AsyncSession, user: User, project_id: str, payload: TaskCreateIn) -> Task:
  await require_access(db, _actor_id(user), project_id)
  title = (payload.title or "").strip()
  if not title:
    raise InvalidInputError("Task title is required")
  status = coerce_status(payload.status).value
  await _validate_assignee(db, project_id, payload.assigneeId)

  key = (project_id, status)
  async with store.partition_locks.hold([key]):
    await store.lock_partitions(db, [key])
    # Append: the new task takes the slot right after the current last one.
    column = await store.load_dense_partition(db, project_id, status)
    t = Task(
      id=new_id(),
      project_id=project_id,
      status=status,
      order_index=len(column),
      title=title,
      description=payload.description or "",
      priority=payload.priority.value,
      assignee_id=payload.assigneeId,
      created_by_id=_actor_id(user),
      due_date=payload.dueDate,
      tags=list(payload.tags or []),
      subtasks=_subtasks_json(payload.subtasks),
      attachments=_attachments_json(payload.attachments),
      comments_count=0,
      version=0,
    )
    db.add(t)
    await write_audit(
      db,
      event_type="task.created",
      entity_type="Task",
      entity_id=t.id,
      project_id=project_id,
      task_id=t.id,
      actor_id=_actor_id(user),
      payload={"title": t.title, "status": status, "order": t.order_index},
    )
    await store.commit(db, action="task create")

  logger.info("task %s created in %s/%s at %d", t.id, project_id, status, t.order_index)
  change_hub.publish(TaskChange("task.created", project_id, t.id, users_of(t.assignee_id)))
  return t


async def update_task(db: AsyncSession, user: User, task_id: str, payload: TaskUpdateIn) -> Task:
  t = await _load_task(db, task_id)
  await require_access(db, _actor_id(user), t.project_id)
  if payload.version is not None and t.version != payload.version:
    raise ConflictError("Version conflict", details={"currentVersion": t.version})

  fields_set = payload.model_fields_set
  if "status" in fields_set and payload.status is not None and payload.status.value != t.status:
    raise InvalidInputError("status can only be changed through the reorder endpoint")
  if "order" in fields_set and payload.order is not None and payload.order != t.order_index:
    raise InvalidInputError("order can only be changed through the reorder endpoint")
  if "title" in fields_set and not (payload.title or "").strip():
    raise InvalidInputError("Task title is required")
  if "assigneeId" in fields_set:
    await _validate_assignee(db, t.project_id, payload.assigneeId)

  old_assignee = t.assignee_id
  changed: dict[str, Any] = {}
  mapping = [
    ("title", "title"),
    ("description", "description"),
    ("assignee_id", "assigneeId"),
    ("due_date", "dueDate"),
  ]
  for model_attr, field_name in mapping:
    if field_name in fields_set:
      val = getattr(payload, field_name)
      if field_name == "description" and val is None:
        val = ""
      setattr(t, model_attr, val)
      changed[field_name] = val[:500] if isinstance(val, str) else val
  if "priority" in fields_set and payload.priority is not None:
    t.priority = payload.priority.value
    changed["priority"] = t.priority
  if "tags" in fields_set:
    t.tags = list(payload.tags or [])
    changed["tags"] = t.tags
  if "subtasks" in fields_set:
    t.subtasks = _subtasks_json(payload.subtasks or [])
    changed["subtasks"] = len(t.subtasks)
  if "attachments" in fields_set:
    t.attachments = _attachments_json(payload.attachments or [])
    changed["attachments"] = len(t.attachments)

  if changed:
    t.version += 1
    await write_audit(
      db,
      event_type="task.updated",
      entity_type="Task",
      entity_id=t.id,
      project_id=t.project_id,
      task_id=t.id,
      actor_id=_actor_id(user),
      payload={"version": t.version, "changed": list(changed.keys()), "fields": changed},
    )
  await store.commit(db, action="task update")

  if changed:
    change_hub.publish(TaskChange("task.updated", t.project_id, t.id, users_of(old_assignee, t.assignee_id)))
  return t


async def reorder_task(
  db: AsyncSession,
  user: User,
  task_id: str,
  *,
  status: TaskStatus | str,
  order: int,
  version: int | None = None,
) -> Task:
  """
  Move a task to (status, order), shifting its neighbours in both columns.

  Out-of-range orders are clamped (drop past the end appends). The whole
  shift commits atomically or not at all; StoreConflictError is retryable.
  """
  new_status = coerce_status(status).value
  new_order = coerce_order(order)

  t = await _load_task(db, task_id)
  project_id = t.project_id
  await require_access(db, _actor_id(user), project_id)

  attempts = max(1, int(settings.reorder_max_attempts))
  for attempt in range(1, attempts + 1):
    source_status = t.status
    keys = [(project_id, source_status), (project_id, new_status)]
    async with store.partition_locks.hold(keys):
      await store.lock_partitions(db, keys)
      t = await _load_task(db, task_id, for_update=True)
      if t.status != source_status:
        # Someone moved it to another column while we waited for the locks.
        logger.info("task %s changed column during reorder (attempt %d/%d)", task_id, attempt, attempts)
        await db.rollback()
        t = await _load_task(db, task_id)
        continue
      if version is not None and t.version != version:
        current = t.version
        await db.rollback()
        raise ConflictError("Version conflict", details={"currentVersion": current})

      source = await store.load_dense_partition(db, project_id, source_status)
      destination = None
      if new_status != source_status:
        destination = await store.load_dense_partition(db, project_id, new_status)
      tasks_by_id = {x.id: x for x in source}
      tasks_by_id.update({x.id: x for x in destination or []})

      plan = plan_reorder(
        task_id=task_id,
        source=[store.slot_of(x) for x in source],
        destination=[store.slot_of(x) for x in destination] if destination is not None else None,
        new_status=new_status,
        new_order=new_order,
      )
      moved = await store.apply_shift(db, plan, tasks_by_id=tasks_by_id)

    if plan.clamped:
      logger.info("task %s reorder target %d clamped to %d", task_id, plan.requested_order, plan.to_order)
    logger.info(
      "task %s reordered %s/%d -> %s/%d (%d shifted)",
      task_id,
      plan.from_status,
      plan.from_order,
      plan.to_status,
      plan.to_order,
      len(plan.shifts),
    )
    change_hub.publish(TaskChange("task.reordered", project_id, task_id, users_of(moved.assignee_id)))
    return moved

  raise StoreConflictError("Task kept moving between columns; retry the request")


async def delete_task(db: AsyncSession, user: User, task_id: str) -> TaskChange:
  t = await _load_task(db, task_id)
  project_id = t.project_id
  actor_id = _actor_id(user)
  await require_access(db, actor_id, project_id)

  attempts = max(1, int(settings.reorder_max_attempts))
  for _ in range(attempts):
    status = t.status
    key = (project_id, status)
    async with store.partition_locks.hold([key]):
      await store.lock_partitions(db, [key])
      t = await _load_task(db, task_id, for_update=True)
      if t.status != status:
        await db.rollback()
        t = await _load_task(db, task_id)
        continue
      shifts = await store.compact_after_delete(db, t)
      assignee_id = t.assignee_id
      title = t.title
      await db.execute(delete(Comment).where(Comment.task_id == task_id))
      await db.delete(t)
      await write_audit(
        db,
        event_type="task.deleted",
        entity_type="Task",
        entity_id=task_id,
        project_id=project_id,
        actor_id=actor_id,
        payload={"title": title, "status": status},
      )
      await store.commit(db, action="task delete")

    logger.info("task %s deleted from %s/%s; %d compacted", task_id, project_id, status, len(shifts))
    change = TaskChange("task.deleted", project_id, task_id, users_of(assignee_id))
    change_hub.publish(change)
    return change

  raise StoreConflictError("Task kept moving between columns; retry the request")
