from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.access import require_access
from tasktracker.audit import write_audit
from tasktracker.deps import get_current_user, get_db
from tasktracker.errors import ForbiddenError, InvalidInputError, NotFoundError
from tasktracker.models import Comment, Task, User, as_utc, new_id
from tasktracker.schemas import CommentCreateIn, CommentOut

router = APIRouter(tags=["comments"])


def _comment_out(c: Comment, author: User) -> CommentOut:
  return CommentOut(
    id=c.id,
    taskId=c.task_id,
    authorId=c.author_id,
    authorName=author.name,
    content=c.content,
    parentCommentId=c.parent_comment_id,
    createdAt=as_utc(c.created_at),
  )


async def _task_for(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFoundError("Task not found")
  return t


@router.get("/tasks/{task_id}/comments", response_model=list[CommentOut])
async def list_comments(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CommentOut]:
  t = await _task_for(db, task_id)
  await require_access(db, user.id, t.project_id)
  res = await db.execute(
    select(Comment, User)
    .join(User, User.id == Comment.author_id)
    .where(Comment.task_id == task_id)
    .order_by(Comment.created_at.asc(), Comment.id.asc())
  )
  return [_comment_out(c, u) for c, u in res.all()]


@router.post("/tasks/{task_id}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def create_comment(
  task_id: str,
  payload: CommentCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CommentOut:
  t = await _task_for(db, task_id)
  await require_access(db, user.id, t.project_id)
  if payload.parentCommentId:
    pres = await db.execute(
      select(Comment.id).where(Comment.id == payload.parentCommentId, Comment.task_id == task_id)
    )
    if pres.scalar_one_or_none() is None:
      raise InvalidInputError("Parent comment not found on this task")

  c = Comment(id=new_id(), task_id=task_id, author_id=user.id, content=payload.content, parent_comment_id=payload.parentCommentId)
  db.add(c)
  # Counter only; placement and version are left alone so no ordering lock is needed.
  await db.execute(
    update(Task)
    .where(Task.id == task_id)
    .values(comments_count=Task.comments_count + 1)
    .execution_options(synchronize_session=False)
  )
  await write_audit(
    db,
    event_type="comment.created",
    entity_type="Comment",
    entity_id=c.id,
    project_id=t.project_id,
    task_id=task_id,
    actor_id=user.id,
    payload={"parentCommentId": payload.parentCommentId},
  )
  await db.commit()
  return _comment_out(c, user)


@router.delete("/comments/{comment_id}")
async def delete_comment(comment_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  res = await db.execute(select(Comment).where(Comment.id == comment_id))
  c = res.scalar_one_or_none()
  if not c:
    raise NotFoundError("Comment not found")
  if c.author_id != user.id and user.role != "admin":
    raise ForbiddenError("Only the comment author or admin can delete this comment")

  task_id = c.task_id
  tres = await db.execute(select(Task.project_id).where(Task.id == task_id))
  project_id = tres.scalar_one_or_none()

  # Replies stay, detached from the removed parent.
  await db.execute(
    update(Comment)
    .where(Comment.parent_comment_id == comment_id)
    .values(parent_comment_id=None)
    .execution_options(synchronize_session=False)
  )
  await db.delete(c)
  await db.execute(
    update(Task)
    .where(Task.id == task_id)
    .values(comments_count=case((Task.comments_count > 0, Task.comments_count - 1), else_=0))
    .execution_options(synchronize_session=False)
  )
  await write_audit(
    db,
    event_type="comment.deleted",
    entity_type="Comment",
    entity_id=comment_id,
    project_id=project_id,
    task_id=task_id,
    actor_id=user.id,
  )
  await db.commit()
  return {"ok": True, "message": "Comment deleted successfully"}
