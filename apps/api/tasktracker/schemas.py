from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, StrictInt, field_validator

from tasktracker.enums import ProjectRole, ProjectStatus, TaskPriority, TaskStatus


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _strip_required(value: object) -> object:
  if isinstance(value, str):
    return value.strip()
  return value


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  role: Literal["admin", "member"]
  avatarUrl: str | None = None
  createdAt: datetime | None = None


class RegisterIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(min_length=6, max_length=200)

  @field_validator("name", "email", mode="before")
  @classmethod
  def _strip(cls, v: object) -> object:
    return _strip_required(v)


class LoginIn(BaseModel):
  email: str
  password: str


class ProfileUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  email: str | None = Field(default=None, min_length=3, max_length=320)
  avatarUrl: str | None = None


class PasswordChangeIn(BaseModel):
  currentPassword: str
  newPassword: str = Field(min_length=6, max_length=200)


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  description: str = Field(default="", max_length=2000)
  startDate: datetime | None = None
  dueDate: datetime | None = None
  color: str | None = Field(default=None, max_length=32)

  @field_validator("name", mode="before")
  @classmethod
  def _strip_name(cls, v: object) -> object:
    return _strip_required(v)

  @field_validator("startDate", "dueDate", mode="before")
  @classmethod
  def _dates_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  description: str | None = Field(default=None, max_length=2000)
  startDate: datetime | None = None
  dueDate: datetime | None = None
  status: ProjectStatus | None = None
  color: str | None = Field(default=None, max_length=32)

  @field_validator("startDate", "dueDate", mode="before")
  @classmethod
  def _dates_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class ProjectMemberOut(BaseModel):
  userId: str
  name: str
  email: str
  avatarUrl: str | None = None
  role: ProjectRole


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  ownerId: str
  status: ProjectStatus
  startDate: datetime | None
  dueDate: datetime | None
  color: str
  members: list[ProjectMemberOut] = []
  createdAt: datetime
  updatedAt: datetime


class ProjectPageOut(BaseModel):
  page: int
  limit: int
  total: int
  pages: int


class ProjectListOut(BaseModel):
  projects: list[ProjectOut]
  pagination: ProjectPageOut


class MemberAddIn(BaseModel):
  userId: str | None = None
  email: str | None = None
  role: Literal["manager", "member", "viewer"]


class SubtaskIn(BaseModel):
  id: str | None = None
  title: str = Field(min_length=1, max_length=200)
  isCompleted: bool = False

  @field_validator("title", mode="before")
  @classmethod
  def _strip_title(cls, v: object) -> object:
    return _strip_required(v)


class SubtaskOut(BaseModel):
  id: str
  title: str
  isCompleted: bool


class AttachmentIn(BaseModel):
  id: str | None = None
  url: str = Field(min_length=1, max_length=2000)
  fileName: str = Field(min_length=1, max_length=255)
  fileType: str = ""
  fileSize: int | None = Field(default=None, ge=0)
  uploadedAt: datetime | None = None

  @field_validator("uploadedAt", mode="before")
  @classmethod
  def _uploaded_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class AttachmentOut(BaseModel):
  id: str
  url: str
  fileName: str
  fileType: str
  fileSize: int | None = None
  uploadedAt: datetime | None = None


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=200)
  description: str = Field(default="", max_length=5000)
  status: TaskStatus = TaskStatus.TODO
  priority: TaskPriority = TaskPriority.MEDIUM
  assigneeId: str | None = None
  dueDate: datetime | None = None
  tags: list[str] = []
  subtasks: list[SubtaskIn] = []
  attachments: list[AttachmentIn] = []

  @field_validator("title", mode="before")
  @classmethod
  def _strip_title(cls, v: object) -> object:
    return _strip_required(v)

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  version: int | None = None
  title: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=5000)
  priority: TaskPriority | None = None
  assigneeId: str | None = None
  dueDate: datetime | None = None
  tags: list[str] | None = None
  subtasks: list[SubtaskIn] | None = None
  attachments: list[AttachmentIn] | None = None
  # Placement is owned by the reorder endpoint; accepted here only when unchanged.
  status: TaskStatus | None = None
  order: int | None = None

  @field_validator("title", mode="before")
  @classmethod
  def _strip_title(cls, v: object) -> object:
    return _strip_required(v)

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskReorderIn(BaseModel):
  status: TaskStatus
  order: StrictInt
  version: int | None = None


class TaskOut(BaseModel):
  id: str
  projectId: str
  title: str
  description: str
  status: TaskStatus
  order: int
  priority: TaskPriority
  assigneeId: str | None
  createdById: str
  dueDate: datetime | None
  tags: list[str]
  subtasks: list[SubtaskOut]
  attachments: list[AttachmentOut]
  commentsCount: int
  version: int
  createdAt: datetime
  updatedAt: datetime


class CommentCreateIn(BaseModel):
  content: str = Field(min_length=1, max_length=2000)
  parentCommentId: str | None = None

  @field_validator("content", mode="before")
  @classmethod
  def _strip_content(cls, v: object) -> object:
    return _strip_required(v)


class CommentOut(BaseModel):
  id: str
  taskId: str
  authorId: str
  authorName: str
  content: str
  parentCommentId: str | None = None
  createdAt: datetime


class UpcomingTaskOut(BaseModel):
  id: str
  title: str
  description: str
  status: TaskStatus
  priority: TaskPriority
  dueDate: datetime | None
  projectId: str
  projectName: str
  projectColor: str


class DashboardOverviewOut(BaseModel):
  projectsCount: int
  tasksAssignedCount: int
  tasksByStatus: dict[str, int]
  upcomingTasks: list[UpcomingTaskOut]
