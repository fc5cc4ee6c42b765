from __future__ import annotations

from enum import Enum


class TaskStatus(str, Enum):
  """Kanban columns. Every status is a full ordering partition, shown or not."""

  TODO = "todo"
  IN_PROGRESS = "in_progress"
  UNDER_REVIEW = "under_review"
  DONE = "done"


class TaskPriority(str, Enum):
  LOW = "low"
  MEDIUM = "medium"
  HIGH = "high"
  URGENT = "urgent"


class ProjectRole(str, Enum):
  OWNER = "owner"
  MANAGER = "manager"
  MEMBER = "member"
  VIEWER = "viewer"


class ProjectStatus(str, Enum):
  ACTIVE = "active"
  ARCHIVED = "archived"


# role order: viewer < member < manager < owner
ROLE_RANK: dict[str, int] = {
  ProjectRole.VIEWER.value: 0,
  ProjectRole.MEMBER.value: 1,
  ProjectRole.MANAGER.value: 2,
  ProjectRole.OWNER.value: 3,
}

TASK_STATUS_VALUES: tuple[str, ...] = tuple(s.value for s in TaskStatus)
