from __future__ import annotations

from typing import Any


class TaskTrackerError(RuntimeError):
  status_code = 400

  def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.details = details or {}


class NotFoundError(TaskTrackerError):
  status_code = 404


class ForbiddenError(TaskTrackerError):
  status_code = 403


class InvalidInputError(TaskTrackerError):
  status_code = 400


class ConflictError(TaskTrackerError):
  status_code = 409


class StoreConflictError(ConflictError):
  """The atomic shift could not be committed. Safe to retry the whole request."""

  retryable = True
