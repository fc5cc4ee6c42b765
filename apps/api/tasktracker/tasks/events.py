from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskChange:
  """
  Signal that aggregate views over a project/user may be stale.

  kind: task.created | task.updated | task.reordered | task.deleted |
        project.updated | project.member.added | project.member.removed
  """

  kind: str
  project_id: str
  task_id: str | None = None
  user_ids: frozenset[str] = field(default_factory=frozenset)


Listener = Callable[[TaskChange], None]


class ChangeHub:
  def __init__(self) -> None:
    self._lock = Lock()
    self._listeners: list[Listener] = []

  def subscribe(self, listener: Listener) -> None:
    with self._lock:
      if listener not in self._listeners:
        self._listeners.append(listener)

  def unsubscribe(self, listener: Listener) -> None:
    with self._lock:
      if listener in self._listeners:
        self._listeners.remove(listener)

  def publish(self, change: TaskChange) -> None:
    with self._lock:
      listeners = list(self._listeners)
    for listener in listeners:
      try:
        listener(change)
      except Exception:
        # A broken cache must not fail a committed mutation.
        logger.exception("change listener %r failed for %s", listener, change.kind)


change_hub = ChangeHub()


def users_of(*user_ids: str | None, extra: Iterable[str] = ()) -> frozenset[str]:
  return frozenset([u for u in user_ids if u] + [u for u in extra if u])
