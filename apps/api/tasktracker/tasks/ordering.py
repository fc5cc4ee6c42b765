"""
Kanban ordering engine.

Pure functions over partition snapshots: nothing here touches the database.
A partition is every task sharing one (project, status) pair, and its
`order` values must always be exactly 0..n-1.

The store reads the partitions under lock, asks this module for a plan and
applies the plan's shifts plus the moved placement in one transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from tasktracker.enums import TASK_STATUS_VALUES, TaskStatus
from tasktracker.errors import InvalidInputError


@dataclass(frozen=True)
class Slot:
  task_id: str
  status: str
  order: int
  created_at: datetime | None = None


@dataclass(frozen=True)
class OrderShift:
  task_id: str
  status: str
  from_order: int
  to_order: int


@dataclass(frozen=True)
class ReorderPlan:
  task_id: str
  from_status: str
  from_order: int
  to_status: str
  to_order: int
  requested_order: int
  shifts: tuple[OrderShift, ...] = field(default_factory=tuple)

  @property
  def cross_column(self) -> bool:
    return self.from_status != self.to_status

  @property
  def is_noop(self) -> bool:
    return not self.cross_column and self.from_order == self.to_order

  @property
  def clamped(self) -> bool:
    return self.requested_order != self.to_order

  def touched_statuses(self) -> tuple[str, ...]:
    if self.cross_column:
      return tuple(sorted({self.from_status, self.to_status}))
    return (self.from_status,)


def coerce_status(value: object) -> TaskStatus:
  if isinstance(value, TaskStatus):
    return value
  try:
    return TaskStatus(str(value))
  except ValueError as exc:
    raise InvalidInputError(
      f"Invalid status {value!r}",
      details={"allowed": list(TASK_STATUS_VALUES)},
    ) from exc


def coerce_order(value: object) -> int:
  # bool is an int subclass; a drag target of `true` is malformed, not slot 1.
  if isinstance(value, bool):
    raise InvalidInputError("order must be an integer")
  if isinstance(value, int):
    return value
  if isinstance(value, str):
    try:
      return int(value.strip())
    except ValueError:
      pass
  raise InvalidInputError("order must be an integer")


def clamp_order(requested: int, upper: int) -> int:
  """Clamp a drop target into [0, upper]. `upper` is the append slot."""
  return max(0, min(int(requested), max(0, int(upper))))


def is_dense(orders: Iterable[int]) -> bool:
  values = sorted(orders)
  return values == list(range(len(values)))


def _sort_key(s: Slot) -> tuple:
  # Oldest first among duplicates, then id for a stable total order.
  return (s.order, s.created_at is None, s.created_at or datetime.min, s.task_id)


def normalize_partition(slots: Sequence[Slot]) -> list[OrderShift]:
  """
  Shifts that renumber a partition to 0..n-1 keeping its relative order.

  Returns an empty list when the partition is already dense.
  """
  if is_dense(s.order for s in slots):
    return []
  out: list[OrderShift] = []
  for idx, s in enumerate(sorted(slots, key=_sort_key)):
    if s.order != idx:
      out.append(OrderShift(task_id=s.task_id, status=s.status, from_order=s.order, to_order=idx))
  return out


def _find(slots: Sequence[Slot], task_id: str) -> Slot | None:
  return next((s for s in slots if s.task_id == task_id), None)


def plan_reorder(
  *,
  task_id: str,
  source: Sequence[Slot],
  destination: Sequence[Slot] | None,
  new_status: object,
  new_order: object,
) -> ReorderPlan:
  """
  Plan moving `task_id` to (new_status, new_order).

  `source` is the moved task's current partition (including the task).
  `destination` is the target partition; it is ignored for same-column moves
  and may be None in that case. Both snapshots must already be dense.
  """
  status = coerce_status(new_status).value
  requested = coerce_order(new_order)

  moved = _find(source, task_id)
  if moved is None:
    raise ValueError(f"task {task_id} is not part of the source partition")
  if not is_dense(s.order for s in source):
    raise ValueError(f"source partition {moved.status!r} is not dense")

  old_status = moved.status
  old_order = moved.order

  if status != old_status:
    dest = list(destination or [])
    if any(s.status != status for s in dest):
      raise ValueError("destination snapshot mixes statuses")
    if not is_dense(s.order for s in dest):
      raise ValueError(f"destination partition {status!r} is not dense")
    target = clamp_order(requested, len(dest))
    shifts: list[OrderShift] = []
    # Close the gap in the source column.
    for s in source:
      if s.task_id != task_id and s.order > old_order:
        shifts.append(OrderShift(task_id=s.task_id, status=s.status, from_order=s.order, to_order=s.order - 1))
    # Open a slot in the destination column.
    for s in dest:
      if s.order >= target:
        shifts.append(OrderShift(task_id=s.task_id, status=s.status, from_order=s.order, to_order=s.order + 1))
    return ReorderPlan(
      task_id=task_id,
      from_status=old_status,
      from_order=old_order,
      to_status=status,
      to_order=target,
      requested_order=requested,
      shifts=tuple(shifts),
    )

  target = clamp_order(requested, len(source) - 1)
  shifts = []
  if target > old_order:
    for s in source:
      if s.task_id != task_id and old_order < s.order <= target:
        shifts.append(OrderShift(task_id=s.task_id, status=s.status, from_order=s.order, to_order=s.order - 1))
  elif target < old_order:
    for s in source:
      if s.task_id != task_id and target <= s.order < old_order:
        shifts.append(OrderShift(task_id=s.task_id, status=s.status, from_order=s.order, to_order=s.order + 1))
  return ReorderPlan(
    task_id=task_id,
    from_status=old_status,
    from_order=old_order,
    to_status=status,
    to_order=target,
    requested_order=requested,
    shifts=tuple(shifts),
  )


def plan_compaction(*, deleted: Slot, remaining: Sequence[Slot]) -> list[OrderShift]:
  """Shifts that close the gap a deleted task leaves in its partition."""
  return [
    OrderShift(task_id=s.task_id, status=s.status, from_order=s.order, to_order=s.order - 1)
    for s in remaining
    if s.task_id != deleted.task_id and s.status == deleted.status and s.order > deleted.order
  ]
