from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from threading import Lock

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.errors import StoreConflictError
from tasktracker.models import Task
from tasktracker.tasks.ordering import OrderShift, ReorderPlan, Slot, normalize_partition, plan_compaction

logger = logging.getLogger(__name__)

PartitionKey = tuple[str, str]


class _LockEntry:
  __slots__ = ("loop", "lock", "users")

  def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
    self.loop = loop
    self.lock = asyncio.Lock()
    self.users = 0


class PartitionLocks:
  """
  Per-(project, status) mutual exclusion for one process.

  Callers always acquire in sorted key order so a cross-column move and a
  move in the opposite direction cannot deadlock each other.
  """

  def __init__(self) -> None:
    self._lock = Lock()
    self._locks: dict[PartitionKey, _LockEntry] = {}

  def __len__(self) -> int:
    with self._lock:
      return len(self._locks)

  def _checkout(self, key: PartitionKey) -> _LockEntry:
    loop = asyncio.get_running_loop()
    with self._lock:
      entry = self._locks.get(key)
      if entry is None or entry.loop is not loop:
        entry = _LockEntry(loop)
        self._locks[key] = entry
      entry.users += 1
      return entry

  def _checkin(self, key: PartitionKey, entry: _LockEntry) -> None:
    with self._lock:
      entry.users -= 1
      # Drop the entry once no holder or waiter is left on it.
      if entry.users == 0 and self._locks.get(key) is entry:
        del self._locks[key]

  @asynccontextmanager
  async def _held(self, key: PartitionKey) -> AsyncIterator[None]:
    entry = self._checkout(key)
    try:
      async with entry.lock:
        yield
    finally:
      self._checkin(key, entry)

  @asynccontextmanager
  async def hold(self, keys: Iterable[PartitionKey]) -> AsyncIterator[list[PartitionKey]]:
    ordered = sorted(set(keys))
    async with AsyncExitStack() as stack:
      for key in ordered:
        await stack.enter_async_context(self._held(key))
      yield ordered

  def is_held(self, key: PartitionKey) -> bool:
    with self._lock:
      entry = self._locks.get(key)
    return bool(entry and entry.lock.locked())


partition_locks = PartitionLocks()


def advisory_lock_key(key: PartitionKey) -> int:
  digest = hashlib.sha256(f"{key[0]}:{key[1]}".encode("utf-8")).digest()
  return int.from_bytes(digest[:8], "big", signed=True)


async def lock_partitions(db: AsyncSession, keys: Sequence[PartitionKey]) -> None:
  """Cross-process serialization point; released when the transaction ends."""
  if db.get_bind().dialect.name != "postgresql":
    return
  for key in sorted(set(keys)):
    await db.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": advisory_lock_key(key)})


def slot_of(t: Task) -> Slot:
  return Slot(task_id=t.id, status=t.status, order=t.order_index, created_at=t.created_at)


async def find_by_partition(db: AsyncSession, project_id: str, status: str, *, for_update: bool = False) -> list[Task]:
  q = (
    select(Task)
    .where(Task.project_id == project_id, Task.status == status)
    .order_by(Task.order_index.asc(), Task.created_at.asc(), Task.id.asc())
    .execution_options(populate_existing=True)
  )
  if for_update:
    q = q.with_for_update()
  res = await db.execute(q)
  return list(res.scalars().all())


async def count_partition(db: AsyncSession, project_id: str, status: str) -> int:
  res = await db.execute(select(func.count(Task.id)).where(Task.project_id == project_id, Task.status == status))
  return int(res.scalar_one())


async def load_dense_partition(db: AsyncSession, project_id: str, status: str) -> list[Task]:
  """
  Read a partition for modification and repair it if it is not dense.

  The repair is staged in the caller's transaction and commits with it.
  """
  tasks = await find_by_partition(db, project_id, status, for_update=True)
  repairs = normalize_partition([slot_of(t) for t in tasks])
  if repairs:
    logger.warning(
      "partition %s/%s was not dense; renumbering %d of %d tasks",
      project_id,
      status,
      len(repairs),
      len(tasks),
    )
    _stage_shifts({t.id: t for t in tasks}, repairs)
    tasks.sort(key=lambda t: t.order_index)
  return tasks


def _stage_shifts(tasks_by_id: dict[str, Task], shifts: Iterable[OrderShift]) -> None:
  for sh in shifts:
    t = tasks_by_id[sh.task_id]
    if t.order_index != sh.from_order:
      raise StoreConflictError("Partition changed while planning the shift")
    t.order_index = sh.to_order
    t.version += 1


async def commit(db: AsyncSession, *, action: str) -> None:
  try:
    await db.commit()
  except SQLAlchemyError as exc:
    await db.rollback()
    logger.error("store commit failed during %s: %s", action, exc)
    raise StoreConflictError(f"Could not commit {action}; retry the request") from exc


async def apply_shift(db: AsyncSession, plan: ReorderPlan, *, tasks_by_id: dict[str, Task]) -> Task:
  """
  Apply every sibling shift and the moved placement as one commit.

  On failure the transaction is rolled back and StoreConflictError raised;
  nothing of the plan is persisted.
  """
  moved = tasks_by_id[plan.task_id]
  if moved.status != plan.from_status or moved.order_index != plan.from_order:
    raise StoreConflictError("Task moved while planning the shift")
  try:
    _stage_shifts(tasks_by_id, plan.shifts)
  except StoreConflictError:
    await db.rollback()
    raise
  moved.status = plan.to_status
  moved.order_index = plan.to_order
  if not plan.is_noop:
    moved.version += 1
  await commit(db, action="reorder")
  return moved


async def compact_after_delete(db: AsyncSession, task: Task) -> list[OrderShift]:
  """
  Stage closing the gap `task` is about to leave in its partition.

  Must run while the task row still exists; the caller deletes it and
  commits afterwards.
  """
  partition = await load_dense_partition(db, task.project_id, task.status)
  shifts = plan_compaction(deleted=slot_of(task), remaining=[slot_of(t) for t in partition])
  _stage_shifts({t.id: t for t in partition}, shifts)
  return shifts
