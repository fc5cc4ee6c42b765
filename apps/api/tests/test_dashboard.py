from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from conftest import add_member, create_project, create_task, login, register
from tasktracker.dashboard.cache import DashboardCache
from tasktracker.tasks.events import TaskChange


def _iso(dt: datetime) -> str:
  return dt.isoformat().replace("+00:00", "Z")


@pytest.mark.anyio
async def test_overview_counts_and_upcoming(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  p = await create_project(client, "Ops")
  archived = await create_project(client, "Old")
  await client.delete(f"/projects/{archived['id']}")

  now = datetime.now(timezone.utc)
  await create_task(client, p["id"], "soon", assigneeId=alice["id"], dueDate=_iso(now + timedelta(days=1)))
  await create_task(client, p["id"], "later", assigneeId=alice["id"], dueDate=_iso(now + timedelta(days=3)))
  await create_task(client, p["id"], "far", assigneeId=alice["id"], dueDate=_iso(now + timedelta(days=30)))
  await create_task(client, p["id"], "finished", status="done", assigneeId=alice["id"], dueDate=_iso(now + timedelta(days=2)))
  await create_task(client, p["id"], "review", status="under_review", assigneeId=alice["id"])
  await create_task(client, p["id"], "unassigned", dueDate=_iso(now + timedelta(days=1)))

  res = await client.get("/dashboard/overview")
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["projectsCount"] == 1
  assert body["tasksAssignedCount"] == 5
  assert body["tasksByStatus"] == {"todo": 3, "in_progress": 0, "under_review": 1, "done": 1}
  assert [t["title"] for t in body["upcomingTasks"]] == ["soon", "later"]
  assert body["upcomingTasks"][0]["projectName"] == "Ops"
  assert body["upcomingTasks"][0]["projectColor"] == "#3b82f6"


@pytest.mark.anyio
async def test_overview_is_invalidated_by_task_changes(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  p = await create_project(client)
  t = await create_task(client, p["id"], "A", assigneeId=alice["id"])

  first = (await client.get("/dashboard/overview")).json()
  assert first["tasksByStatus"]["todo"] == 1

  res = await client.patch(f"/tasks/{t['id']}/reorder", json={"status": "in_progress", "order": 0})
  assert res.status_code == 200, res.text
  second = (await client.get("/dashboard/overview")).json()
  assert second["tasksByStatus"]["todo"] == 0
  assert second["tasksByStatus"]["in_progress"] == 1

  await client.delete(f"/tasks/{t['id']}")
  third = (await client.get("/dashboard/overview")).json()
  assert third["tasksAssignedCount"] == 0


@pytest.mark.anyio
async def test_membership_changes_refresh_project_count(client: AsyncClient) -> None:
  bob = await register(client, "Bob")
  assert (await client.get("/dashboard/overview")).json()["projectsCount"] == 0

  await register(client, "Alice")
  p = await create_project(client)
  await add_member(client, p["id"], bob["id"])

  await login(client, "bob@example.com")
  assert (await client.get("/dashboard/overview")).json()["projectsCount"] == 1


def test_in_memory_cache_ttl_and_invalidation() -> None:
  cache = DashboardCache(ttl_seconds=60)
  cache.set("u1", {"projectsCount": 1})
  cache.set("u2", {"projectsCount": 2})
  assert cache.get("u1") == {"projectsCount": 1}

  cache.on_change(TaskChange("task.updated", "p1", "t1", frozenset(["u1"])))
  assert cache.get("u1") is None
  assert cache.get("u2") == {"projectsCount": 2}

  cache.clear()
  assert cache.get("u2") is None
