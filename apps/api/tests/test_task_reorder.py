from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import add_member, column, create_project, create_task, login, register


async def _board(client: AsyncClient) -> tuple[dict, dict[str, dict]]:
  await register(client, "Alice")
  p = await create_project(client)
  tasks = {}
  for title in ("A", "B", "C"):
    tasks[title] = await create_task(client, p["id"], title)
  tasks["X"] = await create_task(client, p["id"], "X", status="in_progress")
  return p, tasks


@pytest.mark.anyio
async def test_create_appends_to_the_column(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  assert [tasks[t]["order"] for t in ("A", "B", "C")] == [0, 1, 2]
  assert tasks["X"]["order"] == 0

  d = await create_task(client, p["id"], "D")
  assert d["status"] == "todo"
  assert d["order"] == 3


@pytest.mark.anyio
async def test_create_defaults_to_todo(client: AsyncClient) -> None:
  await register(client, "Alice")
  p = await create_project(client)
  res = await client.post(f"/projects/{p['id']}/tasks", json={"title": "  Write docs  "})
  assert res.status_code == 201, res.text
  body = res.json()
  assert body["status"] == "todo"
  assert body["order"] == 0
  assert body["title"] == "Write docs"
  assert body["priority"] == "medium"
  assert body["version"] == 0


@pytest.mark.anyio
async def test_reorder_within_column(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  res = await client.patch(f"/tasks/{tasks['C']['id']}/reorder", json={"status": "todo", "order": 0})
  assert res.status_code == 200, res.text
  assert res.json()["order"] == 0
  assert await column(client, p["id"], "todo") == [("C", 0), ("A", 1), ("B", 2)]


@pytest.mark.anyio
async def test_reorder_across_columns(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  await client.delete(f"/tasks/{tasks['C']['id']}")

  res = await client.patch(f"/tasks/{tasks['A']['id']}/reorder", json={"status": "in_progress", "order": 0})
  assert res.status_code == 200, res.text
  moved = res.json()
  assert (moved["status"], moved["order"]) == ("in_progress", 0)
  assert moved["version"] == tasks["A"]["version"] + 1

  assert await column(client, p["id"], "todo") == [("B", 0)]
  assert await column(client, p["id"], "in_progress") == [("A", 0), ("X", 1)]


@pytest.mark.anyio
async def test_reorder_past_the_end_appends(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  await create_task(client, p["id"], "Y", status="in_progress")

  res = await client.patch(f"/tasks/{tasks['B']['id']}/reorder", json={"status": "in_progress", "order": 99})
  assert res.status_code == 200, res.text
  assert res.json()["order"] == 2
  assert await column(client, p["id"], "in_progress") == [("X", 0), ("Y", 1), ("B", 2)]
  assert await column(client, p["id"], "todo") == [("A", 0), ("C", 1)]


@pytest.mark.anyio
async def test_reorder_negative_order_goes_first(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  res = await client.patch(f"/tasks/{tasks['B']['id']}/reorder", json={"status": "todo", "order": -3})
  assert res.status_code == 200, res.text
  assert await column(client, p["id"], "todo") == [("B", 0), ("A", 1), ("C", 2)]


@pytest.mark.anyio
async def test_reorder_to_same_slot_changes_nothing(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  res = await client.patch(f"/tasks/{tasks['B']['id']}/reorder", json={"status": "todo", "order": 1})
  assert res.status_code == 200, res.text
  assert res.json()["version"] == tasks["B"]["version"]
  assert await column(client, p["id"], "todo") == [("A", 0), ("B", 1), ("C", 2)]


@pytest.mark.anyio
async def test_reorder_rejects_unknown_status(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  res = await client.patch(f"/tasks/{tasks['A']['id']}/reorder", json={"status": "blocked", "order": 0})
  assert res.status_code == 422
  res = await client.patch(f"/tasks/{tasks['A']['id']}/reorder", json={"status": "todo", "order": "first"})
  assert res.status_code == 422
  assert await column(client, p["id"], "todo") == [("A", 0), ("B", 1), ("C", 2)]


@pytest.mark.anyio
async def test_reorder_unknown_task_is_404(client: AsyncClient) -> None:
  await register(client, "Alice")
  res = await client.patch("/tasks/does-not-exist/reorder", json={"status": "todo", "order": 0})
  assert res.status_code == 404
  assert res.json()["detail"] == "Task not found"


@pytest.mark.anyio
async def test_reorder_by_outsider_is_forbidden_and_changes_nothing(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  await register(client, "Mallory")
  res = await client.patch(f"/tasks/{tasks['C']['id']}/reorder", json={"status": "done", "order": 0})
  assert res.status_code == 403

  await login(client, "alice@example.com")
  assert await column(client, p["id"], "todo") == [("A", 0), ("B", 1), ("C", 2)]
  assert await column(client, p["id"], "done") == []


@pytest.mark.anyio
async def test_viewer_member_can_reorder(client: AsyncClient) -> None:
  bob = await register(client, "Bob")
  await register(client, "Alice")
  p = await create_project(client)
  a = await create_task(client, p["id"], "A")
  await create_task(client, p["id"], "B")
  await add_member(client, p["id"], bob["id"], role="viewer")

  await login(client, "bob@example.com")
  res = await client.patch(f"/tasks/{a['id']}/reorder", json={"status": "todo", "order": 1})
  assert res.status_code == 200, res.text
  assert await column(client, p["id"], "todo") == [("B", 0), ("A", 1)]


@pytest.mark.anyio
async def test_reorder_with_stale_version_conflicts(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  a = tasks["A"]
  first = await client.patch(f"/tasks/{a['id']}/reorder", json={"status": "done", "order": 0, "version": a["version"]})
  assert first.status_code == 200, first.text

  stale = await client.patch(f"/tasks/{a['id']}/reorder", json={"status": "todo", "order": 0, "version": a["version"]})
  assert stale.status_code == 409
  assert stale.json()["currentVersion"] == first.json()["version"]
  assert await column(client, p["id"], "done") == [("A", 0)]


@pytest.mark.anyio
async def test_update_cannot_move_task(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  b = tasks["B"]

  res = await client.patch(f"/tasks/{b['id']}", json={"status": "done"})
  assert res.status_code == 400
  assert "reorder" in res.json()["detail"]
  res = await client.patch(f"/tasks/{b['id']}", json={"order": 0})
  assert res.status_code == 400

  # Echoing the current placement back alongside other edits is fine.
  res = await client.patch(f"/tasks/{b['id']}", json={"status": "todo", "order": 1, "title": "B2"})
  assert res.status_code == 200, res.text
  assert (res.json()["status"], res.json()["order"], res.json()["title"]) == ("todo", 1, "B2")
  assert res.json()["version"] == b["version"] + 1
  assert await column(client, p["id"], "todo") == [("A", 0), ("B2", 1), ("C", 2)]


@pytest.mark.anyio
async def test_delete_compacts_column(client: AsyncClient) -> None:
  await register(client, "Alice")
  p = await create_project(client)
  a = await create_task(client, p["id"], "A", status="done")
  b = await create_task(client, p["id"], "B", status="done")
  c = await create_task(client, p["id"], "C", status="done")

  res = await client.delete(f"/tasks/{b['id']}")
  assert res.status_code == 200, res.text
  assert await column(client, p["id"], "done") == [("A", 0), ("C", 1)]

  assert (await client.get(f"/tasks/{b['id']}")).status_code == 404
  assert (await client.get(f"/tasks/{a['id']}")).json()["order"] == 0
  assert (await client.get(f"/tasks/{c['id']}")).json()["order"] == 1


@pytest.mark.anyio
async def test_moves_in_one_project_leave_other_projects_alone(client: AsyncClient) -> None:
  await register(client, "Alice")
  p1 = await create_project(client, "One")
  p2 = await create_project(client, "Two")
  t1 = await create_task(client, p1["id"], "P1-A")
  await create_task(client, p1["id"], "P1-B")
  await create_task(client, p2["id"], "P2-A")
  await create_task(client, p2["id"], "P2-B")

  res = await client.patch(f"/tasks/{t1['id']}/reorder", json={"status": "todo", "order": 1})
  assert res.status_code == 200, res.text
  assert await column(client, p1["id"], "todo") == [("P1-B", 0), ("P1-A", 1)]
  assert await column(client, p2["id"], "todo") == [("P2-A", 0), ("P2-B", 1)]


@pytest.mark.anyio
async def test_list_orders_by_status_then_order(client: AsyncClient) -> None:
  p, tasks = await _board(client)
  await client.patch(f"/tasks/{tasks['C']['id']}/reorder", json={"status": "under_review", "order": 0})
  res = await client.get(f"/projects/{p['id']}/tasks")
  assert res.status_code == 200, res.text
  got = [(t["status"], t["title"], t["order"]) for t in res.json()]
  assert got == [
    ("in_progress", "X", 0),
    ("todo", "A", 0),
    ("todo", "B", 1),
    ("under_review", "C", 0),
  ]


@pytest.mark.anyio
async def test_store_failure_is_a_retryable_conflict(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
  p, tasks = await _board(client)

  async def failing_commit(self: AsyncSession) -> None:
    await self.flush()
    raise OperationalError("COMMIT", {}, Exception("database is locked"))

  monkeypatch.setattr(AsyncSession, "commit", failing_commit)
  res = await client.patch(f"/tasks/{tasks['A']['id']}/reorder", json={"status": "in_progress", "order": 0})
  monkeypatch.undo()
  assert res.status_code == 409
  assert res.json()["retryable"] is True

  assert await column(client, p["id"], "todo") == [("A", 0), ("B", 1), ("C", 2)]
  assert await column(client, p["id"], "in_progress") == [("X", 0)]

  res = await client.patch(f"/tasks/{tasks['A']['id']}/reorder", json={"status": "in_progress", "order": 0})
  assert res.status_code == 200, res.text
  assert await column(client, p["id"], "todo") == [("B", 0), ("C", 1)]
  assert await column(client, p["id"], "in_progress") == [("A", 0), ("X", 1)]
