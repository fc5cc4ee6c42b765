from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import add_member, create_project, create_task, login, register


@pytest.mark.anyio
async def test_create_project_makes_owner_a_member(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  res = await client.post("/projects", json={"name": "  Website  ", "description": "Relaunch"})
  assert res.status_code == 201, res.text
  p = res.json()
  assert p["name"] == "Website"
  assert p["ownerId"] == alice["id"]
  assert p["status"] == "active"
  assert p["color"] == "#3b82f6"
  assert [(m["userId"], m["role"]) for m in p["members"]] == [(alice["id"], "owner")]


@pytest.mark.anyio
async def test_project_validation(client: AsyncClient) -> None:
  await register(client, "Alice")
  assert (await client.post("/projects", json={"name": ""})).status_code == 422
  assert (await client.post("/projects", json={"name": "x" * 121})).status_code == 422
  res = await client.post("/projects", json={"name": "Dates", "startDate": "2026-05-10", "dueDate": "2026-05-01"})
  assert res.status_code == 400


@pytest.mark.anyio
async def test_list_projects_filters_and_paginates(client: AsyncClient) -> None:
  await register(client, "Bob")
  await create_project(client, "Bob's secret")

  await register(client, "Alice")
  for i in range(3):
    await create_project(client, f"Alpha {i}")
  beta = await create_project(client, "Beta")
  assert (await client.delete(f"/projects/{beta['id']}")).status_code == 200

  res = await client.get("/projects", params={"limit": 2})
  body = res.json()
  assert body["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}
  assert len(body["projects"]) == 2

  res = await client.get("/projects", params={"status": "archived"})
  assert [p["name"] for p in res.json()["projects"]] == ["Beta"]

  res = await client.get("/projects", params={"search": "alpha"})
  assert sorted(p["name"] for p in res.json()["projects"]) == ["Alpha 0", "Alpha 1", "Alpha 2"]


@pytest.mark.anyio
async def test_get_project_access(client: AsyncClient) -> None:
  await register(client, "Alice")
  p = await create_project(client)
  await register(client, "Mallory")
  assert (await client.get(f"/projects/{p['id']}")).status_code == 403
  assert (await client.get("/projects/nope")).status_code == 404


@pytest.mark.anyio
async def test_only_owner_or_manager_updates_project(client: AsyncClient) -> None:
  bob = await register(client, "Bob")
  carol = await register(client, "Carol")
  await register(client, "Alice")
  p = await create_project(client)
  await add_member(client, p["id"], bob["id"], role="member")
  await add_member(client, p["id"], carol["id"], role="manager")

  await login(client, "bob@example.com")
  res = await client.patch(f"/projects/{p['id']}", json={"name": "Renamed"})
  assert res.status_code == 403
  assert res.json()["detail"] == "Only owner or manager can update project"

  await login(client, "carol@example.com")
  res = await client.patch(f"/projects/{p['id']}", json={"name": "Renamed", "color": "#ff0000"})
  assert res.status_code == 200, res.text
  assert (res.json()["name"], res.json()["color"]) == ("Renamed", "#ff0000")

  # Archiving is owner-only, even for managers.
  assert (await client.delete(f"/projects/{p['id']}")).status_code == 403
  await login(client, "alice@example.com")
  res = await client.delete(f"/projects/{p['id']}")
  assert res.status_code == 200
  assert (await client.get(f"/projects/{p['id']}")).json()["status"] == "archived"


@pytest.mark.anyio
async def test_add_member_by_email_and_duplicates(client: AsyncClient) -> None:
  await register(client, "Bob")
  await register(client, "Alice")
  p = await create_project(client)

  res = await client.post(f"/projects/{p['id']}/members", json={"email": "BOB@example.com", "role": "viewer"})
  assert res.status_code == 201, res.text
  assert {m["name"]: m["role"] for m in res.json()["members"]} == {"Alice": "owner", "Bob": "viewer"}

  res = await client.post(f"/projects/{p['id']}/members", json={"email": "bob@example.com", "role": "member"})
  assert res.status_code == 400
  res = await client.post(f"/projects/{p['id']}/members", json={"email": "ghost@example.com", "role": "member"})
  assert res.status_code == 404
  res = await client.post(f"/projects/{p['id']}/members", json={"role": "member"})
  assert res.status_code == 400
  res = await client.post(f"/projects/{p['id']}/members", json={"email": "bob@example.com", "role": "owner"})
  assert res.status_code == 422

  members = (await client.get(f"/projects/{p['id']}/members")).json()
  assert len(members) == 2


@pytest.mark.anyio
async def test_remove_member_revokes_access_and_unassigns(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  await login(client, "alice@example.com")
  p = await create_project(client)
  await add_member(client, p["id"], bob["id"])
  t = await create_task(client, p["id"], "A", assigneeId=bob["id"])

  res = await client.delete(f"/projects/{p['id']}/members/{alice['id']}")
  assert res.status_code == 400
  res = await client.delete(f"/projects/{p['id']}/members/{bob['id']}")
  assert res.status_code == 200, res.text
  assert [m["userId"] for m in res.json()["members"]] == [alice["id"]]
  assert (await client.get(f"/tasks/{t['id']}")).json()["assigneeId"] is None

  await login(client, "bob@example.com")
  assert (await client.get(f"/projects/{p['id']}/tasks")).status_code == 403
  res = await client.patch(f"/tasks/{t['id']}/reorder", json={"status": "done", "order": 0})
  assert res.status_code == 403
