from __future__ import annotations

import asyncio
import os
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import select

from tasktracker.config import settings
from tasktracker.db import SessionLocal, init_models
from tasktracker.enums import ProjectRole, TaskPriority, TaskStatus
from tasktracker.logging_setup import setup_logging
from tasktracker.models import Project, ProjectMember, User
from tasktracker.schemas import TaskCreateIn
from tasktracker.security import hash_password
from tasktracker.tasks.service import create_task


def _bootstrap_password(env_key: str) -> tuple[str, bool]:
  configured = (os.getenv(env_key) or "").strip()
  if configured:
    return configured, False
  return secrets.token_urlsafe(14), True


async def _ensure_user(db, *, email: str, name: str, role: str, env_key: str, boot_lines: list[str]) -> User:
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if u:
    return u
  password, generated = _bootstrap_password(env_key)
  u = User(email=email, name=name, role=role, password_hash=hash_password(password))
  db.add(u)
  boot_lines.append(f"{email}={password} (generated={str(generated).lower()})")
  return u


async def seed() -> None:
  async with SessionLocal() as db:
    boot_lines: list[str] = []
    admin = await _ensure_user(
      db, email="admin@tasktracker.local", name="Admin", role="admin", env_key="SEED_ADMIN_PASSWORD", boot_lines=boot_lines
    )
    member = await _ensure_user(
      db, email="member@tasktracker.local", name="Member", role="member", env_key="SEED_MEMBER_PASSWORD", boot_lines=boot_lines
    )
    await db.flush()

    project = None
    if os.getenv("SEED_DEMO_PROJECT", "").strip().lower() in ("1", "true", "yes", "y"):
      name = "Demo Project"
      pres = await db.execute(select(Project).where(Project.name == name, Project.owner_id == admin.id))
      project = pres.scalar_one_or_none()
      if project is None:
        project = Project(name=name, description="Sample board with one task per column.", owner_id=admin.id)
        db.add(project)
        await db.flush()
        db.add(ProjectMember(project_id=project.id, user_id=admin.id, role=ProjectRole.OWNER.value))
        db.add(ProjectMember(project_id=project.id, user_id=member.id, role=ProjectRole.MEMBER.value))
      else:
        project = None
    await db.commit()

    if project is not None:
      now = datetime.now(timezone.utc)
      samples = [
        ("Welcome to the board", TaskStatus.TODO, TaskPriority.MEDIUM, ["welcome", "demo"]),
        ("Drag a card to another column", TaskStatus.IN_PROGRESS, TaskPriority.HIGH, ["demo"]),
        ("Review the reorder rules", TaskStatus.UNDER_REVIEW, TaskPriority.LOW, ["demo"]),
        ("Finished example", TaskStatus.DONE, TaskPriority.LOW, ["done", "demo"]),
      ]
      for idx, (title, status, priority, tags) in enumerate(samples):
        payload = TaskCreateIn(
          title=title,
          status=status,
          priority=priority,
          assigneeId=member.id,
          dueDate=now + timedelta(days=idx + 1),
          tags=tags,
        )
        await create_task(db, admin, project.id, payload)

  if boot_lines:
    out_dir = Path(os.getenv("BOOTSTRAP_CREDENTIALS_DIR", "data"))
    out_dir.mkdir(parents=True, exist_ok=True)
    out_file = out_dir / "bootstrap_credentials.txt"
    stamp = datetime.now(timezone.utc).isoformat()
    out_file.write_text(f"[{stamp}]\n" + "\n".join(boot_lines) + "\n", encoding="utf-8")
    print("Task tracker seed credentials created:")
    for ln in boot_lines:
      print(f"  {ln}")
    print(f"Saved to {out_file}")


async def _main() -> None:
  setup_logging(level=settings.log_level, log_dir=settings.log_dir)
  if settings.auto_create_tables:
    await init_models()
  await seed()


def main() -> None:
  asyncio.run(_main())


if __name__ == "__main__":
  main()
