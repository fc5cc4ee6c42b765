from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from threading import Lock
from typing import Any

import redis

from tasktracker.config import settings
from tasktracker.tasks.events import TaskChange

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
  expires_at: float
  payload: dict[str, Any]


class DashboardCache:
  """
  Per-user dashboard overview cache.

  Uses Redis when `redis_url` is configured, otherwise a process-local map.
  Entries expire after `dashboard_cache_ttl_seconds` and are dropped early
  whenever a task or membership change touches the user.
  """

  def __init__(self, *, redis_url: str | None = None, ttl_seconds: int = 60) -> None:
    self._lock = Lock()
    self._entries: dict[str, _Entry] = {}
    self._ttl = max(1, int(ttl_seconds))
    self._redis: redis.Redis | None = None
    if redis_url:
      self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

  @staticmethod
  def _key(user_id: str) -> str:
    return f"dash:overview:{user_id}"

  def get(self, user_id: str) -> dict[str, Any] | None:
    if self._redis is not None:
      try:
        raw = self._redis.get(self._key(user_id))
      except redis.RedisError as exc:
        logger.warning("dashboard cache read failed: %s", exc)
        return None
      return json.loads(raw) if raw else None

    now = time.monotonic()
    with self._lock:
      e = self._entries.get(user_id)
      if e is None:
        return None
      if now >= e.expires_at:
        del self._entries[user_id]
        return None
      return e.payload

  def set(self, user_id: str, payload: dict[str, Any]) -> None:
    if self._redis is not None:
      try:
        self._redis.set(self._key(user_id), json.dumps(payload), ex=self._ttl)
      except redis.RedisError as exc:
        logger.warning("dashboard cache write failed: %s", exc)
      return
    with self._lock:
      self._entries[user_id] = _Entry(expires_at=time.monotonic() + self._ttl, payload=payload)

  def invalidate(self, user_ids: Iterable[str]) -> None:
    ids = [u for u in user_ids if u]
    if not ids:
      return
    if self._redis is not None:
      try:
        self._redis.delete(*[self._key(u) for u in ids])
      except redis.RedisError as exc:
        logger.warning("dashboard cache invalidation failed: %s", exc)
      return
    with self._lock:
      for u in ids:
        self._entries.pop(u, None)

  def clear(self) -> None:
    with self._lock:
      self._entries.clear()

  def on_change(self, change: TaskChange) -> None:
    if change.user_ids:
      logger.debug("dashboard cache: %s invalidates %d user(s)", change.kind, len(change.user_ids))
    self.invalidate(change.user_ids)


dashboard_cache = DashboardCache(redis_url=settings.redis_url, ttl_seconds=settings.dashboard_cache_ttl_seconds)
