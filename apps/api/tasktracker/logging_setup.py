from __future__ import annotations

import logging
import sys
from pathlib import Path


class _ConsoleNoiseFilter(logging.Filter):
  """
  Keep the console readable:
  - all tasktracker logs
  - uvicorn access/error logs at INFO+
  - any other third party only at ERROR+
  """

  def filter(self, record: logging.LogRecord) -> bool:
    name = record.name
    if name.startswith("tasktracker"):
      return True
    if name.startswith("uvicorn"):
      return record.levelno >= logging.INFO
    if name == "py.warnings":
      return record.levelno >= logging.ERROR
    return record.levelno >= logging.ERROR


def setup_logging(*, level: str | int = logging.INFO, log_dir: str | Path | None = None) -> None:
  """
  Console handler (filtered) plus an optional file handler with everything.

  Call once at startup, before the first log line.
  """
  if isinstance(level, str):
    level = logging.getLevelName(level.upper())
    if not isinstance(level, int):
      level = logging.INFO

  root = logging.getLogger()
  root.setLevel(logging.DEBUG)
  for h in list(root.handlers):
    root.removeHandler(h)

  fmt = logging.Formatter(
    fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
  )

  ch = logging.StreamHandler(sys.stderr)
  ch.setLevel(level)
  ch.setFormatter(fmt)
  ch.addFilter(_ConsoleNoiseFilter())
  root.addHandler(ch)

  if log_dir:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(str(path / "tasktracker.log"), encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    root.addHandler(fh)

  logging.captureWarnings(True)
