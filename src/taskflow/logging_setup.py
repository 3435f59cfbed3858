# src/taskflow/logging_setup.py

"""
Logging sinks for taskflow.

- console: app records at the chosen level; the reminder dispatcher polls in the
  background, so its INFO chatter stays off the prompt
- <log_dir>/taskflow.log: every record, for debugging
- <log_dir>/reminders.log: taskflow.notifications.* only, so the scheduling,
  delivery and failure history of reminders can be read on its own
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

APP_LOGGER = "taskflow"
REMINDER_LOGGER = "taskflow.notifications"

# Minimum console level per noisy app logger.
CONSOLE_FLOORS: dict[str, int] = {
    "taskflow.notifications.dispatcher": logging.WARNING,
}

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' / 'WARNING' / '10' -> logging level; unknown names give default."""
    raw = (name or "").strip()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


class ConsoleFilter(logging.Filter):
    """Keep the interactive console readable: third-party records only at ERROR+."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name != APP_LOGGER and not name.startswith(APP_LOGGER + "."):
            return record.levelno >= logging.ERROR
        return record.levelno >= CONSOLE_FLOORS.get(name, logging.NOTSET)


def _file_handler(path: Path, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))
    return handler


def setup_logging(
    *,
    log_dir: str | Path,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> list[logging.Handler]:
    """
    Install the three sinks on the root logger, replacing whatever was there.

    Returns the installed handlers.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))
    console.addFilter(ConsoleFilter())

    everything = _file_handler(log_dir / "taskflow.log", file_level)

    reminders = _file_handler(log_dir / "reminders.log", file_level)
    reminders.addFilter(logging.Filter(REMINDER_LOGGER))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.setLevel(min(console_level, file_level))

    handlers: list[logging.Handler] = [console, everything, reminders]
    for h in handlers:
        root.addHandler(h)

    logging.captureWarnings(True)
    return handlers
