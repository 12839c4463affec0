"""Logging setup for hosts embedding the sync engine."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import SyncSettings

__all__ = ["setup_logging", "configure_from_settings", "get_log_path"]

_DEFAULT_LOG_DIR = Path.home() / ".advent_sync" / "logs"
_LOG_FILENAME = "advent_sync.log"
# httpx logs every request at INFO, which drowns out drain summaries.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 512_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Attach a rotating file handler (and optionally stderr) to the root logger.

    Repeated calls are no-ops unless ``force`` is set, so libraries embedding
    the engine can call this defensively without duplicating handlers.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    target_dir = Path(log_dir or os.environ.get("ADVENT_SYNC_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILENAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers: list[logging.Handler] = [file_handler]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    quiet_level = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _LOG_PATH = log_path
    return log_path


def configure_from_settings(settings: SyncSettings, *, console: bool = True) -> Path:
    """Configure logging using the ``debug_logging`` toggle from settings."""

    level = logging.DEBUG if settings.debug_logging else logging.INFO
    return setup_logging(level, console=console, force=True)


def get_log_path() -> Path | None:
    return _LOG_PATH
