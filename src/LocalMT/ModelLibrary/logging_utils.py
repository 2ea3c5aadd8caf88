"""Structured logging helpers shared across model library components.

Log files are named ``mtlib-YYYYMMDD.jsonl`` and rotate by size within a day.
Each call to :func:`setup_logging` tidies the log directory: the file being
written stays plain, every other ``mtlib-*`` log is gzipped in place keeping
its modification time, and anything last written before the retention window
is deleted.  Files that do not carry the ``mtlib-`` prefix are never touched.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import platformdirs

from .io import mask_sensitive_data
from .settings import APP_NAME, LoggingConfiguration

__all__ = ["JSONFormatter", "default_log_dir", "log_file_name", "prune_logs", "setup_logging"]

LOGGER_NAME = "LocalMT.ModelLibrary"
LOG_FILE_PREFIX = "mtlib-"

_MANAGED_MARKER = "_mtlib_managed"
_ROTATED_BACKUPS = 5
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def default_log_dir() -> Path:
    return platformdirs.user_log_path(APP_NAME, appauthor=False)


def log_file_name(day: datetime) -> str:
    return f"{LOG_FILE_PREFIX}{day:%Y%m%d}.jsonl"


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries for model library events.

    Any ``extra=`` fields passed to the logging call are merged into the
    payload next to the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
        }
        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key in payload or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def _gzip_in_place(path: Path) -> Path:
    target = path.with_name(path.name + ".gz")
    stat = path.stat()
    with path.open("rb") as source, gzip.open(target, "wb") as sink:
        shutil.copyfileobj(source, sink)
    os.utime(target, (stat.st_atime, stat.st_mtime))
    path.unlink()
    return target


def prune_logs(
    log_dir: Path,
    retention_days: int,
    *,
    active: Optional[Path] = None,
    now: Optional[float] = None,
) -> None:
    """Compress inactive ``mtlib-*`` logs and delete those past retention.

    Args:
        log_dir: Directory holding the log files.
        retention_days: Files last modified longer ago than this are deleted.
        active: Log file currently being written; never compressed.
        now: Reference time in epoch seconds, defaults to the current time.
    """

    cutoff = (time.time() if now is None else now) - retention_days * 86400
    for path in sorted(log_dir.glob(f"{LOG_FILE_PREFIX}*.jsonl*")):
        if not path.is_file() or path == active:
            continue
        if path.stat().st_mtime < cutoff:
            path.unlink()
            logging.getLogger(LOGGER_NAME).debug(
                "deleted expired log", extra={"stage": "logging", "path": str(path)}
            )
        elif not path.name.endswith(".gz"):
            _gzip_in_place(path)


def _detach_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(
    config: Optional[LoggingConfiguration] = None, *, propagate: bool = False
) -> logging.Logger:
    """Configure library logging from ``config``.

    Installs a plain console handler on stderr, so log lines never mix with
    command output, plus a size-rotated JSON lines file.  Calling this again
    replaces the handlers installed by a previous call.
    """

    config = config or LoggingConfiguration()
    log_dir = Path(config.log_dir) if config.log_dir is not None else default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_file_name(datetime.now(timezone.utc))
    prune_logs(log_dir, config.retention_days, active=log_path)

    logger = logging.getLogger(LOGGER_NAME)
    _detach_managed_handlers(logger)
    logger.setLevel(config.level)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=config.max_log_size_mb * 1024 * 1024,
        backupCount=_ROTATED_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONFormatter())
    for handler in (console, file_handler):
        setattr(handler, _MANAGED_MARKER, True)
        logger.addHandler(handler)

    logger.propagate = propagate
    return logger
