"""Logging helpers for vaultsync.

Two rotating files under ``<data_dir>/logs``: ``vaultsync.log`` for people and
``vaultsync.jsonl`` for tools. Every handler carries a ``RedactingFilter`` so
long base64 runs (identifiers, envelopes, ETags) never reach disk in full.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import re
import sys
from typing import Union

LOG_SUBPATH = Path("logs") / "vaultsync.log"
STRUCTURED_LOG_SUBPATH = Path("logs") / "vaultsync.jsonl"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB per log segment
BACKUP_COUNT = 3
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".vaultsync_runtime"
LOGGER_NAME = "vaultsync"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Mixed case plus a digit, 32+ chars: matches key material and identifiers,
# not file names or words joined by underscores.
OPAQUE_TOKEN = re.compile(r"(?=[\w-]*[A-Z])(?=[\w-]*[a-z])(?=[\w-]*\d)[\w+=-]{32,}")
VISIBLE_PREFIX = 8


class RedactingFilter(logging.Filter):
    """Shorten opaque tokens in the rendered message to their first 8 characters."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = OPAQUE_TOKEN.sub(lambda m: m.group(0)[:VISIBLE_PREFIX] + "...", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        # logger.info(..., extra={"extra": {...}})
        if getattr(record, "extra", None):
            log_entry["extra"] = record.extra
        return json.dumps(log_entry)


def setup_logging(
    data_dir: Path,
    level: Union[str, int] = logging.WARNING,
    structured: bool = True,
    console: bool = True,
) -> Path:
    """Configure the ``vaultsync`` logger tree.

    Args:
        data_dir: Data directory; logs go under ``<data_dir>/logs``.
        level: Logging level (string name or int constant).
        structured: Also write JSON lines to ``logs/vaultsync.jsonl``.
        console: Attach a stderr handler. The shell turns this off so log
            lines do not interleave with command output.

    Returns:
        Path to the primary (text) log file.
    """
    text_formatter = logging.Formatter(TEXT_FORMAT)
    log_path = _resolve_path(data_dir, LOG_SUBPATH, "logs")
    handlers = [_rotating(log_path, text_formatter)]

    if console:
        handlers.append(_with_filter(logging.StreamHandler(), text_formatter))
    if structured:
        json_path = _resolve_path(data_dir, STRUCTURED_LOG_SUBPATH, "structured logs")
        handlers.append(_rotating(json_path, JSONFormatter()))

    logger = logging.getLogger(LOGGER_NAME)
    _reset_handlers(logger)
    logger.setLevel(_resolve_level(level))
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False

    # Request lines carry identifiers in the path
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return log_path


def _rotating(path: Path, formatter: logging.Formatter) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    return _with_filter(handler, formatter)


def _with_filter(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    return handler


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.WARNING)
    return int(level)


def _resolve_path(data_dir: Path, subpath: Path, label: str) -> Path:
    primary = data_dir / subpath
    try:
        primary.parent.mkdir(parents=True, exist_ok=True)
        return primary
    except PermissionError:
        fallback = FALLBACK_ROOT / subpath
        fallback.parent.mkdir(parents=True, exist_ok=True)
        print(
            f"[config] Unable to write {label} under '{data_dir}'; "
            f"falling back to '{fallback.parent}'.",
            file=sys.stderr,
        )
        return fallback


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


__all__ = [
    "FALLBACK_ROOT",
    "JSONFormatter",
    "LOG_SUBPATH",
    "RedactingFilter",
    "STRUCTURED_LOG_SUBPATH",
    "setup_logging",
]
