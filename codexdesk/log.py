"""Logging utilities for CodexDesk."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import threading
from pathlib import Path
from typing import Any

from .util.time import utc_now_iso

LOG_DIR_ENV = "CODEXDESK_LOG_DIR"
_DEFAULT_HOME_DIR = ".codexdesk"
_DEFAULT_LOG_SUBDIR = "logs"
_TEXT_LOG_NAME = "codexdesk.log"
_JSON_LOG_NAME = "codexdesk.jsonl"
_ROTATION_BACKUPS = 5
_LOG_MAX_BYTES = 5 * 1024 * 1024

logger = logging.getLogger("codexdesk")

_log_dir: Path | None = None


class ConsoleFormatter(logging.Formatter):
    """Console formatter that surfaces structured payloads when available."""

    def __init__(self) -> None:
        super().__init__("%(levelname)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* optionally appending the structured payload."""
        base = super().format(record)
        payload = _extract_console_payload(record)
        if payload is None:
            return base
        try:
            payload_text = json.dumps(payload, ensure_ascii=False)
        except TypeError:
            payload_text = json.dumps(str(payload), ensure_ascii=False)
        return f"{base} {payload_text}"


def _extract_console_payload(record: logging.LogRecord) -> Any | None:
    """Return payload that should be appended to console output.

    Only records emitted by :func:`codexdesk.telemetry.log_event` carry a
    payload worth echoing: their message is exactly the event name.
    """
    extra_json = getattr(record, "json", None)
    if not isinstance(extra_json, dict):
        return None
    event_name = extra_json.get("event")
    raw_message = record.msg
    if not (isinstance(raw_message, str) and isinstance(event_name, str)):
        return None
    if raw_message.strip() != event_name.strip():
        return None
    return extra_json.get("payload")


class JsonFormatter(logging.Formatter):
    """Convert log records into JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: Any = getattr(record, "json", None)
        if payload is None:
            data: dict[str, Any] = {
                "message": record.message,
                "level": record.levelname,
                "logger": record.name,
            }
        elif isinstance(payload, dict):
            data = dict(payload)
            data.setdefault("message", record.message)
            data.setdefault("level", record.levelname)
            data.setdefault("logger", record.name)
        else:
            data = {
                "message": record.message,
                "level": record.levelname,
                "logger": record.name,
                "data": payload,
            }
        if "timestamp" not in data:
            data["timestamp"] = utc_now_iso()
        if record.exc_info and "exc_info" not in data:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


class JsonlHandler(RotatingFileHandler):
    """Write log records as JSON lines with built-in rotation."""

    def __init__(
        self,
        filename: Path | str,
        *,
        max_bytes: int = _LOG_MAX_BYTES,
        backup_count: int = _ROTATION_BACKUPS,
        encoding: str = "utf-8",
        delay: bool = False,
    ) -> None:
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding,
            delay=delay,
        )
        self.setFormatter(JsonFormatter())


def _default_log_dir() -> Path:
    return Path.home() / _DEFAULT_HOME_DIR / _DEFAULT_LOG_SUBDIR


def _resolve_log_dir(log_dir: str | Path | None) -> Path:
    """Resolve effective log directory creating it if necessary."""
    if log_dir is not None:
        path = Path(log_dir).expanduser()
    else:
        env_dir = os.environ.get(LOG_DIR_ENV)
        path = Path(env_dir).expanduser() if env_dir else _default_log_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def configure_logging(
    level: int = logging.INFO,
    *,
    log_dir: str | Path | None = None,
    console: bool = True,
) -> None:
    """Configure the application logger once.

    The console handler honours *level*; both file handlers always record
    ``DEBUG`` so that stream and flush traces are available post mortem.
    """
    global _log_dir

    if logger.handlers:
        if _log_dir is None:
            _log_dir = _resolve_log_dir(log_dir).resolve()
        return

    resolved_dir = _resolve_log_dir(log_dir).resolve()
    _log_dir = resolved_dir

    if console and sys.stderr is not None:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(ConsoleFormatter())
        logger.addHandler(stream_handler)

    file_handler = RotatingFileHandler(
        resolved_dir / _TEXT_LOG_NAME,
        encoding="utf-8",
        maxBytes=_LOG_MAX_BYTES,
        backupCount=_ROTATION_BACKUPS,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(file_handler)

    json_handler = JsonlHandler(resolved_dir / _JSON_LOG_NAME)
    json_handler.setLevel(logging.DEBUG)
    logger.addHandler(json_handler)

    logger.setLevel(logging.DEBUG)


def install_exception_hooks() -> None:
    """Route uncaught exceptions from any thread into the application logger."""

    def _excepthook(exc_type, exc_value, exc_traceback):
        logger.critical(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback),
        )

    sys.excepthook = _excepthook

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        logger.critical(
            "Uncaught thread exception (thread=%s)",
            getattr(args.thread, "name", None),
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    threading.excepthook = _thread_excepthook


def get_log_directory() -> Path:
    """Return directory where CodexDesk writes log files."""
    if _log_dir is None:
        configure_logging()
    assert _log_dir is not None
    return _log_dir


def get_log_file_paths() -> tuple[Path, Path]:
    """Return paths to text and JSONL log files, configuring logging if needed."""
    directory = get_log_directory()
    return directory / _TEXT_LOG_NAME, directory / _JSON_LOG_NAME


__all__ = [
    "ConsoleFormatter",
    "JsonFormatter",
    "JsonlHandler",
    "configure_logging",
    "get_log_directory",
    "get_log_file_paths",
    "install_exception_hooks",
    "logger",
]
