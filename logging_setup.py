"""Process-wide logging configuration with a console stream and JSONL output."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import uuid
from pathlib import Path
from typing import Any, Optional


_LOG_CONFIGURED = False
_DEFAULT_COMPONENT = os.getenv("LOG_COMPONENT", "crawlstore")
_MAX_MESSAGE_LENGTH = int(os.getenv("LOG_MAX_MESSAGE_LENGTH", "2000"))
_MAX_STACK_LENGTH = int(os.getenv("LOG_MAX_STACK_LENGTH", "8000"))
_RUN_ID = "run_" + uuid.uuid4().hex[:10]


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = getattr(logging, level_name, None)
    return resolved if isinstance(resolved, int) else logging.INFO


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    if limit <= 0 or len(value) <= limit:
        return value
    return f"{value[:limit]}...[truncated {len(value) - limit} chars]"


def _resolve_event(record: logging.LogRecord) -> str:
    value = getattr(record, "event", None)
    if isinstance(value, str) and value.strip():
        return value.strip()
    meta = getattr(record, "meta", None)
    if isinstance(meta, dict):
        event = meta.get("event")
        if isinstance(event, str) and event.strip():
            return event.strip()
    return "log"


def _safe_meta(record: logging.LogRecord) -> Optional[dict[str, Any]]:
    meta = getattr(record, "meta", None)
    if meta is None:
        return None
    if isinstance(meta, dict):
        try:
            json.dumps(meta)
            return meta
        except TypeError:
            return {"repr": repr(meta)}
    return {"value": repr(meta)}


class RunIdFilter(logging.Filter):
    """Ensures every log record carries the run_id of this process."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - standard signature
        if not getattr(record, "run_id", None):
            record.run_id = _RUN_ID
        return True


class JsonlFormatter(logging.Formatter):
    """Formatter that renders each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - override signature
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%d %H:%M:%S"),
            "level": record.levelname.lower(),
            "component": getattr(record, "component", _DEFAULT_COMPONENT),
            "run_id": getattr(record, "run_id", None),
            "logger": record.name,
            "event": _resolve_event(record),
            "message": _truncate(record.getMessage(), _MAX_MESSAGE_LENGTH),
        }
        if record.exc_info:
            payload["stack"] = _truncate(self.formatException(record.exc_info), _MAX_STACK_LENGTH)
        meta = _safe_meta(record)
        if meta:
            payload["meta"] = meta
        return json.dumps(payload, ensure_ascii=False)


class PlainFormatter(logging.Formatter):
    """Formatter used for console output."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - override signature
        timestamp = self.formatTime(record, datefmt="%Y-%m-%d %H:%M:%S")
        rendered = _truncate(record.getMessage(), _MAX_MESSAGE_LENGTH)
        parts = [timestamp, f"[{record.levelname}]", f"({record.name})"]
        event_name = _resolve_event(record)
        if event_name != "log":
            parts.append(f"evt={event_name}")
        line = f"{' '.join(parts)} {rendered}"
        if record.exc_info:
            line = f"{line}\n{_truncate(self.formatException(record.exc_info), _MAX_STACK_LENGTH)}"
        return line


def _build_jsonl_handler(log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=log_dir / "crawlstore.jsonl",
        when="midnight",
        interval=1,
        backupCount=14,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(JsonlFormatter())
    handler.addFilter(RunIdFilter())
    return handler


def configure_logging(
    level: str | int | None = None,
    log_dir: Path | str | None = None,
    *,
    jsonl: bool = True,
    force: bool = False,
) -> None:
    """Initialize the logging stack exactly once per process."""

    global _LOG_CONFIGURED
    if _LOG_CONFIGURED and not force:
        return

    resolved = _resolve_level(level)
    console = logging.StreamHandler()
    console.setLevel(resolved)
    console.setFormatter(PlainFormatter())
    console.addFilter(RunIdFilter())
    handlers: list[logging.Handler] = [console]
    if jsonl and log_dir is not None:
        handlers.append(_build_jsonl_handler(Path(log_dir), resolved))

    root_logger = logging.getLogger()
    if force:
        for existing in list(root_logger.handlers):
            existing.close()
    root_logger.setLevel(resolved)
    root_logger.handlers = handlers

    logging.captureWarnings(True)
    _LOG_CONFIGURED = True


def current_run_id() -> str:
    return _RUN_ID


__all__ = ["JsonlFormatter", "PlainFormatter", "configure_logging", "current_run_id"]
