"""Unit tests for the JSONL logging stack."""

from __future__ import annotations

import json
import logging

import logging_setup
from logging_setup import JsonlFormatter, RunIdFilter, configure_logging, current_run_id


def _record(**extra) -> logging.LogRecord:
    fields = {
        "name": "storage.backup",
        "levelname": "INFO",
        "levelno": logging.INFO,
        "msg": "Snapshot %s written",
        "args": ("crawl.bak",),
    }
    fields.update(extra)
    return logging.makeLogRecord(fields)


def test_jsonl_formatter_emits_event_and_meta() -> None:
    record = _record(event="store.backup", meta={"sha256": "abc"})
    RunIdFilter().filter(record)

    payload = json.loads(JsonlFormatter().format(record))

    assert payload["event"] == "store.backup"
    assert payload["message"] == "Snapshot crawl.bak written"
    assert payload["level"] == "info"
    assert payload["meta"] == {"sha256": "abc"}
    assert payload["run_id"] == current_run_id()
    assert payload["logger"] == "storage.backup"


def test_jsonl_formatter_handles_unserializable_meta() -> None:
    payload = json.loads(JsonlFormatter().format(_record(meta={"path": object()})))

    assert payload["event"] == "log"
    assert "repr" in payload["meta"]


def test_configure_logging_writes_jsonl_file(tmp_path, monkeypatch) -> None:
    root = logging.getLogger()
    original_handlers, original_level = root.handlers[:], root.level
    monkeypatch.setattr(logging_setup, "_LOG_CONFIGURED", False)
    try:
        configure_logging("INFO", tmp_path)
        logging.getLogger("storage.lifecycle").info("optimize ok", extra={"event": "store.optimize"})
        for handler in root.handlers:
            handler.flush()
        lines = (tmp_path / "crawlstore.jsonl").read_text(encoding="utf-8").splitlines()
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)

    assert json.loads(lines[-1])["event"] == "store.optimize"
