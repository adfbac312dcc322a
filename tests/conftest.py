"""Ensure the project root is importable during tests and share store fixtures."""

from __future__ import annotations

import json
import sqlite3
import sys
from contextlib import closing
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import logging_setup  # noqa: E402
from ingest.pipeline import IngestOptions, ingest_file  # noqa: E402
from storage.lifecycle import LifecycleManager  # noqa: E402


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch):
    # CLI entry points must not replace pytest's handlers or write log files.
    monkeypatch.setattr(logging_setup, "_LOG_CONFIGURED", True)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "crawl.sqlite3"


@pytest.fixture
def initialized_store(store_path: Path) -> Path:
    LifecycleManager(store_path).init()
    return store_path


@pytest.fixture
def no_backup() -> IngestOptions:
    return IngestOptions(skip_backup=True)


@pytest.fixture
def jsonl_file(tmp_path: Path):
    def _write(records, name: str = "pages.jsonl") -> Path:
        path = tmp_path / name
        lines = [item if isinstance(item, str) else json.dumps(item) for item in records]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def query():
    def _query(db_path: Path, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with closing(sqlite3.connect(db_path)) as conn:
            conn.row_factory = sqlite3.Row
            return conn.execute(sql, params).fetchall()

    return _query


@pytest.fixture
def execute():
    def _execute(db_path: Path, sql: str, params: tuple = ()) -> None:
        with closing(sqlite3.connect(db_path)) as conn:
            conn.execute(sql, params)
            conn.commit()

    return _execute


@pytest.fixture
def populated_store(initialized_store: Path, jsonl_file) -> Path:
    pages = [
        {
            "url": "https://a.test/1",
            "html": '<title>One</title><a href="/shared">s</a><a href="/one">o</a><script src="bundle.js"></script>',
        },
        {"url": "https://a.test/2", "html": '<a href="/shared">s</a>'},
        {"url": "https://b.test/", "html": "<p>nothing to see</p>", "status": 404},
    ]
    ingest_file(
        jsonl_file(pages, name="populate.jsonl"),
        initialized_store,
        task_id="task-1",
        options=IngestOptions(skip_backup=True),
    )
    return initialized_store


@pytest.fixture
def corrupt_index():
    """Point an index at a different column so its entries no longer match the table."""

    def _corrupt(db_path: Path) -> None:
        with closing(sqlite3.connect(db_path)) as conn:
            conn.execute("PRAGMA writable_schema=ON")
            conn.execute(
                "UPDATE sqlite_master SET sql = 'CREATE INDEX idx_crawled_pages_domain ON crawled_pages(url)'"
                " WHERE name = 'idx_crawled_pages_domain'"
            )
            conn.commit()
            conn.execute("PRAGMA writable_schema=OFF")

    return _corrupt
