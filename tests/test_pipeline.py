from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone

import pytest

from ingest.pipeline import IngestOptions, default_task_id, ingest_file
from ingest.writer import BatchWriter, TaskDefaults
from storage.errors import IngestError

EXAMPLE_LINE = {
    "url": "https://a.test/",
    "html": '<html><body><a href="/x">x</a><a href="#top">top</a><script src="bundle.js"></script></body></html>',
}


def test_end_to_end_example(store_path, jsonl_file, no_backup, query):
    source = jsonl_file([EXAMPLE_LINE])

    result = ingest_file(source, store_path, task_id="t1", options=no_backup)

    assert (result.written, result.skipped) == (1, 0)
    assert result.js_dependent == 1
    rows = query(store_path, "SELECT * FROM crawled_pages")
    assert len(rows) == 1
    page = rows[0]
    assert page["domain"] == "a.test"
    assert page["is_javascript_dependent"] == 1
    assert "bundle" in page["javascript_dependency_reasons"]
    assert json.loads(page["extracted_links"]) == ["/x"]
    assert page["task_id"] == "t1"


def test_reingesting_a_file_does_not_duplicate_pages(store_path, jsonl_file, no_backup, query):
    source = jsonl_file(
        [
            EXAMPLE_LINE,
            {"url": "https://a.test/2", "html": "<p>two</p>"},
            {"url": "https://b.test/", "body": "<p>three</p>", "status_code": 301},
        ]
    )

    ingest_file(source, store_path, task_id="first", options=no_backup)
    ingest_file(source, store_path, task_id="first", options=no_backup)
    ingest_file(source, store_path, task_id="second", options=no_backup)

    assert query(store_path, "SELECT COUNT(*) FROM crawled_pages")[0][0] == 3
    assert {row[0] for row in query(store_path, "SELECT DISTINCT task_id FROM crawled_pages")} == {"second"}
    first = query(store_path, "SELECT pages_count, total_size, status FROM crawl_results WHERE task_id = 'first'")[0]
    assert (first["pages_count"], first["total_size"]) == (0, 0)
    assert first["status"] == "completed"
    assert query(store_path, "SELECT COUNT(*) FROM crawl_reports")[0][0] == 3


def test_malformed_lines_are_skipped_and_counted(store_path, jsonl_file, no_backup, query, caplog):
    source = jsonl_file(
        [
            EXAMPLE_LINE,
            "not json at all",
            {"url": "https://a.test/no-markup"},
            "",
            {"html": "<p>no url</p>"},
        ]
    )

    with caplog.at_level(logging.WARNING, logger="ingest.pipeline"):
        result = ingest_file(source, store_path, task_id="t1", options=no_backup)

    assert (result.written, result.skipped) == (1, 3)
    assert query(store_path, "SELECT COUNT(*) FROM crawled_pages")[0][0] == 1
    assert any("Skipped 3 malformed" in message for message in caplog.messages)


@pytest.mark.parametrize(
    "bad",
    [
        {"url": "https://a.test/big", "html": "x", "size": 10**20},
        {"url": "https://a.test/status", "html": "x", "status_code": -(2**64)},
        {"url": "https://a.test/s", "html": "<p>\ud800</p>"},
        {"url": "https://a.test/\udfff", "html": "<p>x</p>"},
        {"url": "https://a.test/t", "html": "<p>x</p>", "title": "\ud800"},
    ],
)
def test_unstorable_values_skip_only_their_line(store_path, jsonl_file, no_backup, query, bad):
    source = jsonl_file([EXAMPLE_LINE, json.dumps(bad)])

    result = ingest_file(source, store_path, task_id="t1", options=no_backup)

    assert (result.written, result.skipped) == (1, 1)
    rows = query(store_path, "SELECT url FROM crawled_pages")
    assert [row["url"] for row in rows] == [EXAMPLE_LINE["url"]]


def test_failed_write_rolls_back_the_whole_file(store_path, jsonl_file, no_backup, query, monkeypatch):
    source = jsonl_file([EXAMPLE_LINE, {"url": "https://a.test/2", "html": "<p>two</p>"}])

    def explode(self, totals, *, started_at, finished_at):
        raise sqlite3.OperationalError("disk full")

    monkeypatch.setattr(BatchWriter, "write_crawl_result", explode)

    with pytest.raises(IngestError):
        ingest_file(source, store_path, task_id="t1", options=no_backup)

    assert query(store_path, "SELECT COUNT(*) FROM crawled_pages")[0][0] == 0
    assert query(store_path, "SELECT COUNT(*) FROM tasks")[0][0] == 0


def test_tasks_are_registered_once_and_never_mutated(store_path, jsonl_file, query, execute):
    options = IngestOptions(skip_backup=True, task_defaults=TaskDefaults(max_depth=2, incentive_amount=5))
    ingest_file(jsonl_file([EXAMPLE_LINE]), store_path, task_id="auto", options=options)

    task = query(store_path, "SELECT * FROM tasks WHERE id = 'auto'")[0]
    assert task["url"] == "https://a.test/"
    assert (task["max_depth"], task["incentive_amount"]) == (2, 5)

    execute(
        store_path,
        "INSERT INTO tasks (id, url, max_depth, follow_subdomains, max_links, created_at, incentive_amount)"
        " VALUES ('seeded', 'https://seed.test/', 7, 1, 50, 0, 100)",
    )
    ingest_file(jsonl_file([EXAMPLE_LINE], name="again.jsonl"), store_path, task_id="seeded", options=options)

    seeded = query(store_path, "SELECT * FROM tasks WHERE id = 'seeded'")[0]
    assert (seeded["url"], seeded["max_depth"], seeded["incentive_amount"]) == ("https://seed.test/", 7, 100)


def test_existing_store_is_snapshotted_before_ingesting(initialized_store, jsonl_file, tmp_path):
    backups = tmp_path / "snapshots"
    options = IngestOptions(backup_dir=backups)

    result = ingest_file(jsonl_file([EXAMPLE_LINE]), initialized_store, task_id="t1", options=options)

    assert result.snapshot is not None
    assert result.snapshot.path.parent == backups
    assert result.snapshot.path.exists()


def test_default_task_id_uses_timestamp_and_file_stem():
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    assert default_task_id("/data/crawl output.jsonl", moment) == "20240102T030405Z_crawl_output"


def test_missing_input_file(store_path, tmp_path):
    with pytest.raises(FileNotFoundError):
        ingest_file(tmp_path / "absent.jsonl", store_path)
    assert not store_path.exists()
