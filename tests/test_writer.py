from __future__ import annotations

from contextlib import closing

from ingest.classify import classify
from ingest.records import parse_record
from ingest.writer import BatchWriter, IngestTotals
from storage.schema import connect, transaction


def test_totals_are_threaded_not_shared():
    record = parse_record({"url": "https://a.test/", "html": '<script src="bundle.js"></script>'})
    start = IngestTotals()

    after = start.with_page(record, classify(record.html)).with_skip()

    assert (start.written, start.skipped, start.total_size) == (0, 0, 0)
    assert (after.written, after.skipped, after.js_dependent) == (1, 1, 1)
    assert after.total_size == record.size
    assert after.primary_domain == "a.test"
    assert start.primary_domain is None


def test_run_without_pages_writes_no_aggregate(initialized_store, query):
    with closing(connect(initialized_store)) as connection, transaction(connection):
        writer = BatchWriter(connection, "empty-run")
        writer.write_crawl_result(IngestTotals(), started_at=1, finished_at=2)
        writer.write_report(IngestTotals(), duration_ms=5, finished_at=2)

    assert query(initialized_store, "SELECT COUNT(*) FROM crawl_results")[0][0] == 0
    assert query(initialized_store, "SELECT COUNT(*) FROM tasks")[0][0] == 0


def test_aggregate_sums_stored_rows(initialized_store, query):
    records = [
        parse_record({"url": "https://a.test/1", "html": "12345"}),
        parse_record({"url": "https://a.test/2", "html": "123", "size": 10}),
    ]
    with closing(connect(initialized_store)) as connection, transaction(connection):
        writer = BatchWriter(connection, "sum")
        totals = IngestTotals()
        for record in records:
            totals = writer.write_page(record, classify(record.html), "[]", totals)
        writer.write_crawl_result(totals, started_at=100, finished_at=160)
        writer.write_report(totals, duration_ms=60_000, finished_at=160)

    result = query(initialized_store, "SELECT * FROM crawl_results WHERE task_id = 'sum'")[0]
    assert (result["domain"], result["pages_count"], result["total_size"]) == ("a.test", 2, 15)
    assert result["pages"] == "[]"
    report = query(initialized_store, "SELECT * FROM crawl_reports WHERE task_id = 'sum'")[0]
    assert (report["pages_crawled"], report["total_size_bytes"]) == (2, 15)


def _ingest(db_path, task_id, records):
    with closing(connect(db_path)) as connection, transaction(connection):
        writer = BatchWriter(connection, task_id)
        totals = IngestTotals()
        for record in records:
            totals = writer.write_page(record, classify(record.html), "[]", totals)
        writer.write_crawl_result(totals, started_at=1, finished_at=2)


def test_moving_a_page_recounts_the_task_it_left(initialized_store, query):
    kept = parse_record({"url": "https://a.test/kept", "html": "1234"})
    moved = parse_record({"url": "https://a.test/moved", "html": "123456"})
    _ingest(initialized_store, "old", [kept, moved])

    _ingest(initialized_store, "new", [moved])

    rows = query(initialized_store, "SELECT task_id, pages_count, total_size FROM crawl_results ORDER BY task_id")
    assert [tuple(row) for row in rows] == [("new", 1, 6), ("old", 1, 4)]
