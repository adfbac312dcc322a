"""Per-file ingestion: parse, classify, extract and write in one transaction."""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from storage.backup import Snapshot, create_snapshot
from storage.errors import IngestError
from storage.locking import StoreLock
from storage.schema import connect, ensure_schema, store_exists, transaction

from .classify import classify
from .links import LINK_CAP, extract_links, serialize_links
from .records import (
    DEFAULT_CONTENT_TYPE,
    DEFAULT_STATUS,
    MalformedRecord,
    extract_title,
    parse_line,
)
from .writer import BatchWriter, IngestTotals, TaskDefaults

LOGGER = logging.getLogger(__name__)

_TASK_ID_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class IngestOptions:
    link_cap: int = LINK_CAP
    default_status: int = DEFAULT_STATUS
    default_content_type: str = DEFAULT_CONTENT_TYPE
    skip_backup: bool = False
    backup_dir: Optional[Path] = None
    lock_timeout: float = 0.0
    task_defaults: TaskDefaults = TaskDefaults()


@dataclass(frozen=True)
class IngestResult:
    task_id: str
    source: Path
    written: int
    skipped: int
    total_size: int
    js_dependent: int
    duration_ms: int
    snapshot: Optional[Snapshot] = None

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "source": str(self.source),
            "written": self.written,
            "skipped": self.skipped,
            "total_size": self.total_size,
            "js_dependent": self.js_dependent,
            "duration_ms": self.duration_ms,
            "snapshot": str(self.snapshot.path) if self.snapshot else None,
        }


def default_task_id(input_path: Path | str, moment: datetime | None = None) -> str:
    """``<UTC timestamp>_<input file stem>``, restricted to safe characters."""

    stamp = (moment or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    stem = _TASK_ID_UNSAFE.sub("_", Path(input_path).stem).strip("_") or "input"
    return f"{stamp}_{stem}"


def ingest_lines(
    connection: sqlite3.Connection,
    lines,
    task_id: str,
    options: IngestOptions,
    *,
    source: str = "<lines>",
) -> IngestTotals:
    """Stream ``lines`` into the store through the caller's open transaction."""

    writer = BatchWriter(connection, task_id, task_defaults=options.task_defaults)
    totals = IngestTotals()
    started_at = int(time.time())
    started = time.monotonic()
    for line_no, line in enumerate(lines, start=1):
        try:
            record = parse_line(
                line,
                default_status=options.default_status,
                default_content_type=options.default_content_type,
            )
        except MalformedRecord as exc:
            LOGGER.debug("Skipping %s:%d: %s", source, line_no, exc)
            totals = totals.with_skip()
            continue
        if record is None:
            continue
        classification = classify(record.html)
        links_json = serialize_links(extract_links(record.html, options.link_cap))
        totals = writer.write_page(record, classification, links_json, totals)

    duration_ms = int((time.monotonic() - started) * 1000)
    finished_at = int(time.time())
    writer.write_crawl_result(totals, started_at=started_at, finished_at=finished_at)
    writer.write_report(totals, duration_ms=duration_ms, finished_at=finished_at)
    return totals


def ingest_file(
    input_path: Path | str,
    db_path: Path | str,
    *,
    task_id: str | None = None,
    options: IngestOptions | None = None,
) -> IngestResult:
    """Ingest one JSONL file as a single all-or-nothing transaction.

    Malformed lines are skipped and counted. Unless ``skip_backup`` is set an
    existing store is snapshotted first and a failed snapshot aborts the run.
    """

    opts = options or IngestOptions()
    source = Path(input_path)
    store = Path(db_path)
    if not source.is_file():
        raise FileNotFoundError(f"input file not found: {source}")
    resolved_task_id = task_id or default_task_id(source)

    with StoreLock(store, timeout=opts.lock_timeout):
        snapshot: Optional[Snapshot] = None
        if not opts.skip_backup and store_exists(store):
            snapshot = create_snapshot(store, opts.backup_dir or store.parent / "backups")

        store.parent.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()
        connection = connect(store)
        try:
            ensure_schema(connection)
            with transaction(connection), source.open("r", encoding="utf-8", errors="replace") as handle:
                totals = ingest_lines(connection, handle, resolved_task_id, opts, source=str(source))
        except sqlite3.Error as exc:
            LOGGER.error(
                "Ingestion of %s rolled back: %s",
                source,
                exc,
                extra={"event": "ingest.rolled_back", "meta": {"task_id": resolved_task_id}},
            )
            raise IngestError(f"ingestion of {source} rolled back: {exc}") from exc
        finally:
            connection.close()

    duration_ms = int((time.monotonic() - started) * 1000)
    if totals.skipped:
        LOGGER.warning("Skipped %d malformed line(s) in %s", totals.skipped, source)
    result = IngestResult(
        task_id=resolved_task_id,
        source=source,
        written=totals.written,
        skipped=totals.skipped,
        total_size=totals.total_size,
        js_dependent=totals.js_dependent,
        duration_ms=duration_ms,
        snapshot=snapshot,
    )
    LOGGER.info(
        "Ingested %d page(s) from %s into task %s",
        result.written,
        source,
        resolved_task_id,
        extra={"event": "ingest.completed", "meta": result.to_dict()},
    )
    return result


def refresh_pages(connection: sqlite3.Connection, *, link_cap: int = LINK_CAP) -> int:
    """Recompute classification, links and missing titles from stored markup.

    Runs inside the caller's transaction and returns the number of rows whose
    stored values changed.
    """

    changed = 0
    page_ids = [row[0] for row in connection.execute("SELECT id FROM crawled_pages WHERE html IS NOT NULL ORDER BY id")]
    for page_id in page_ids:
        row = connection.execute(
            """
            SELECT id, html, title, is_javascript_dependent, javascript_dependency_reasons, extracted_links
            FROM crawled_pages WHERE id = ?
            """,
            (page_id,),
        ).fetchone()
        classification = classify(row["html"])
        links_json = serialize_links(extract_links(row["html"], link_cap))
        title = row["title"] or extract_title(row["html"])
        flag = 1 if classification.is_javascript_dependent else 0
        current = (
            row["is_javascript_dependent"],
            row["javascript_dependency_reasons"],
            row["extracted_links"],
            row["title"],
        )
        if current == (flag, classification.reasons_text, links_json, title):
            continue
        connection.execute(
            """
            UPDATE crawled_pages
            SET is_javascript_dependent = ?, javascript_dependency_reasons = ?, extracted_links = ?, title = ?
            WHERE id = ?
            """,
            (flag, classification.reasons_text, links_json, title, row["id"]),
        )
        changed += 1
    return changed


__all__ = [
    "IngestOptions",
    "IngestResult",
    "default_task_id",
    "ingest_file",
    "ingest_lines",
    "refresh_pages",
]
