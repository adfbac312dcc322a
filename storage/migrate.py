"""Convert legacy crawl results with embedded page arrays into page rows."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass

from ingest.classify import classify
from ingest.links import LINK_CAP, extract_links, serialize_links
from ingest.records import MalformedRecord, parse_record
from ingest.writer import INSERT_PAGE_IF_ABSENT_SQL, page_params

from .schema import table_exists

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationState:
    """Legacy-derived page count against rows already in ``crawled_pages``."""

    legacy_pages: int
    normalized_pages: int

    @property
    def needs_migration(self) -> bool:
        return self.normalized_pages < self.legacy_pages


@dataclass(frozen=True)
class MigrationOutcome:
    migrated: int
    skipped: int
    orphaned_results: int


def migration_state(connection: sqlite3.Connection) -> MigrationState:
    legacy = 0
    if table_exists(connection, "crawl_results"):
        legacy = int(
            connection.execute(
                """
                SELECT COALESCE(SUM(json_array_length(pages)), 0)
                FROM crawl_results
                WHERE json_valid(pages) AND json_type(pages) = 'array'
                """
            ).fetchone()[0]
        )
    normalized = 0
    if table_exists(connection, "crawled_pages"):
        normalized = int(connection.execute("SELECT COUNT(*) FROM crawled_pages").fetchone()[0])
    return MigrationState(legacy_pages=legacy, normalized_pages=normalized)


def migrate_legacy_pages(connection: sqlite3.Connection, *, link_cap: int = LINK_CAP) -> MigrationOutcome:
    """Insert every embedded legacy page that has no row yet.

    Runs inside the caller's transaction. Existing page rows win over legacy
    copies of the same URL. Results whose task row is missing are left alone
    so the foreign key on ``crawled_pages.task_id`` keeps holding.
    """

    migrated = 0
    skipped = 0
    orphaned = int(
        connection.execute(
            "SELECT COUNT(*) FROM crawl_results cr LEFT JOIN tasks t ON t.id = cr.task_id WHERE t.id IS NULL"
        ).fetchone()[0]
    )
    if orphaned:
        LOGGER.warning("%d crawl result(s) reference unknown tasks and were not migrated", orphaned)

    task_ids = [
        row[0]
        for row in connection.execute(
            "SELECT cr.task_id FROM crawl_results cr JOIN tasks t ON t.id = cr.task_id ORDER BY cr.rowid"
        )
    ]
    for task_id in task_ids:
        row = connection.execute(
            "SELECT domain, pages FROM crawl_results WHERE task_id = ?",
            (task_id,),
        ).fetchone()
        try:
            pages = json.loads(row["pages"] or "[]")
        except (TypeError, json.JSONDecodeError):
            LOGGER.warning("crawl result %s has an unreadable pages payload", task_id)
            continue
        if not isinstance(pages, list):
            continue
        for item in pages:
            try:
                record = parse_record(item, require_markup=False, fallback_domain=row["domain"])
            except MalformedRecord as exc:
                LOGGER.debug("Skipping legacy page of %s: %s", task_id, exc)
                skipped += 1
                continue
            classification = classify(record.html)
            links_json = serialize_links(extract_links(record.html, link_cap))
            cursor = connection.execute(
                INSERT_PAGE_IF_ABSENT_SQL,
                page_params(task_id, record, classification, links_json),
            )
            migrated += cursor.rowcount if cursor.rowcount > 0 else 0
    return MigrationOutcome(migrated=migrated, skipped=skipped, orphaned_results=orphaned)


__all__ = ["MigrationOutcome", "MigrationState", "migrate_legacy_pages", "migration_state"]
