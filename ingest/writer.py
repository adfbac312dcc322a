"""Parameterized upserts of classified pages and their crawl aggregates."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Optional

from .classify import Classification
from .records import PageRecord

LOGGER = logging.getLogger(__name__)

CRAWL_STATUS_COMPLETED = "completed"

UPSERT_PAGE_SQL = """
INSERT INTO crawled_pages (
    task_id, url, domain, status, content_type, title, size, html, fetched_at,
    is_javascript_dependent, javascript_dependency_reasons, extracted_links
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(url) DO UPDATE SET
    task_id = excluded.task_id,
    domain = excluded.domain,
    status = excluded.status,
    content_type = excluded.content_type,
    title = excluded.title,
    size = excluded.size,
    html = excluded.html,
    fetched_at = excluded.fetched_at,
    is_javascript_dependent = excluded.is_javascript_dependent,
    javascript_dependency_reasons = excluded.javascript_dependency_reasons,
    extracted_links = excluded.extracted_links
"""

INSERT_PAGE_IF_ABSENT_SQL = """
INSERT OR IGNORE INTO crawled_pages (
    task_id, url, domain, status, content_type, title, size, html, fetched_at,
    is_javascript_dependent, javascript_dependency_reasons, extracted_links
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

UPSERT_CRAWL_RESULT_SQL = """
INSERT INTO crawl_results (
    task_id, domain, status, pages_count, pages, total_size, start_time, end_time
) VALUES (?, ?, ?, ?, '[]', ?, ?, ?)
ON CONFLICT(task_id) DO UPDATE SET
    domain = excluded.domain,
    status = excluded.status,
    pages_count = excluded.pages_count,
    total_size = excluded.total_size,
    start_time = excluded.start_time,
    end_time = excluded.end_time
"""


REFRESH_CRAWL_RESULT_SQL = """
UPDATE crawl_results SET
    pages_count = (SELECT COUNT(*) FROM crawled_pages WHERE task_id = ?),
    total_size = (SELECT COALESCE(SUM(size), 0) FROM crawled_pages WHERE task_id = ?)
WHERE task_id = ?
"""


@dataclass(frozen=True)
class IngestTotals:
    """Running totals for one ingestion run, threaded through each step."""

    written: int = 0
    skipped: int = 0
    total_size: int = 0
    js_dependent: int = 0
    domains: Counter = field(default_factory=Counter)

    def with_page(self, record: PageRecord, classification: Classification) -> "IngestTotals":
        domains = Counter(self.domains)
        domains[record.domain] += 1
        return replace(
            self,
            written=self.written + 1,
            total_size=self.total_size + record.size,
            js_dependent=self.js_dependent + int(classification.is_javascript_dependent),
            domains=domains,
        )

    def with_skip(self) -> "IngestTotals":
        return replace(self, skipped=self.skipped + 1)

    @property
    def primary_domain(self) -> Optional[str]:
        if not self.domains:
            return None
        return self.domains.most_common(1)[0][0]


def page_params(
    task_id: str,
    record: PageRecord,
    classification: Classification,
    links_json: str,
) -> tuple:
    return (
        task_id,
        record.url,
        record.domain,
        record.status,
        record.content_type,
        record.title,
        record.size,
        record.html,
        record.fetched_at,
        1 if classification.is_javascript_dependent else 0,
        classification.reasons_text,
        links_json,
    )


@dataclass(frozen=True)
class TaskDefaults:
    max_depth: int = 0
    follow_subdomains: bool = False
    max_links: Optional[int] = None
    incentive_amount: int = 0


class BatchWriter:
    """Writes one task's pages through an open transaction on ``connection``.

    The caller owns the transaction; nothing here commits or rolls back.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        task_id: str,
        *,
        task_defaults: TaskDefaults | None = None,
    ) -> None:
        self.connection = connection
        self.task_id = task_id
        self.task_defaults = task_defaults or TaskDefaults()
        self._task_ready = False
        self._displaced: set[str] = set()

    def ensure_task(self, url: str) -> bool:
        """Register the task if unknown; an existing task row is left as is."""

        if self._task_ready:
            return False
        defaults = self.task_defaults
        cursor = self.connection.execute(
            """
            INSERT OR IGNORE INTO tasks (
                id, url, max_depth, follow_subdomains, max_links, created_at, assigned_at, incentive_amount
            ) VALUES (?, ?, ?, ?, ?, ?, NULL, ?)
            """,
            (
                self.task_id,
                url,
                defaults.max_depth,
                1 if defaults.follow_subdomains else 0,
                defaults.max_links,
                int(time.time()),
                defaults.incentive_amount,
            ),
        )
        self._task_ready = True
        created = cursor.rowcount == 1
        if created:
            LOGGER.debug("Registered task %s for %s", self.task_id, url)
        return created

    def write_page(
        self,
        record: PageRecord,
        classification: Classification,
        links_json: str,
        totals: IngestTotals,
    ) -> IngestTotals:
        self.ensure_task(record.url)
        row = self.connection.execute("SELECT task_id FROM crawled_pages WHERE url = ?", (record.url,)).fetchone()
        if row is not None and row[0] != self.task_id:
            self._displaced.add(row[0])
        self.connection.execute(
            UPSERT_PAGE_SQL,
            page_params(self.task_id, record, classification, links_json),
        )
        return totals.with_page(record, classification)

    def write_crawl_result(self, totals: IngestTotals, *, started_at: int, finished_at: int) -> None:
        """Upsert the task's aggregate from the rows it owns after this run.

        Counting stored rows rather than this run's totals keeps the aggregate
        right when the same file is ingested twice under one task id. The
        legacy ``pages`` payload of an existing row is preserved.
        Tasks whose pages moved to this one get their counts recomputed too.
        """

        if not self._task_ready:
            return
        row = self.connection.execute(
            "SELECT COUNT(*), COALESCE(SUM(size), 0) FROM crawled_pages WHERE task_id = ?",
            (self.task_id,),
        ).fetchone()
        pages_count, total_size = int(row[0]), int(row[1])
        self.connection.execute(
            UPSERT_CRAWL_RESULT_SQL,
            (
                self.task_id,
                totals.primary_domain or "",
                CRAWL_STATUS_COMPLETED,
                pages_count,
                total_size,
                started_at,
                finished_at,
            ),
        )
        for task_id in sorted(self._displaced):
            self.connection.execute(REFRESH_CRAWL_RESULT_SQL, (task_id, task_id, task_id))
        if self._displaced:
            LOGGER.debug("Recounted %d displaced task(s)", len(self._displaced))

    def write_report(self, totals: IngestTotals, *, duration_ms: int, finished_at: int) -> None:
        if not self._task_ready:
            return
        self.connection.execute(
            """
            INSERT INTO crawl_reports (
                task_id, pages_crawled, total_size_bytes, crawl_duration_ms, transaction_signature, timestamp
            ) VALUES (?, ?, ?, ?, NULL, ?)
            """,
            (self.task_id, totals.written, totals.total_size, max(0, duration_ms), finished_at),
        )


__all__ = [
    "BatchWriter",
    "CRAWL_STATUS_COMPLETED",
    "INSERT_PAGE_IF_ABSENT_SQL",
    "IngestTotals",
    "REFRESH_CRAWL_RESULT_SQL",
    "TaskDefaults",
    "UPSERT_PAGE_SQL",
    "page_params",
]
