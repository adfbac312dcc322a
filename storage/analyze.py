"""Read-only analysis report over a crawl store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from .errors import StoreError, StoreMissingError
from .integrity import check_connection
from .schema import connect_readonly, store_exists, table_counts, table_exists, view_exists

LOGGER = logging.getLogger(__name__)

_LINK_COUNT = "CASE WHEN json_valid(extracted_links) THEN json_array_length(extracted_links) ELSE 0 END"

JS_DEPENDENCY_SQL = """
SELECT
    domain,
    COUNT(*) AS total_pages,
    SUM(CASE WHEN is_javascript_dependent = 1 THEN 1 ELSE 0 END) AS js_dependent_pages,
    ROUND(100.0 * SUM(CASE WHEN is_javascript_dependent = 1 THEN 1 ELSE 0 END) / COUNT(*), 2)
        AS js_dependency_percentage,
    GROUP_CONCAT(DISTINCT javascript_dependency_reasons) AS dependency_reasons
FROM crawled_pages
GROUP BY domain
ORDER BY js_dependency_percentage DESC
"""

DOMAIN_STATS_SQL = f"""
SELECT
    domain,
    COUNT(*) AS pages,
    ROUND(AVG(size) / 1024.0, 2) AS avg_size_kb,
    ROUND(MAX(size) / 1024.0, 2) AS max_size_kb,
    ROUND(MIN(size) / 1024.0, 2) AS min_size_kb,
    SUM(size) AS total_size_bytes,
    ROUND(SUM(size) / 1048576.0, 2) AS total_size_mb,
    ROUND(AVG({_LINK_COUNT}), 2) AS avg_links
FROM crawled_pages
GROUP BY domain
ORDER BY pages DESC, domain
"""

TOP_PAGES_SQL = f"""
SELECT url, domain, {_LINK_COUNT} AS link_count, title
FROM crawled_pages
ORDER BY link_count DESC, url
LIMIT ?
"""

MOST_LINKED_SQL = """
SELECT je.value AS link, COUNT(*) AS incoming_links
FROM crawled_pages cp,
     json_each(CASE WHEN json_valid(cp.extracted_links) THEN cp.extracted_links ELSE '[]' END) AS je
WHERE cp.extracted_links IS NOT NULL
GROUP BY je.value
HAVING COUNT(*) > 1
ORDER BY incoming_links DESC, link
LIMIT ?
"""

CRAWL_SUMMARY_SQL = """
SELECT
    task_id, domain, status, pages_count, total_size,
    datetime(start_time, 'unixepoch') AS start_time,
    CASE WHEN end_time IS NOT NULL THEN datetime(end_time, 'unixepoch') END AS end_time,
    CASE WHEN end_time IS NOT NULL THEN end_time - start_time END AS duration_seconds
FROM crawl_results
ORDER BY crawl_results.start_time DESC
"""

CONTENT_TYPES_SQL = """
SELECT
    COALESCE(content_type, 'Unknown') AS content_type,
    COUNT(*) AS page_count,
    ROUND(100.0 * COUNT(*) / (SELECT COUNT(*) FROM crawled_pages), 2) AS percentage
FROM crawled_pages
GROUP BY content_type
ORDER BY page_count DESC
"""

STATUS_CODES_SQL = """
SELECT
    status AS http_status,
    COUNT(*) AS page_count,
    ROUND(100.0 * COUNT(*) / (SELECT COUNT(*) FROM crawled_pages), 2) AS percentage
FROM crawled_pages
GROUP BY status
ORDER BY page_count DESC
"""


def _rows(connection: sqlite3.Connection, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
    return [dict(row) for row in connection.execute(sql, params)]


def analyze_connection(connection: sqlite3.Connection, *, top_n: int = 10) -> dict[str, Any]:
    report: dict[str, Any] = {"table_counts": table_counts(connection)}
    has_pages = table_exists(connection, "crawled_pages")
    if has_pages:
        js_sql = "SELECT * FROM v_js_dependency" if view_exists(connection, "v_js_dependency") else JS_DEPENDENCY_SQL
        report["js_dependency"] = _rows(connection, js_sql)
        report["top_pages"] = _rows(connection, TOP_PAGES_SQL, (top_n,))
        report["domain_stats"] = _rows(connection, DOMAIN_STATS_SQL)
        report["most_linked"] = _rows(connection, MOST_LINKED_SQL, (top_n,))
        report["content_types"] = _rows(connection, CONTENT_TYPES_SQL)
        report["status_codes"] = _rows(connection, STATUS_CODES_SQL)
    else:
        for key in ("js_dependency", "top_pages", "domain_stats", "most_linked", "content_types", "status_codes"):
            report[key] = []
    report["crawls"] = _rows(connection, CRAWL_SUMMARY_SQL) if table_exists(connection, "crawl_results") else []
    report["integrity"] = check_connection(connection).to_dict()
    return report


def analyze_store(db_path: Path | str, *, top_n: int = 10) -> dict[str, Any]:
    """Build the report through a read-only connection; the store is never written."""

    path = Path(db_path)
    if not store_exists(path):
        raise StoreMissingError(path)
    connection = connect_readonly(path)
    try:
        report = analyze_connection(connection, top_n=top_n)
    except sqlite3.DatabaseError as exc:
        raise StoreError(f"could not analyze {path}: {exc}; run `check` and `repair`") from exc
    finally:
        connection.close()
    LOGGER.info(
        "Analyzed %s",
        path,
        extra={"event": "store.analyzed", "meta": {"table_counts": report["table_counts"]}},
    )
    return report


__all__ = ["analyze_connection", "analyze_store"]
