"""SQLite schema management for the crawl store."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

LOGGER = logging.getLogger(__name__)

CORE_TABLES = ("tasks", "crawl_results", "crawl_reports", "crawled_pages")
VIEWS = ("v_crawled_pages", "v_js_dependency")

TABLES_SQL = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    max_depth INTEGER NOT NULL,
    follow_subdomains INTEGER NOT NULL,
    max_links INTEGER,
    created_at INTEGER NOT NULL,
    assigned_at INTEGER,
    incentive_amount INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS crawl_results (
    task_id TEXT PRIMARY KEY,
    domain TEXT NOT NULL,
    status TEXT NOT NULL,
    pages_count INTEGER NOT NULL,
    pages TEXT NOT NULL,
    total_size INTEGER NOT NULL,
    start_time INTEGER NOT NULL,
    end_time INTEGER,
    transaction_hash TEXT,
    incentives_received INTEGER,
    FOREIGN KEY (task_id) REFERENCES tasks(id)
);

CREATE TABLE IF NOT EXISTS crawl_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    pages_crawled INTEGER NOT NULL,
    total_size_bytes INTEGER NOT NULL,
    crawl_duration_ms INTEGER NOT NULL,
    transaction_signature TEXT,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (task_id) REFERENCES tasks(id)
);

CREATE TABLE IF NOT EXISTS crawled_pages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    url TEXT NOT NULL,
    domain TEXT NOT NULL,
    status INTEGER,
    content_type TEXT,
    title TEXT,
    size INTEGER NOT NULL,
    html TEXT,
    fetched_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    is_javascript_dependent INTEGER DEFAULT 0,
    javascript_dependency_reasons TEXT,
    extracted_links TEXT,
    FOREIGN KEY (task_id) REFERENCES tasks(id),
    UNIQUE(url)
);

CREATE INDEX IF NOT EXISTS idx_crawled_pages_task_id ON crawled_pages(task_id);
CREATE INDEX IF NOT EXISTS idx_crawled_pages_domain ON crawled_pages(domain);
"""

VIEWS_SQL = """
DROP VIEW IF EXISTS v_crawled_pages;
DROP VIEW IF EXISTS v_js_dependency;

CREATE VIEW v_crawled_pages AS
SELECT
    cp.*,
    cr.status AS crawl_status,
    CASE WHEN json_valid(cp.extracted_links)
         THEN json_array_length(cp.extracted_links) ELSE 0 END AS link_count
FROM crawled_pages cp
LEFT JOIN crawl_results cr ON cp.task_id = cr.task_id;

CREATE VIEW v_js_dependency AS
SELECT
    domain,
    COUNT(*) AS total_pages,
    SUM(CASE WHEN is_javascript_dependent = 1 THEN 1 ELSE 0 END) AS js_dependent_pages,
    ROUND(100.0 * SUM(CASE WHEN is_javascript_dependent = 1 THEN 1 ELSE 0 END) / COUNT(*), 2)
        AS js_dependency_percentage,
    GROUP_CONCAT(DISTINCT javascript_dependency_reasons) AS dependency_reasons
FROM crawled_pages
GROUP BY domain
ORDER BY js_dependency_percentage DESC;
"""


def connect(db_path: Path | str, *, timeout: float = 5.0) -> sqlite3.Connection:
    """Return a writer connection in autocommit mode with foreign keys on.

    The store stays in rollback-journal mode so that between operations the
    whole database lives in one file, which backup and repair copy or replace.
    """

    connection = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=DELETE;")
    connection.execute("PRAGMA foreign_keys=ON;")
    return connection


def connect_readonly(db_path: Path | str) -> sqlite3.Connection:
    """Open ``db_path`` so that no statement can modify it."""

    uri = Path(db_path).resolve().as_uri() + "?mode=ro"
    connection = sqlite3.connect(uri, uri=True, isolation_level=None)
    connection.row_factory = sqlite3.Row
    return connection


@contextmanager
def transaction(connection: sqlite3.Connection, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
    """Run the block inside one explicit transaction, rolling back on error."""

    connection.execute(f"BEGIN {mode}")
    try:
        yield connection
    except BaseException:
        if connection.in_transaction:
            connection.rollback()
        raise
    else:
        connection.commit()


def _run_script(connection: sqlite3.Connection, script: str) -> None:
    try:
        connection.executescript(f"BEGIN IMMEDIATE;\n{script}\nCOMMIT;")
    except sqlite3.Error:
        if connection.in_transaction:
            connection.rollback()
        raise


def store_exists(db_path: Path | str) -> bool:
    path = Path(db_path)
    return path.is_file() and path.stat().st_size > 0


def ensure_schema(connection: sqlite3.Connection) -> None:
    """Create missing tables and indexes, then recreate the analysis views."""

    LOGGER.debug("Ensuring crawl store schema")
    _run_script(connection, TABLES_SQL + VIEWS_SQL)


def reset_schema(connection: sqlite3.Connection) -> None:
    """Drop the views and core tables and recreate them in one transaction."""

    statements = [f"DROP VIEW IF EXISTS {view};" for view in VIEWS]
    statements += [f"DROP TABLE IF EXISTS {table};" for table in reversed(CORE_TABLES)]
    connection.execute("PRAGMA foreign_keys=OFF;")
    try:
        _run_script(connection, "\n".join(statements) + TABLES_SQL + VIEWS_SQL)
    finally:
        connection.execute("PRAGMA foreign_keys=ON;")


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def table_exists(connection: sqlite3.Connection, table: str) -> bool:
    row = connection.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?",
        (table,),
    ).fetchone()
    return row is not None


def view_exists(connection: sqlite3.Connection, view: str) -> bool:
    row = connection.execute(
        "SELECT 1 FROM sqlite_master WHERE type='view' AND name=?",
        (view,),
    ).fetchone()
    return row is not None


def user_tables(connection: sqlite3.Connection) -> list[str]:
    """Names of every non-internal table, in creation order."""

    rows = connection.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY rowid"
    ).fetchall()
    return [row[0] for row in rows]


def table_columns(connection: sqlite3.Connection, table: str) -> list[str]:
    return [row[1] for row in connection.execute(f"PRAGMA table_info({quote_identifier(table)})")]


def table_counts(connection: sqlite3.Connection) -> dict[str, int]:
    return {
        table: int(connection.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()[0])
        for table in user_tables(connection)
    }


__all__ = [
    "CORE_TABLES",
    "VIEWS",
    "connect",
    "connect_readonly",
    "ensure_schema",
    "quote_identifier",
    "reset_schema",
    "store_exists",
    "table_columns",
    "table_counts",
    "table_exists",
    "transaction",
    "user_tables",
    "view_exists",
]
