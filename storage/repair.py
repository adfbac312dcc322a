"""Rebuild a damaged store into a fresh file and swap it in atomically.

Phase one exports every user table to JSONL files in a staging directory
next to the store. Phase two builds a fresh schema in a new file, reimports
the rows table by table and verifies the counts. Only when both phases
succeed is the original replaced with ``os.replace``; any failure before that
leaves the original file exactly as it was.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass
from itertools import islice
from pathlib import Path
from typing import Any, Iterator, Optional

from .errors import RepairError
from .integrity import structural_check
from .schema import (
    CORE_TABLES,
    connect,
    connect_readonly,
    ensure_schema,
    quote_identifier,
    table_columns,
    transaction,
)

LOGGER = logging.getLogger(__name__)

_BLOB_KEY = "$b64"
_INSERT_CHUNK = 500
_SIDE_SUFFIXES = ("-journal", "-wal", "-shm")


@dataclass(frozen=True)
class TableExport:
    name: str
    create_sql: Optional[str]
    columns: tuple[str, ...]
    path: Path
    rows: int


@dataclass(frozen=True)
class RepairOutcome:
    tables: dict[str, int]
    replaced: Path


def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {_BLOB_KEY: base64.b64encode(bytes(value)).decode("ascii")}
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict) and _BLOB_KEY in value:
        return base64.b64decode(value[_BLOB_KEY])
    return value


def _export_table(connection: sqlite3.Connection, name: str, create_sql: Optional[str], path: Path) -> TableExport:
    cursor = connection.execute(f"SELECT * FROM {quote_identifier(name)}")
    columns = tuple(description[0] for description in cursor.description)
    rows = 0
    with path.open("w", encoding="utf-8") as handle:
        for row in cursor:
            handle.write(json.dumps([_encode(value) for value in row], ensure_ascii=False))
            handle.write("\n")
            rows += 1
    return TableExport(name=name, create_sql=create_sql, columns=columns, path=path, rows=rows)


def export_tables(db_path: Path, staging_dir: Path) -> tuple[list[TableExport], list[str]]:
    """Phase one: dump every user table; returns exports and extra index DDL."""

    connection = connect_readonly(db_path)
    try:
        try:
            tables = connection.execute(
                """
                SELECT name, sql FROM sqlite_master
                WHERE type='table' AND name NOT LIKE 'sqlite_%'
                ORDER BY rowid
                """
            ).fetchall()
            extra_indexes = [
                row["sql"]
                for row in connection.execute(
                    "SELECT tbl_name, sql FROM sqlite_master WHERE type='index' AND sql IS NOT NULL ORDER BY rowid"
                )
                if row["tbl_name"] not in CORE_TABLES
            ]
        except sqlite3.DatabaseError as exc:
            raise RepairError(str(exc), phase="export") from exc

        exports: list[TableExport] = []
        for position, row in enumerate(tables):
            name = row["name"]
            path = staging_dir / f"{position:03d}.jsonl"
            try:
                export = _export_table(connection, name, row["sql"], path)
            except (sqlite3.DatabaseError, OSError) as exc:
                raise RepairError(str(exc), phase="export", table=name) from exc
            LOGGER.debug("Exported %d row(s) from %s", export.rows, name)
            exports.append(export)
        return exports, extra_indexes
    finally:
        connection.close()


def _read_rows(path: Path) -> Iterator[list[Any]]:
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            yield [_decode(value) for value in json.loads(line)]


def _import_table(connection: sqlite3.Connection, export: TableExport) -> None:
    target_columns = set(table_columns(connection, export.name))
    missing = [column for column in export.columns if column not in target_columns]
    if missing:
        raise RepairError(
            f"columns {', '.join(missing)} do not exist in the rebuilt schema",
            phase="import",
            table=export.name,
        )
    column_sql = ", ".join(quote_identifier(column) for column in export.columns)
    placeholders = ", ".join("?" for _ in export.columns)
    statement = f"INSERT INTO {quote_identifier(export.name)} ({column_sql}) VALUES ({placeholders})"
    rows = _read_rows(export.path)
    while True:
        chunk = list(islice(rows, _INSERT_CHUNK))
        if not chunk:
            break
        connection.executemany(statement, chunk)


def rebuild(exports: list[TableExport], extra_indexes: list[str], target: Path) -> dict[str, int]:
    """Phase two: fresh schema in ``target``, rows reimported and counted."""

    connection = connect(target)
    try:
        try:
            ensure_schema(connection)
        except sqlite3.Error as exc:
            raise RepairError(str(exc), phase="schema") from exc
        for export in exports:
            if export.name in CORE_TABLES:
                continue
            if not export.create_sql:
                raise RepairError("no table definition to rebuild from", phase="schema", table=export.name)
            try:
                connection.execute(export.create_sql)
            except sqlite3.Error as exc:
                raise RepairError(str(exc), phase="schema", table=export.name) from exc

        connection.execute("PRAGMA foreign_keys=OFF;")
        current: Optional[str] = None
        try:
            with transaction(connection):
                for export in exports:
                    current = export.name
                    _import_table(connection, export)
                    LOGGER.debug("Reimported %d row(s) into %s", export.rows, export.name)
                current = None
                for index_sql in extra_indexes:
                    connection.execute(index_sql)
        except sqlite3.Error as exc:
            raise RepairError(str(exc), phase="import", table=current) from exc
        finally:
            connection.execute("PRAGMA foreign_keys=ON;")

        counts: dict[str, int] = {}
        for export in exports:
            count = int(
                connection.execute(f"SELECT COUNT(*) FROM {quote_identifier(export.name)}").fetchone()[0]
            )
            if count != export.rows:
                raise RepairError(
                    f"expected {export.rows} row(s), found {count}",
                    phase="verify",
                    table=export.name,
                )
            counts[export.name] = count
        healthy, messages = structural_check(connection)
        if not healthy:
            raise RepairError("; ".join(messages[:5]), phase="verify")
        return counts
    finally:
        connection.close()


def _discard(path: Path) -> None:
    for candidate in (path, *(path.with_name(path.name + suffix) for suffix in _SIDE_SUFFIXES)):
        candidate.unlink(missing_ok=True)


def repair_store(db_path: Path | str) -> RepairOutcome:
    """Export, rebuild and atomically replace ``db_path``.

    The caller holds the store lock and has taken a verified snapshot.
    """

    original = Path(db_path)
    rebuilt = original.with_name(original.name + ".rebuild")
    _discard(rebuilt)
    staging = Path(tempfile.mkdtemp(prefix=f".{original.name}.repair-", dir=original.parent))
    try:
        exports, extra_indexes = export_tables(original, staging)
        LOGGER.info(
            "Exported %d table(s) from %s",
            len(exports),
            original,
            extra={"event": "store.repair_exported", "meta": {export.name: export.rows for export in exports}},
        )
        counts = rebuild(exports, extra_indexes, rebuilt)
    except BaseException:
        _discard(rebuilt)
        raise
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    os.replace(rebuilt, original)
    for suffix in _SIDE_SUFFIXES:
        stale = original.with_name(original.name + suffix)
        if stale.exists():
            LOGGER.warning("Removing stale %s left from the damaged store", stale.name)
            stale.unlink()
    LOGGER.info(
        "Replaced %s with rebuilt store",
        original,
        extra={"event": "store.repaired", "meta": counts},
    )
    return RepairOutcome(tables=counts, replaced=original)


__all__ = ["RepairOutcome", "TableExport", "export_tables", "rebuild", "repair_store"]
