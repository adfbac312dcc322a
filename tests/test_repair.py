from __future__ import annotations

import sqlite3

import pytest

from storage import repair as repair_module
from storage.backup import file_sha256
from storage.errors import RepairError
from storage.integrity import check_store
from storage.lifecycle import LifecycleManager
from storage.repair import repair_store


def _counts(query, db_path):
    tables = [row[0] for row in query(db_path, "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'")]
    return {table: query(db_path, f'SELECT COUNT(*) FROM "{table}"')[0][0] for table in tables}


def _leftovers(db_path):
    return sorted(path.name for path in db_path.parent.iterdir() if ".repair-" in path.name or path.name.endswith(".rebuild"))


def test_repair_rebuilds_a_corrupted_index_and_keeps_rows(populated_store, corrupt_index, query):
    expected = _counts(query, populated_store)
    corrupt_index(populated_store)

    outcome = repair_store(populated_store)

    assert outcome.tables == expected
    assert _counts(query, populated_store) == expected
    assert check_store(populated_store).ok
    assert _leftovers(populated_store) == []
    titles = {row[0] for row in query(populated_store, "SELECT title FROM crawled_pages")}
    assert "One" in titles


def test_repair_carries_extra_tables_blobs_and_indexes(populated_store, execute, query):
    execute(populated_store, "CREATE TABLE notes (id INTEGER PRIMARY KEY, body BLOB)")
    execute(populated_store, "CREATE INDEX idx_notes_body ON notes(body)")
    execute(populated_store, "INSERT INTO notes (body) VALUES (?)", (b"\x00\xffbinary",))

    repair_store(populated_store)

    assert query(populated_store, "SELECT body FROM notes")[0][0] == b"\x00\xffbinary"
    names = {row[0] for row in query(populated_store, "SELECT name FROM sqlite_master WHERE type='index'")}
    assert "idx_notes_body" in names


def test_export_failure_leaves_the_original_untouched(populated_store, monkeypatch):
    before = file_sha256(populated_store)

    def failing_export(connection, name, create_sql, path):
        raise sqlite3.DatabaseError("database disk image is malformed")

    monkeypatch.setattr(repair_module, "_export_table", failing_export)

    with pytest.raises(RepairError) as excinfo:
        repair_store(populated_store)

    assert excinfo.value.phase == "export"
    assert excinfo.value.table == "tasks"
    assert file_sha256(populated_store) == before
    assert _leftovers(populated_store) == []


def test_import_failure_leaves_the_original_untouched(populated_store, execute):
    execute(populated_store, "ALTER TABLE crawled_pages ADD COLUMN extra TEXT")
    before = file_sha256(populated_store)

    with pytest.raises(RepairError) as excinfo:
        repair_store(populated_store)

    assert excinfo.value.phase == "import"
    assert excinfo.value.table == "crawled_pages"
    assert file_sha256(populated_store) == before
    assert _leftovers(populated_store) == []


def test_lifecycle_repair_skips_a_healthy_store(populated_store, tmp_path):
    manager = LifecycleManager(populated_store, backup_dir=tmp_path / "backups")

    result = manager.repair()

    assert result.status == "skipped"
    assert result.snapshot is None
    assert not (tmp_path / "backups").exists()


def test_lifecycle_repair_snapshots_then_rebuilds(populated_store, corrupt_index, query, tmp_path):
    expected = _counts(query, populated_store)
    corrupt_index(populated_store)
    damaged = file_sha256(populated_store)
    manager = LifecycleManager(populated_store, backup_dir=tmp_path / "backups")

    result = manager.repair()

    assert result.status == "ok"
    assert result.snapshot is not None
    assert result.snapshot.sha256 == damaged
    assert result.details["tables"] == expected
    assert result.details["integrity"]["ok"] is True
