"""Lifecycle operations over one crawl store.

Every operation runs under the store lock: exclusive for anything that
writes the file, shared for the read-only ``analyze`` and ``check``. Each
operation that can destroy data takes a verified snapshot first, and a
failed snapshot raises :class:`~storage.errors.BackupError` before any
statement touches the store. Transitions are triggered by the caller; no
operation chains into another on its own.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ingest.links import LINK_CAP
from ingest.pipeline import refresh_pages

from .analyze import analyze_store
from .backup import Snapshot, create_snapshot, list_snapshots
from .errors import MigrationError, StoreError, StoreMissingError
from .integrity import check_store
from .locking import StoreLock
from .migrate import migrate_legacy_pages, migration_state
from .repair import repair_store
from .schema import connect, connect_readonly, ensure_schema, reset_schema, store_exists, transaction

LOGGER = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

OPERATIONS = ("init", "backup", "optimize", "migrate", "repair", "analyze", "check", "reclassify")


@dataclass
class OperationResult:
    operation: str
    status: str
    message: str
    snapshot: Optional[Snapshot] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "status": self.status,
            "message": self.message,
            "snapshot": str(self.snapshot.path) if self.snapshot else None,
            "details": self.details,
        }


class LifecycleManager:
    def __init__(
        self,
        db_path: Path | str,
        *,
        backup_dir: Path | str | None = None,
        lock_timeout: float = 0.0,
        link_cap: int = LINK_CAP,
    ) -> None:
        self.db_path = Path(db_path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.db_path.parent / "backups"
        self.lock_timeout = lock_timeout
        self.link_cap = link_cap

    @classmethod
    def from_settings(cls, settings, *, db_path: Path | str | None = None, backup_dir: Path | str | None = None):
        return cls(
            db_path or settings.store_path,
            backup_dir=backup_dir or settings.backup_dir,
            lock_timeout=settings.lock_timeout,
            link_cap=settings.link_cap,
        )

    def _lock(self, *, shared: bool = False) -> StoreLock:
        return StoreLock(self.db_path, shared=shared, timeout=self.lock_timeout)

    def _require_store(self) -> None:
        if not store_exists(self.db_path):
            raise StoreMissingError(self.db_path)

    def _snapshot(self) -> Snapshot:
        return create_snapshot(self.db_path, self.backup_dir)

    def _done(self, result: OperationResult) -> OperationResult:
        level = logging.WARNING if result.status == STATUS_FAILED else logging.INFO
        LOGGER.log(
            level,
            "%s %s: %s",
            result.operation,
            result.status,
            result.message,
            extra={"event": f"store.{result.operation}", "meta": result.to_dict()},
        )
        return result

    # -- operations ---------------------------------------------------------

    def init(self, *, force: bool = False) -> OperationResult:
        """Create the schema; an existing store is only reset when forced."""

        with self._lock():
            if store_exists(self.db_path):
                if not force:
                    LOGGER.warning("Store %s already exists; use --force to reinitialize it", self.db_path)
                    return OperationResult(
                        "init",
                        STATUS_SKIPPED,
                        f"store already exists at {self.db_path}",
                    )
                snapshot = self._snapshot()
                connection = connect(self.db_path)
                try:
                    reset_schema(connection)
                except sqlite3.Error as exc:
                    raise StoreError(f"could not reinitialize {self.db_path}: {exc}") from exc
                finally:
                    connection.close()
                return self._done(
                    OperationResult("init", STATUS_OK, "store reinitialized with an empty schema", snapshot)
                )

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = connect(self.db_path)
            try:
                ensure_schema(connection)
            except sqlite3.Error as exc:
                raise StoreError(f"could not create schema in {self.db_path}: {exc}") from exc
            finally:
                connection.close()
            return self._done(OperationResult("init", STATUS_OK, f"created store at {self.db_path}"))

    def backup(self) -> OperationResult:
        # Readers only: writers are held off while the file is copied.
        with self._lock(shared=True):
            snapshot = self._snapshot()
            retained = len(list_snapshots(self.db_path, self.backup_dir))
        return self._done(
            OperationResult(
                "backup",
                STATUS_OK,
                f"snapshot written to {snapshot.path}",
                snapshot,
                {"size": snapshot.size, "sha256": snapshot.sha256, "retained": retained},
            )
        )

    def optimize(self) -> OperationResult:
        """Reclaim free pages and refresh planner statistics."""

        with self._lock():
            self._require_store()
            snapshot = self._snapshot()
            size_before = self.db_path.stat().st_size
            connection = connect(self.db_path)
            try:
                connection.execute("VACUUM")
                connection.execute("ANALYZE")
                connection.execute("PRAGMA optimize")
            except sqlite3.Error as exc:
                raise StoreError(f"optimize of {self.db_path} failed: {exc}") from exc
            finally:
                connection.close()
            size_after = self.db_path.stat().st_size
        reclaimed = max(0, size_before - size_after)
        return self._done(
            OperationResult(
                "optimize",
                STATUS_OK,
                f"reclaimed {reclaimed} byte(s)",
                snapshot,
                {"size_before": size_before, "size_after": size_after, "reclaimed_bytes": reclaimed},
            )
        )

    def migrate(self, *, force: bool = False) -> OperationResult:
        """Move legacy embedded pages into ``crawled_pages``.

        The state is read before any snapshot is taken, so a no-op migration
        leaves neither a snapshot nor a write behind.
        """

        with self._lock():
            self._require_store()
            reader = connect_readonly(self.db_path)
            try:
                state = migration_state(reader)
            except sqlite3.DatabaseError as exc:
                raise MigrationError(f"could not read migration state of {self.db_path}: {exc}") from exc
            finally:
                reader.close()
            details: dict[str, Any] = {
                "legacy_pages": state.legacy_pages,
                "normalized_pages": state.normalized_pages,
                "migrated": 0,
            }
            if not state.needs_migration and not force:
                LOGGER.info(
                    "Nothing to migrate: %d normalized page(s) cover %d legacy page(s)",
                    state.normalized_pages,
                    state.legacy_pages,
                )
                return OperationResult("migrate", STATUS_SKIPPED, "store is already migrated", details=details)

            snapshot = self._snapshot()
            connection = connect(self.db_path)
            try:
                ensure_schema(connection)
                with transaction(connection):
                    outcome = migrate_legacy_pages(connection, link_cap=self.link_cap)
            except sqlite3.Error as exc:
                raise MigrationError(f"migration of {self.db_path} rolled back: {exc}") from exc
            finally:
                connection.close()
        details.update(
            migrated=outcome.migrated,
            skipped=outcome.skipped,
            orphaned_results=outcome.orphaned_results,
        )
        return self._done(
            OperationResult("migrate", STATUS_OK, f"migrated {outcome.migrated} page(s)", snapshot, details)
        )

    def repair(self, *, force: bool = False) -> OperationResult:
        """Rebuild the store when the structural check fails (or when forced)."""

        with self._lock():
            self._require_store()
            before = check_store(self.db_path)
            if before.structural_ok and not force:
                message = "structural integrity check passed; nothing to repair"
                if not before.foreign_keys_ok:
                    message += f" ({len(before.foreign_key_violations)} foreign key violation(s) need manual review)"
                return OperationResult("repair", STATUS_SKIPPED, message, details={"integrity": before.to_dict()})

            snapshot = self._snapshot()
            outcome = repair_store(self.db_path)
            after = check_store(self.db_path)
        status = STATUS_OK if after.structural_ok else STATUS_FAILED
        return self._done(
            OperationResult(
                "repair",
                status,
                f"rebuilt {len(outcome.tables)} table(s)",
                snapshot,
                {"tables": outcome.tables, "integrity": after.to_dict()},
            )
        )

    def analyze(self, *, top_n: int = 10) -> OperationResult:
        with self._lock(shared=True):
            report = analyze_store(self.db_path, top_n=top_n)
        return OperationResult("analyze", STATUS_OK, f"analyzed {self.db_path}", details=report)

    def check(self) -> OperationResult:
        with self._lock(shared=True):
            self._require_store()
            report = check_store(self.db_path)
        if report.ok:
            return OperationResult("check", STATUS_OK, "integrity and foreign key checks passed", details=report.to_dict())
        return self._done(
            OperationResult("check", STATUS_FAILED, report.recommendation or "check failed", details=report.to_dict())
        )

    def reclassify(self) -> OperationResult:
        """Recompute classification, links and missing titles of stored pages."""

        with self._lock():
            self._require_store()
            snapshot = self._snapshot()
            connection = connect(self.db_path)
            try:
                ensure_schema(connection)
                with transaction(connection):
                    changed = refresh_pages(connection, link_cap=self.link_cap)
            except sqlite3.Error as exc:
                raise StoreError(f"reclassify of {self.db_path} rolled back: {exc}") from exc
            finally:
                connection.close()
        return self._done(
            OperationResult("reclassify", STATUS_OK, f"updated {changed} page(s)", snapshot, {"changed": changed})
        )

    def run(self, operation: str, **options: Any) -> OperationResult:
        if operation not in OPERATIONS:
            raise ValueError(f"unknown operation: {operation}")
        return getattr(self, operation)(**options)


__all__ = ["LifecycleManager", "OPERATIONS", "OperationResult"]
