"""Errors surfaced by store lifecycle and ingestion operations."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing helper only
    from .integrity import IntegrityReport


class StoreError(RuntimeError):
    """Base class for failures the caller has to decide on."""


class StoreMissingError(StoreError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"store does not exist: {path}")
        self.path = path


class StoreBusyError(StoreError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"store is locked by another operation: {path}")
        self.path = path


class BackupError(StoreError):
    """The snapshot could not be written or verified; nothing was mutated."""


class IntegrityFailure(StoreError):
    recommendation = "run `repair` to rebuild the store from a fresh schema"

    def __init__(self, report: "IntegrityReport") -> None:
        detail = "; ".join(report.structural_messages[:5]) or "integrity check failed"
        super().__init__(f"structural integrity check failed: {detail} ({self.recommendation})")
        self.report = report


class ForeignKeyViolation(StoreError):
    def __init__(self, violations: Sequence[dict[str, Any]]) -> None:
        super().__init__(f"{len(violations)} foreign key violation(s) found")
        self.violations = list(violations)


class RepairError(StoreError):
    """Repair aborted before the original file was replaced."""

    def __init__(self, message: str, *, phase: str, table: str | None = None) -> None:
        location = f" (table {table})" if table else ""
        super().__init__(f"repair {phase} failed{location}: {message}")
        self.phase = phase
        self.table = table


class MigrationError(StoreError):
    """Migration transaction failed and was rolled back."""


class IngestError(StoreError):
    """Ingestion transaction failed and was rolled back."""


__all__ = [
    "BackupError",
    "ForeignKeyViolation",
    "IngestError",
    "IntegrityFailure",
    "MigrationError",
    "RepairError",
    "StoreBusyError",
    "StoreError",
    "StoreMissingError",
]
