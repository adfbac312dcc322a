"""SQLite crawl store: schema, snapshots, integrity and lifecycle operations."""

from .errors import (
    BackupError,
    ForeignKeyViolation,
    IngestError,
    IntegrityFailure,
    MigrationError,
    RepairError,
    StoreBusyError,
    StoreError,
    StoreMissingError,
)
from .schema import connect, connect_readonly, ensure_schema

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
    "connect",
    "connect_readonly",
    "ensure_schema",
]
