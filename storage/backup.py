"""Point-in-time snapshots of the store file, taken before destructive work."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .errors import BackupError, StoreMissingError
from .schema import store_exists

LOGGER = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".bak"
_STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Snapshot:
    path: Path
    source: Path
    created_at: datetime
    size: int
    sha256: str


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _snapshot_path(db_path: Path, backup_dir: Path, moment: datetime) -> Path:
    stamp = moment.strftime(_STAMP_FORMAT)
    candidate = backup_dir / f"{db_path.name}.{stamp}{SNAPSHOT_SUFFIX}"
    counter = 1
    while candidate.exists():
        candidate = backup_dir / f"{db_path.name}.{stamp}-{counter}{SNAPSHOT_SUFFIX}"
        counter += 1
    return candidate


def create_snapshot(db_path: Path | str, backup_dir: Path | str) -> Snapshot:
    """Copy the store file and verify the copy byte-for-byte.

    The caller must hold the store lock so that no writer touches the file
    while it is copied. Verification compares SHA-256 digests rather than
    opening the copy, so a damaged store can still be snapshotted before
    repair. The finished snapshot is made read-only.
    """

    source = Path(db_path)
    if not store_exists(source):
        raise StoreMissingError(source)
    target_dir = Path(backup_dir)
    journal = source.with_name(source.name + "-journal")
    if journal.exists():
        LOGGER.warning("Hot journal %s present; snapshot holds the main file only", journal)

    moment = datetime.now(timezone.utc)
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        target = _snapshot_path(source, target_dir, moment)
        source_digest = file_sha256(source)
        shutil.copy2(source, target)
    except OSError as exc:
        raise BackupError(f"could not copy {source} into {target_dir}: {exc}") from exc

    try:
        copy_digest = file_sha256(target)
    except OSError as exc:
        raise BackupError(f"could not read back snapshot {target}: {exc}") from exc
    if copy_digest != source_digest:
        target.unlink(missing_ok=True)
        raise BackupError(
            f"snapshot {target.name} does not match {source.name} "
            f"(sha256 {copy_digest[:12]} != {source_digest[:12]})"
        )

    os.chmod(target, stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
    snapshot = Snapshot(
        path=target,
        source=source,
        created_at=moment,
        size=target.stat().st_size,
        sha256=copy_digest,
    )
    LOGGER.info(
        "Snapshot %s written (%d bytes)",
        target,
        snapshot.size,
        extra={"event": "store.backup", "meta": {"snapshot": str(target), "sha256": copy_digest}},
    )
    return snapshot


def list_snapshots(db_path: Path | str, backup_dir: Path | str) -> list[Path]:
    """Snapshots of ``db_path`` in ``backup_dir``, newest first."""

    directory = Path(backup_dir)
    if not directory.is_dir():
        return []
    prefix = Path(db_path).name + "."
    found = [
        path
        for path in directory.iterdir()
        if path.is_file() and path.name.startswith(prefix) and path.name.endswith(SNAPSHOT_SUFFIX)
    ]
    return sorted(found, key=lambda path: path.name, reverse=True)


__all__ = ["SNAPSHOT_SUFFIX", "Snapshot", "create_snapshot", "file_sha256", "list_snapshots"]
