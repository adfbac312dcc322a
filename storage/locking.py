"""Advisory lock serializing ingestion and lifecycle operations on one store."""

from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import IO, Optional

from .errors import StoreBusyError

LOGGER = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


def lock_path_for(db_path: Path) -> Path:
    return db_path.with_name(db_path.name + ".lock")


class StoreLock:
    """``flock`` on ``<store>.lock``; exclusive for writers, shared for readers."""

    def __init__(self, db_path: Path | str, *, shared: bool = False, timeout: float = 0.0) -> None:
        self.db_path = Path(db_path)
        self.path = lock_path_for(self.db_path)
        self.shared = shared
        self.timeout = max(0.0, float(timeout))
        self._handle: Optional[IO[str]] = None

    def acquire(self) -> "StoreLock":
        if self._handle is not None:
            return self
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        mode = fcntl.LOCK_SH if self.shared else fcntl.LOCK_EX
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(handle, mode | fcntl.LOCK_NB)
                break
            except OSError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise StoreBusyError(self.db_path) from None
                time.sleep(_POLL_INTERVAL)
        if not self.shared:
            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()
        self._handle = handle
        LOGGER.debug("Acquired %s lock on %s", "shared" if self.shared else "exclusive", self.db_path)
        return self

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            fcntl.flock(handle, fcntl.LOCK_UN)
        finally:
            handle.close()

    @property
    def held(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "StoreLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = ["StoreLock", "lock_path_for"]
