"""Read-only structural and referential consistency scans."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .errors import ForeignKeyViolation, IntegrityFailure
from .schema import connect_readonly

LOGGER = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    structural_ok: bool
    structural_messages: list[str] = field(default_factory=list)
    foreign_keys_ok: bool = True
    foreign_key_violations: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.structural_ok and self.foreign_keys_ok

    @property
    def recommendation(self) -> str | None:
        if not self.structural_ok:
            return IntegrityFailure.recommendation
        if not self.foreign_keys_ok:
            return "review the violating rows; foreign key violations are never fixed automatically"
        return None

    def raise_for_status(self) -> None:
        if not self.structural_ok:
            raise IntegrityFailure(self)
        if not self.foreign_keys_ok:
            raise ForeignKeyViolation(self.foreign_key_violations)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["ok"] = self.ok
        payload["recommendation"] = self.recommendation
        return payload


def structural_check(connection: sqlite3.Connection) -> tuple[bool, list[str]]:
    try:
        rows = connection.execute("PRAGMA integrity_check").fetchall()
    except sqlite3.DatabaseError as exc:
        return False, [str(exc)]
    messages = [str(row[0]) for row in rows]
    return messages == ["ok"], ([] if messages == ["ok"] else messages)


def foreign_key_check(connection: sqlite3.Connection) -> tuple[bool, list[dict[str, Any]]]:
    try:
        rows = connection.execute("PRAGMA foreign_key_check").fetchall()
    except sqlite3.DatabaseError as exc:
        return False, [{"error": str(exc)}]
    violations = [
        {"table": row[0], "rowid": row[1], "parent": row[2], "fkid": row[3]}
        for row in rows
    ]
    return not violations, violations


def check_connection(connection: sqlite3.Connection) -> IntegrityReport:
    """Run both scans independently; a failure in one never skips the other."""

    structural_ok, messages = structural_check(connection)
    fk_ok, violations = foreign_key_check(connection)
    report = IntegrityReport(
        structural_ok=structural_ok,
        structural_messages=messages,
        foreign_keys_ok=fk_ok,
        foreign_key_violations=violations,
    )
    if not structural_ok:
        LOGGER.warning(
            "Integrity check failed: %s",
            "; ".join(messages[:5]),
            extra={"event": "store.integrity_failed", "meta": {"messages": messages[:20]}},
        )
    if not fk_ok:
        LOGGER.warning(
            "Foreign key check found %d violation(s)",
            len(violations),
            extra={"event": "store.foreign_key_violation", "meta": {"violations": violations[:20]}},
        )
    return report


def check_store(db_path: Path | str) -> IntegrityReport:
    try:
        connection = connect_readonly(db_path)
    except sqlite3.DatabaseError as exc:
        return IntegrityReport(
            structural_ok=False,
            structural_messages=[str(exc)],
            foreign_keys_ok=False,
            foreign_key_violations=[{"error": str(exc)}],
        )
    try:
        return check_connection(connection)
    finally:
        connection.close()


__all__ = ["IntegrityReport", "check_connection", "check_store", "foreign_key_check", "structural_check"]
