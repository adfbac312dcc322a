#!/usr/bin/env python3
"""Run one lifecycle operation against the crawl store."""
from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys
from typing import Any, Iterable, Sequence

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from config import Settings, load_config
from logging_setup import configure_logging
from storage.errors import StoreBusyError, StoreError
from storage.lifecycle import STATUS_FAILED, LifecycleManager, OperationResult

LOGGER = logging.getLogger("scripts.manage")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BUSY = 2


def _table(title: str, rows: Sequence[dict[str, Any]], columns: Iterable[str] | None = None) -> Table:
    names = list(columns or (rows[0].keys() if rows else []))
    table = Table(title=title)
    for name in names:
        table.add_column(name.replace("_", " "), overflow="fold")
    for row in rows:
        table.add_row(*(Text("" if row.get(name) is None else str(row.get(name))) for name in names))
    return table


def render_analysis(console: Console, report: dict[str, Any]) -> None:
    counts = [{"table": name, "rows": count} for name, count in report.get("table_counts", {}).items()]
    console.print(_table("Table row counts", counts, ("table", "rows")))

    sections = (
        ("js_dependency", "JavaScript dependency by domain"),
        ("top_pages", "Top pages by link count"),
        ("domain_stats", "Domain statistics"),
        ("most_linked", "Most linked targets"),
        ("content_types", "Content types"),
        ("status_codes", "HTTP status codes"),
        ("crawls", "Crawls"),
    )
    for key, title in sections:
        rows = report.get(key) or []
        if not rows:
            console.print(f"[dim]{title}: no data[/dim]")
            continue
        console.print(_table(title, rows))

    render_integrity(console, report.get("integrity") or {})


def render_integrity(console: Console, integrity: dict[str, Any]) -> None:
    structural = "[green]pass[/green]" if integrity.get("structural_ok") else "[red]FAIL[/red]"
    foreign = "[green]pass[/green]" if integrity.get("foreign_keys_ok") else "[red]FAIL[/red]"
    console.print(f"[bold]Integrity check:[/bold] {structural}")
    for message in integrity.get("structural_messages") or []:
        console.print(f"  {escape(str(message))}")
    console.print(f"[bold]Foreign key check:[/bold] {foreign}")
    violations = integrity.get("foreign_key_violations") or []
    if violations:
        console.print(_table("Foreign key violations", violations))
    if integrity.get("recommendation"):
        console.print(f"[yellow]{escape(integrity['recommendation'])}[/yellow]")


def render_result(console: Console, result: OperationResult) -> None:
    if result.operation == "analyze":
        render_analysis(console, result.details)
        return
    colour = {"ok": "green", "skipped": "yellow"}.get(result.status, "red")
    console.print(f"[bold]{result.operation}[/bold] [{colour}]{result.status}[/{colour}]: {escape(result.message)}")
    if result.snapshot is not None:
        console.print(f"[dim]snapshot: {escape(str(result.snapshot.path))}[/dim]")
    integrity = result.details if result.operation == "check" else result.details.get("integrity")
    if integrity:
        render_integrity(console, integrity)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", type=pathlib.Path, help="Path to the SQLite store (default: store.path)")
    common.add_argument("--backup-dir", type=pathlib.Path, help="Snapshot directory (default: store.backup_dir)")
    common.add_argument("--config", type=pathlib.Path, help="YAML configuration file")
    common.add_argument("--json", action="store_true", help="Print the result as JSON")
    common.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")

    parser = argparse.ArgumentParser(description="Manage the crawl store")
    sub = parser.add_subparsers(dest="command")

    init = sub.add_parser("init", parents=[common], help="Create the schema, indexes and views")
    init.add_argument("--force", action="store_true", help="Reinitialize an existing store after a backup")

    sub.add_parser("backup", parents=[common], help="Write a verified snapshot of the store")
    sub.add_parser("optimize", parents=[common], help="Back up, then VACUUM and ANALYZE")

    migrate = sub.add_parser("migrate", parents=[common], help="Move legacy embedded pages into crawled_pages")
    migrate.add_argument("--force", action="store_true", help="Run even when the store looks migrated")

    repair = sub.add_parser("repair", parents=[common], help="Rebuild a store that fails the integrity check")
    repair.add_argument("--force", action="store_true", help="Rebuild even when the integrity check passes")

    analyze = sub.add_parser("analyze", parents=[common], help="Print the read-only analysis report")
    analyze.add_argument("--top", type=int, help="Number of top pages and link targets to show")

    sub.add_parser("check", parents=[common], help="Run the integrity and foreign key checks")
    sub.add_parser("reclassify", parents=[common], help="Recompute classification and links of stored pages")

    return parser


def _options(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    if args.command in {"init", "migrate", "repair"}:
        return {"force": args.force}
    if args.command == "analyze":
        return {"top_n": args.top if args.top and args.top > 0 else settings.top_pages}
    return {}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_FAILED

    settings = Settings.from_mapping(load_config(reload=True, path=args.config))
    configure_logging(
        "DEBUG" if args.verbose else settings.log_level,
        settings.log_dir if settings.log_jsonl else None,
        jsonl=settings.log_jsonl,
    )
    manager = LifecycleManager.from_settings(settings, db_path=args.db, backup_dir=args.backup_dir)
    console = Console()

    try:
        result = manager.run(args.command, **_options(args, settings))
    except StoreBusyError as exc:
        LOGGER.error("%s", exc, extra={"event": "store.busy"})
        return EXIT_BUSY
    except StoreError as exc:
        LOGGER.error("%s failed: %s", args.command, exc, extra={"event": f"store.{args.command}_failed"})
        return EXIT_FAILED

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        render_result(console, result)
    return EXIT_FAILED if result.status == STATUS_FAILED else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
