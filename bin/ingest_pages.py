#!/usr/bin/env python3
"""Ingest a JSONL file of crawled pages into the crawl store."""

from __future__ import annotations

import argparse
import json
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Settings, load_config
from ingest.pipeline import IngestOptions, ingest_file
from ingest.writer import TaskDefaults
from logging_setup import configure_logging
from storage.errors import StoreBusyError, StoreError


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest crawled pages from a JSONL file")
    parser.add_argument("input", type=pathlib.Path, help="Newline-delimited JSON file, one page per line")
    parser.add_argument("--db", type=pathlib.Path, help="Path to the SQLite store (default: store.path)")
    parser.add_argument("--backup-dir", type=pathlib.Path, help="Snapshot directory (default: store.backup_dir)")
    parser.add_argument("--skip-backup", action="store_true", help="Do not snapshot the store before writing")
    parser.add_argument("--task-id", help="Task identifier (default: <UTC timestamp>_<input name>)")
    parser.add_argument("--config", type=pathlib.Path, help="YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace, settings: Settings) -> IngestOptions:
    return IngestOptions(
        link_cap=settings.link_cap,
        default_status=settings.default_status,
        default_content_type=settings.default_content_type,
        skip_backup=args.skip_backup or settings.skip_backup,
        backup_dir=args.backup_dir or settings.backup_dir,
        lock_timeout=settings.lock_timeout,
        task_defaults=TaskDefaults(
            max_depth=settings.task_max_depth,
            follow_subdomains=settings.task_follow_subdomains,
            max_links=settings.link_cap,
            incentive_amount=settings.task_incentive_amount,
        ),
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    settings = Settings.from_mapping(load_config(reload=True, path=args.config))
    configure_logging(
        "DEBUG" if args.verbose else settings.log_level,
        settings.log_dir if settings.log_jsonl else None,
        jsonl=settings.log_jsonl,
    )
    try:
        result = ingest_file(
            args.input,
            args.db or settings.store_path,
            task_id=args.task_id,
            options=build_options(args, settings),
        )
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except StoreBusyError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except StoreError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
