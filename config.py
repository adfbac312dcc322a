"""Configuration loader for the crawl store."""
from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, MutableMapping, Optional

import yaml
from dotenv import load_dotenv

_CONFIG_CACHE: dict[str, Any] | None = None
_CONFIG_BASE: Path | None = None
CONFIG_ENV_VAR = "CRAWLSTORE_CONFIG"

DEFAULTS: dict[str, Any] = {
    "store": {
        "path": "data/crawl.sqlite3",
        "backup_dir": "",
        "lock_timeout": 0.0,
    },
    "ingest": {
        "link_cap": 1000,
        "default_status": 200,
        "default_content_type": "text/html; charset=utf-8",
        "skip_backup": False,
    },
    "tasks": {
        "max_depth": 0,
        "follow_subdomains": False,
        "incentive_amount": 0,
    },
    "analyze": {
        "top_pages": 10,
    },
    "logging": {
        "level": "INFO",
        "dir": "logs",
        "jsonl": True,
    },
}


def _deep_update(base: MutableMapping[str, Any], overrides: MutableMapping[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, MutableMapping) and isinstance(base.get(key), MutableMapping):
            _deep_update(base[key], value)  # type: ignore[index]
        else:
            base[key] = value


def _apply_env_overrides(config: MutableMapping[str, Any]) -> None:
    def walker(prefix: str, node: MutableMapping[str, Any]) -> None:
        for key, value in node.items():
            env_key = f"{prefix}_{key}" if prefix else key
            if isinstance(value, MutableMapping):
                walker(env_key, value)
                continue
            env_value = os.getenv(env_key.upper())
            if env_value is None:
                continue
            if isinstance(value, bool):
                node[key] = env_value.lower() in {"1", "true", "yes", "on"}
            elif isinstance(value, int):
                node[key] = int(env_value)
            elif isinstance(value, float):
                node[key] = float(env_value)
            else:
                node[key] = env_value

    walker("", config)


def _config_path(path: str | os.PathLike[str] | None) -> Path | None:
    if path is not None:
        resolved = Path(path).expanduser().resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"Configuration file not found at {resolved}")
        return resolved
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        resolved = Path(env_path).expanduser().resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"Configuration file not found at {resolved}")
        return resolved
    candidate = Path(__file__).resolve().parent / "config.yaml"
    return candidate if candidate.exists() else None


def load_config(reload: bool = False, path: str | os.PathLike[str] | None = None) -> dict[str, Any]:
    """Load configuration from defaults, YAML and environment overrides."""
    global _CONFIG_CACHE, _CONFIG_BASE
    if _CONFIG_CACHE is not None and not reload and path is None:
        return _CONFIG_CACHE

    load_dotenv()

    config = copy.deepcopy(DEFAULTS)
    source = _config_path(path)
    if source is not None:
        with source.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, MutableMapping):
            raise ValueError(f"{source.name} must define a mapping")
        _deep_update(config, loaded)

    _apply_env_overrides(config)

    _CONFIG_BASE = source.parent if source is not None else None
    _CONFIG_CACHE = config
    return _CONFIG_CACHE


def config_base_dir() -> Path:
    """Directory relative paths in the configuration resolve against."""
    return _CONFIG_BASE if _CONFIG_BASE is not None else Path.cwd()


def _resolve_path(value: str | os.PathLike[str], base: Path) -> Path:
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return candidate
    return (base / candidate).resolve()


@dataclass(frozen=True)
class Settings:
    store_path: Path
    backup_dir: Optional[Path]
    lock_timeout: float
    link_cap: int
    default_status: int
    default_content_type: str
    skip_backup: bool
    task_max_depth: int
    task_follow_subdomains: bool
    task_incentive_amount: int
    top_pages: int
    log_level: str
    log_dir: Path
    log_jsonl: bool

    @classmethod
    def from_mapping(cls, config: MutableMapping[str, Any], base_dir: Path | None = None) -> "Settings":
        base = base_dir or config_base_dir()
        store = config.get("store", {})
        ingest = config.get("ingest", {})
        tasks = config.get("tasks", {})
        analyze = config.get("analyze", {})
        logging_cfg = config.get("logging", {})

        store_path = _resolve_path(store.get("path") or DEFAULTS["store"]["path"], base)
        backup_value = str(store.get("backup_dir") or "").strip()
        backup_dir = _resolve_path(backup_value, base) if backup_value else None
        link_cap = int(ingest.get("link_cap", 1000))
        if link_cap <= 0:
            raise ValueError("ingest.link_cap must be positive")
        return cls(
            store_path=store_path,
            backup_dir=backup_dir,
            lock_timeout=max(0.0, float(store.get("lock_timeout", 0.0))),
            link_cap=link_cap,
            default_status=int(ingest.get("default_status", 200)),
            default_content_type=str(ingest.get("default_content_type") or DEFAULTS["ingest"]["default_content_type"]),
            skip_backup=bool(ingest.get("skip_backup", False)),
            task_max_depth=int(tasks.get("max_depth", 0)),
            task_follow_subdomains=bool(tasks.get("follow_subdomains", False)),
            task_incentive_amount=int(tasks.get("incentive_amount", 0)),
            top_pages=max(1, int(analyze.get("top_pages", 10))),
            log_level=str(logging_cfg.get("level") or "INFO").upper(),
            log_dir=_resolve_path(logging_cfg.get("dir") or "logs", base),
            log_jsonl=bool(logging_cfg.get("jsonl", True)),
        )
