from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path

from rotwatch.filters import DEFAULT_SKIP_PREFIXES, DEFAULT_SKIP_SUFFIXES, SkipFilter, build_skip_filter
from rotwatch.processor import DEFAULT_WORKERS
from rotwatch.recency_db import DEFAULT_DB_FILENAME


CONFIG_FILENAME = "rotwatch.json"
MONGO_URI_ENV = "ROTWATCH_MONGO_URI"


@dataclass(slots=True)
class RotwatchConfig:
    mongo_connection_string: str
    mutable_paths: list[str] = field(default_factory=list)
    immutable_paths: list[str] = field(default_factory=list)
    health_check_url: str = ""
    skip_prefixes: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_PREFIXES))
    skip_suffixes: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_SUFFIXES))
    skip_window_days: int = 90
    retention_days: int = 365
    too_new_days: int = 1
    workers: int = DEFAULT_WORKERS
    recency_db: str = DEFAULT_DB_FILENAME
    log_dir: str = "logs"

    @property
    def skip_filter(self) -> SkipFilter:
        return build_skip_filter(self.skip_prefixes, self.skip_suffixes)

    @property
    def skip_window(self) -> timedelta:
        return timedelta(days=self.skip_window_days)

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def too_new_threshold(self) -> timedelta:
        return timedelta(days=self.too_new_days)

    @property
    def recency_db_path(self) -> Path:
        return Path(self.recency_db).expanduser()

    @property
    def log_dir_path(self) -> Path:
        return Path(self.log_dir).expanduser()


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def _string_list(data: dict, key: str, default: list[str]) -> list[str]:
    value = data.get(key, default)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"`{key}` must be a list of strings")
    return list(value)


def _int_field(data: dict, key: str, default: int, *, minimum: int = 0) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"`{key}` must be an integer >= {minimum}")
    return value


def _string_field(data: dict, key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"`{key}` must be a string")
    return value


def load_config(path: Path | None = None) -> RotwatchConfig:
    path = path or config_path()
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}. Create it or pass --config with its location."
        )

    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")

    connection_string = os.getenv(MONGO_URI_ENV) or data.get("mongo_connection_string", "")
    if not connection_string:
        raise ValueError(
            f"No MongoDB connection string: set `mongo_connection_string` in {path} or {MONGO_URI_ENV}."
        )

    return RotwatchConfig(
        mongo_connection_string=connection_string,
        mutable_paths=_string_list(data, "mutable_paths", []),
        immutable_paths=_string_list(data, "immutable_paths", []),
        health_check_url=_string_field(data, "health_check_url", ""),
        skip_prefixes=_string_list(data, "skip_prefixes", list(DEFAULT_SKIP_PREFIXES)),
        skip_suffixes=_string_list(data, "skip_suffixes", list(DEFAULT_SKIP_SUFFIXES)),
        skip_window_days=_int_field(data, "skip_window_days", 90),
        retention_days=_int_field(data, "retention_days", 365),
        too_new_days=_int_field(data, "too_new_days", 1),
        workers=_int_field(data, "workers", DEFAULT_WORKERS, minimum=1),
        recency_db=_string_field(data, "recency_db", DEFAULT_DB_FILENAME),
        log_dir=_string_field(data, "log_dir", "logs"),
    )


def save_config(config: RotwatchConfig, path: Path | None = None) -> Path:
    path = path or config_path()
    with path.open("w", encoding="utf-8") as fh:
        json.dump(asdict(config), fh, indent=2)
        fh.write("\n")
    return path
