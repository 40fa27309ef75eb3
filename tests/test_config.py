import json
from datetime import timedelta
from pathlib import Path

import pytest

from rotwatch.config import MONGO_URI_ENV, RotwatchConfig, config_path, load_config, save_config
from rotwatch.filters import SkipFilter


def _write_config(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_save_then_load_keeps_settings(tmp_path: Path, monkeypatch):
    monkeypatch.delenv(MONGO_URI_ENV, raising=False)
    config = RotwatchConfig(
        mongo_connection_string="mongodb://backup-host:27017",
        mutable_paths=["/srv/documents"],
        immutable_paths=["/srv/photos", "/srv/music"],
        health_check_url="https://hc.example.org/ping/abc",
        skip_suffixes=[".tmp", ".part"],
        skip_window_days=30,
        workers=2,
    )

    path = save_config(config, tmp_path / "rotwatch.json")

    assert load_config(path) == config


def test_defaults_for_missing_keys(tmp_path: Path, monkeypatch):
    monkeypatch.delenv(MONGO_URI_ENV, raising=False)
    path = _write_config(tmp_path / "rotwatch.json", {"mongo_connection_string": "mongodb://localhost"})

    config = load_config(path)

    assert config.mutable_paths == []
    assert config.immutable_paths == []
    assert config.skip_filter == SkipFilter()
    assert config.skip_window == timedelta(days=90)
    assert config.retention == timedelta(days=365)
    assert config.too_new_threshold == timedelta(days=1)
    assert config.recency_db_path == Path("file_verification.db")
    assert config.log_dir_path == Path("logs")


def test_environment_overrides_connection_string(tmp_path: Path, monkeypatch):
    path = _write_config(tmp_path / "rotwatch.json", {"mongo_connection_string": "mongodb://from-file"})
    monkeypatch.setenv(MONGO_URI_ENV, "mongodb://from-env")

    assert load_config(path).mongo_connection_string == "mongodb://from-env"


def test_missing_connection_string_is_rejected(tmp_path: Path, monkeypatch):
    monkeypatch.delenv(MONGO_URI_ENV, raising=False)
    path = _write_config(tmp_path / "rotwatch.json", {"mutable_paths": ["/data"]})

    with pytest.raises(ValueError, match="No MongoDB connection string"):
        load_config(path)


def test_path_lists_must_hold_strings(tmp_path: Path, monkeypatch):
    monkeypatch.delenv(MONGO_URI_ENV, raising=False)
    path = _write_config(
        tmp_path / "rotwatch.json",
        {"mongo_connection_string": "mongodb://localhost", "immutable_paths": "/srv/photos"},
    )

    with pytest.raises(ValueError, match="immutable_paths"):
        load_config(path)


def test_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.json")


def test_config_path_defaults_to_working_directory(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert config_path() == tmp_path.resolve() / "rotwatch.json"


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("workers", None),
        ("workers", 0),
        ("skip_window_days", "90"),
        ("retention_days", True),
        ("log_dir", None),
    ],
)
def test_malformed_fields_are_rejected(tmp_path: Path, monkeypatch, key, value):
    monkeypatch.delenv(MONGO_URI_ENV, raising=False)
    path = _write_config(tmp_path / "rotwatch.json", {"mongo_connection_string": "mongodb://localhost", key: value})

    with pytest.raises(ValueError, match=key):
        load_config(path)


def test_top_level_must_be_an_object(tmp_path: Path):
    path = tmp_path / "rotwatch.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError, match="JSON object"):
        load_config(path)
