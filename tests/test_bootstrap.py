import sqlite3
from pathlib import Path

import pytest

from labcms.bootstrap import Bootstrapper, BootstrapError
from labcms.config import AppConfig
import labcms.config as config_module


def _table_names(database: Path) -> set:
    with sqlite3.connect(database) as connection:
        rows = connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def test_initialize_creates_database_and_bucket(temp_config: AppConfig) -> None:
    assert temp_config.database_file.exists()
    assert (temp_config.buckets_root / temp_config.bucket).is_dir()
    assert {"affiliations", "faculty", "members", "projects", "publications"} <= _table_names(
        temp_config.database_file
    )


def test_initialize_is_idempotent(temp_config: AppConfig) -> None:
    Bootstrapper(temp_config).initialize()
    Bootstrapper(temp_config).initialize()

    with sqlite3.connect(temp_config.database_file) as connection:
        columns = [row[1] for row in connection.execute("PRAGMA table_info(members)")]
    assert columns.count("type") == 1


def test_initialize_adds_columns_missing_from_older_databases(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {"storage_root": "storage", "database_file": "storage/labcms.db"},
        base_path=tmp_path,
    )
    with sqlite3.connect(config.database_file) as connection:
        connection.execute("CREATE TABLE members (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")

    Bootstrapper(config).initialize()

    with sqlite3.connect(config.database_file) as connection:
        columns = [row[1] for row in connection.execute("PRAGMA table_info(members)")]
    assert "type" in columns


def test_supabase_backend_skips_local_database(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {"storage_root": "storage", "database_file": "storage/labcms.db", "backend": "supabase"},
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()

    assert not config.database_file.exists()
    assert not config.buckets_root.exists()


def test_initialize_raises_when_storage_is_not_writable(temp_config: AppConfig, monkeypatch) -> None:
    monkeypatch.setattr(config_module, "_ensure_writable_directory", lambda path: False)

    with pytest.raises(BootstrapError):
        Bootstrapper(temp_config).initialize()
