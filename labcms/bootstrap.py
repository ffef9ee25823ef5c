"""Bootstrap logic that prepares runtime directories and the local SQLite database."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


_SCHEMA_SCRIPT = """
CREATE TABLE IF NOT EXISTS affiliations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    type TEXT,
    url TEXT,
    image TEXT
);

CREATE TABLE IF NOT EXISTS faculty (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT,
    bio TEXT,
    image TEXT,
    scholar TEXT,
    website TEXT,
    linkedin TEXT,
    twitter TEXT
);

CREATE TABLE IF NOT EXISTS members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    title TEXT,
    advisor TEXT,
    email TEXT,
    image TEXT,
    github TEXT,
    linkedin TEXT,
    scholar TEXT,
    twitter TEXT,
    website TEXT,
    research_interests TEXT NOT NULL DEFAULT '[]',
    type TEXT
);

CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    title TEXT,
    short_description TEXT,
    link TEXT,
    is_featured INTEGER NOT NULL DEFAULT 0,
    is_open_source INTEGER NOT NULL DEFAULT 0,
    is_ours INTEGER NOT NULL DEFAULT 0,
    research_status TEXT,
    status TEXT,
    type TEXT
);

CREATE TABLE IF NOT EXISTS publications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    venue TEXT,
    type TEXT,
    date TEXT,
    authors TEXT NOT NULL DEFAULT '[]',
    tags TEXT NOT NULL DEFAULT '[]',
    links TEXT NOT NULL DEFAULT '[]'
);
"""

# Columns introduced after the first release; added in place on older databases.
_LATE_COLUMNS = (
    ("members", "type", "TEXT"),
    ("projects", "research_status", "TEXT"),
)


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence (backend=%s)", self._config.backend)
        self._ensure_directories()
        if self._config.backend == "local":
            self._ensure_database()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        storage_root = self._config.storage_root
        if not config_module._ensure_writable_directory(storage_root):
            raise BootstrapError(f"Storage directory '{storage_root}' is not writable")
        LOGGER.debug("Ensured directory exists: %s", storage_root)

        if self._config.backend != "local":
            return
        bucket_root = self._config.buckets_root / self._config.bucket
        if not config_module._ensure_writable_directory(bucket_root):
            raise BootstrapError(f"Bucket directory '{bucket_root}' is not writable")
        LOGGER.debug("Ensured bucket directory exists: %s", bucket_root)

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring database schema at %s", self._config.database_file)
        try:
            connection = sqlite3.connect(self._config.database_file)
        except sqlite3.Error as error:
            raise BootstrapError(
                f"Unable to open database '{self._config.database_file}': {error}"
            ) from error
        try:
            cursor = connection.cursor()
            cursor.executescript(_SCHEMA_SCRIPT)
            connection.commit()

            for table, column, column_type in _LATE_COLUMNS:
                try:
                    cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
                except sqlite3.OperationalError as error:
                    message = str(error).lower()
                    if "duplicate column name" not in message:
                        raise
                else:
                    LOGGER.info("Added missing column %s.%s", table, column)
            connection.commit()
        finally:
            connection.close()


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
