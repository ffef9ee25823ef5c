"""Configuration loading utilities for the Lab CMS application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".labcms_write_check"

DEFAULT_BUCKET = "spcai_images"
DEFAULT_PUBLIC_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_ITEMS_PER_PAGE = 6
BACKEND_OPTIONS: Tuple[str, ...] = ("local", "supabase")

_ENV_OVERRIDES: Dict[str, str] = {
    "LABCMS_BACKEND": "backend",
    "LABCMS_BUCKET": "bucket",
    "LABCMS_PUBLIC_BASE_URL": "public_base_url",
    "LABCMS_SUPABASE_URL": "supabase_url",
    "LABCMS_SUPABASE_KEY": "supabase_key",
}


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. The flag in the returned tuple tells
    whether a fallback had to be used. When nothing can be prepared the
    original ``preferred`` path is returned and the caller decides what to do.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _normalize_public_base_url(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        return DEFAULT_PUBLIC_BASE_URL
    return text.rstrip("/")


def _normalize_items_per_page(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return DEFAULT_ITEMS_PER_PAGE
    return number if number > 0 else DEFAULT_ITEMS_PER_PAGE


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings for the dashboard and its platform backend."""

    storage_root: Path
    database_file: Path
    bucket: str = DEFAULT_BUCKET
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL
    items_per_page: int = DEFAULT_ITEMS_PER_PAGE
    backend: str = "local"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    @property
    def buckets_root(self) -> Path:
        """Directory holding the local object-storage buckets."""

        return (self.storage_root / "buckets").resolve()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".labcms" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if _ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        if not _ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            if fallback_database != database_file and _ensure_writable_directory(
                fallback_database.parent
            ):
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database
            else:
                LOGGER.warning(
                    "Database location '%s' is not writable and no fallback is available.",
                    database_file,
                )

        backend = str(mapping.get("backend") or "local").strip().lower()
        if backend not in BACKEND_OPTIONS:
            raise ValueError(f"Unsupported backend '{backend}'")

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            bucket=str(mapping.get("bucket") or DEFAULT_BUCKET).strip(),
            public_base_url=_normalize_public_base_url(mapping.get("public_base_url")),
            items_per_page=_normalize_items_per_page(mapping.get("items_per_page")),
            backend=backend,
            supabase_url=mapping.get("supabase_url") or None,
            supabase_key=mapping.get("supabase_key") or None,
        )


def _apply_environment(raw_config: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged = dict(raw_config)
    for variable, field_name in _ENV_OVERRIDES.items():
        value = (environ.get(variable) or "").strip()
        if value:
            LOGGER.debug("Applying %s from environment", field_name)
            merged[field_name] = value
    return merged


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    raw_config = _apply_environment(raw_config, os.environ if environ is None else environ)
    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "BACKEND_OPTIONS", "DEFAULT_BUCKET", "load_config"]
