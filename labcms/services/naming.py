"""Utility helpers for consistent object and field naming."""

from __future__ import annotations

import uuid
from typing import Any, Optional

__all__ = [
    "build_image_storage_path",
    "file_extension",
    "format_publication_date",
    "join_storage_path",
    "replace_last_segment",
]


def file_extension(filename: str) -> str:
    """Return the text after the last dot of *filename* (the whole name when there is none)."""

    return filename.rsplit(".", 1)[-1] if filename else ""


def build_image_storage_path(folder: str, filename: str, *, token: Optional[str] = None) -> str:
    """Return ``<folder>/<random id>.<original extension>`` for an uploaded image."""

    identifier = token or uuid.uuid4().hex
    extension = file_extension(filename)
    name = f"{identifier}.{extension}" if extension else identifier
    return join_storage_path(folder, name)


def join_storage_path(*parts: str) -> str:
    """Join object-store path segments, skipping empty ones."""

    cleaned = [part.strip("/") for part in parts if part and part.strip("/")]
    return "/".join(cleaned)


def replace_last_segment(path: str, new_name: str) -> str:
    """Return *path* with its final ``/`` segment swapped for *new_name*."""

    return "/".join(path.split("/")[:-1] + [new_name])


def format_publication_date(month: Any, year: Any) -> str:
    """Return the ``MM, YYYY`` form stored for publications."""

    return f"{str(month).rjust(2, '0')}, {year}"
