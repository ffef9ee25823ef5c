"""Contract for the hosted database-and-storage collaborator."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .schemas import Record


PUBLIC_URL_MARKER = "/storage/v1/object/public/"


class PlatformError(RuntimeError):
    """Raised when a row or blob operation is rejected by the platform."""


@dataclass
class StorageObject:
    """One entry of a bucket listing.

    Folders carry no ``metadata``; files carry at least a ``mimetype``.
    """

    name: str
    id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def mimetype(self) -> Optional[str]:
        if not self.metadata:
            return None
        return self.metadata.get("mimetype")


@dataclass
class ActionResult:
    """Outcome of a user action, shaped for a toast or an HTTP response."""

    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    record: Optional[Record] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: Optional[str] = None, **details: Any) -> "ActionResult":
        record = details.pop("record", None)
        return cls(success=True, message=message, record=record, details=details)

    @classmethod
    def failed(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        if self.message is not None:
            payload["message"] = self.message
        if self.record is not None:
            payload["record"] = self.record
        payload.update(self.details)
        return payload


class Platform(Protocol):
    """Rows and blobs, reachable through the operations below only."""

    def select(
        self,
        table: str,
        *,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Record]:
        """Return the rows of *table* matching every equality filter."""

    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        """Insert *record* and return the stored row including its ``id``."""

    def update(self, table: str, values: Mapping[str, Any], *, column: str, value: Any) -> int:
        """Apply *values* to rows where ``column == value``; return the row count."""

    def delete(self, table: str, *, column: str, value: Any) -> int:
        """Delete rows where ``column == value``; return the row count."""

    def list(
        self,
        bucket: str,
        prefix: str = "",
        *,
        sort_by: str = "name",
        ascending: bool = True,
    ) -> List[StorageObject]:
        """List the direct children of *prefix* in *bucket*."""

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
    ) -> str:
        """Store *data* at *path* and return the stored path."""

    def download(self, bucket: str, path: str) -> bytes:
        """Return the bytes stored at *path*."""

    def move(self, bucket: str, source: str, destination: str) -> None:
        """Move one object from *source* to *destination*."""

    def remove(self, bucket: str, paths: Sequence[str]) -> List[str]:
        """Remove the given objects and return the paths that were removed."""

    def get_public_url(self, bucket: str, path: str) -> str:
        """Return the public URL of *path*."""


def build_public_url(base_url: str, bucket: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{PUBLIC_URL_MARKER}{bucket}/{path.lstrip('/')}"


def extract_storage_path(url: Optional[str], bucket: str) -> Optional[str]:
    """Return the object path embedded in a public URL, or ``None`` if it does not match."""

    if not url or not isinstance(url, str):
        return None
    pattern = re.escape(f"{PUBLIC_URL_MARKER}{bucket}/") + r"(.+)"
    match = re.search(pattern, url)
    if match is None:
        return None
    return match.group(1)


def build_platform(config, *, event_emitter=None) -> Platform:
    """Create the platform selected by ``config.backend``."""

    if config.backend == "supabase":
        from .supabase_platform import SupabasePlatform

        return SupabasePlatform(config.supabase_url, config.supabase_key)

    from .local_platform import LocalPlatform

    return LocalPlatform(config, event_emitter=event_emitter)


__all__ = [
    "ActionResult",
    "PUBLIC_URL_MARKER",
    "Platform",
    "PlatformError",
    "StorageObject",
    "build_platform",
    "build_public_url",
    "extract_storage_path",
]
