"""Platform adapter for a hosted Supabase project."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .platform import PlatformError, StorageObject
from .schemas import Record


LOGGER = logging.getLogger(__name__)


class SupabasePlatform:
    """Forward row and blob operations to a ``supabase`` client.

    The client is created from *url* and *key* unless one is passed in, which
    lets callers share a client or substitute a fake one.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        *,
        client: Any = None,
    ) -> None:
        if client is None:
            if not url or not key:
                raise PlatformError("Supabase URL and key are required")
            from supabase import create_client

            client = create_client(url, key)
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def _run(self, description: str, operation):
        try:
            return operation()
        except PlatformError:
            raise
        except Exception as exc:
            LOGGER.debug("Supabase %s failed: %s", description, exc)
            message = getattr(exc, "message", None) or str(exc)
            raise PlatformError(message) from exc

    # Rows -------------------------------------------------------------
    def select(
        self,
        table: str,
        *,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Record]:
        def operation():
            query = self._client.table(table).select(",".join(columns) if columns else "*")
            for name, value in (filters or {}).items():
                query = query.eq(name, value)
            if order_by:
                query = query.order(order_by, desc=descending)
            return list(query.execute().data or [])

        return self._run(f"select from {table}", operation)

    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        def operation():
            rows = self._client.table(table).insert(dict(record)).execute().data or []
            if not rows:
                raise PlatformError(f"Insert into {table} returned no row")
            return rows[0]

        return self._run(f"insert into {table}", operation)

    def update(self, table: str, values: Mapping[str, Any], *, column: str, value: Any) -> int:
        if not values:
            raise PlatformError("No values to update")

        def operation():
            response = self._client.table(table).update(dict(values)).eq(column, value).execute()
            return len(response.data or [])

        return self._run(f"update {table}", operation)

    def delete(self, table: str, *, column: str, value: Any) -> int:
        def operation():
            response = self._client.table(table).delete().eq(column, value).execute()
            return len(response.data or [])

        return self._run(f"delete from {table}", operation)

    # Blobs ------------------------------------------------------------
    def _bucket(self, bucket: str):
        return self._client.storage.from_(bucket)

    def list(
        self,
        bucket: str,
        prefix: str = "",
        *,
        sort_by: str = "name",
        ascending: bool = True,
    ) -> List[StorageObject]:
        options: Dict[str, Any] = {
            "sortBy": {"column": sort_by, "order": "asc" if ascending else "desc"}
        }

        def operation():
            entries = self._bucket(bucket).list(prefix or "", options) or []
            return [
                StorageObject(
                    name=entry.get("name", ""),
                    id=entry.get("id"),
                    metadata=entry.get("metadata"),
                )
                for entry in entries
            ]

        return self._run(f"list {bucket}/{prefix}", operation)

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
    ) -> str:
        file_options = {"content-type": content_type} if content_type else None

        def operation():
            if file_options:
                self._bucket(bucket).upload(path, data, file_options=file_options)
            else:
                self._bucket(bucket).upload(path, data)
            return path

        return self._run(f"upload {bucket}/{path}", operation)

    def download(self, bucket: str, path: str) -> bytes:
        return self._run(
            f"download {bucket}/{path}", lambda: self._bucket(bucket).download(path)
        )

    def move(self, bucket: str, source: str, destination: str) -> None:
        self._run(
            f"move {bucket}/{source}",
            lambda: self._bucket(bucket).move(source, destination),
        )

    def remove(self, bucket: str, paths: Sequence[str]) -> List[str]:
        def operation():
            removed = self._bucket(bucket).remove(list(paths)) or []
            return [entry.get("name", "") for entry in removed]

        return self._run(f"remove from {bucket}", operation)

    def get_public_url(self, bucket: str, path: str) -> str:
        url = self._run(
            f"public url {bucket}/{path}", lambda: self._bucket(bucket).get_public_url(path)
        )
        # Older client releases append a bare "?" to the URL.
        return url.rstrip("?") if isinstance(url, str) else url


__all__ = ["SupabasePlatform"]
