"""Platform implementation backed by SQLite and plain directories."""

from __future__ import annotations

import contextlib
import json
import logging
import mimetypes
import re
import shutil
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import AppConfig
from .events import DB_EVENT, STORAGE_EVENT
from .platform import PlatformError, StorageObject, build_public_url
from .schemas import ENTITY_SCHEMAS, Record


LOGGER = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(value: str, *, kind: str) -> str:
    if not isinstance(value, str) or not _IDENTIFIER.match(value):
        raise PlatformError(f"Invalid {kind} name '{value}'")
    return value


class LocalPlatform:
    """Rows in the bootstrapped SQLite database, blobs under ``buckets_root``."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._buckets_root = config.buckets_root
        self._public_base_url = config.public_base_url
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_event(self, event_type: str, action: str, **payload: Any):
        """Emit a structured debug event capturing execution time for an operation."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                event_type,
                action,
                payload=filtered,
                duration_ms=duration_ms,
            )

    # ------------------------------------------------------------------
    # SQLite helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | Tuple[Any, ...] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters) if parameters else ()
        with self._track_event(
            DB_EVENT,
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            try:
                cursor = connection.execute(statement, params)
            except sqlite3.Error as exc:
                raise PlatformError(str(exc)) from exc
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    @contextlib.contextmanager
    def _connect(self):
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise PlatformError(f"Unable to open database: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    def _table_columns(self, connection: sqlite3.Connection, table: str) -> List[str]:
        _check_identifier(table, kind="table")
        cursor = self._execute(
            connection,
            f"PRAGMA table_info({table})",
            action=f"{table}.columns",
            table=table,
        )
        columns = [row["name"] for row in cursor.fetchall()]
        if not columns:
            raise PlatformError(f'relation "{table}" does not exist')
        return columns

    @staticmethod
    def _check_columns(table: str, names: Sequence[str], known: Sequence[str]) -> None:
        for name in names:
            _check_identifier(name, kind="column")
            if name not in known:
                raise PlatformError(
                    f"Could not find the '{name}' column of '{table}'"
                )

    @staticmethod
    def _encode_value(value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (list, tuple)):
            return json.dumps(list(value))
        return value

    @staticmethod
    def _decode_row(table: str, row: sqlite3.Row) -> Record:
        record: Record = dict(row)
        schema = ENTITY_SCHEMAS.get(table)
        if schema is None:
            return record
        for name in schema.list_fields:
            raw = record.get(name)
            if isinstance(raw, str):
                try:
                    decoded = json.loads(raw)
                except ValueError:
                    decoded = [raw] if raw else []
                record[name] = decoded if isinstance(decoded, list) else [decoded]
        for name in schema.flag_fields:
            if name in record and record[name] is not None:
                record[name] = bool(record[name])
        return record

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------
    def select(
        self,
        table: str,
        *,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Record]:
        filters = dict(filters or {})
        with self._connect() as connection:
            known = self._table_columns(connection, table)
            selected = list(columns) if columns else ["*"]
            if columns:
                self._check_columns(table, selected, known)
            self._check_columns(table, list(filters), known)
            statement = f"SELECT {', '.join(selected)} FROM {table}"
            params: List[Any] = []
            if filters:
                clauses = []
                for name, value in filters.items():
                    clauses.append(f"{name} = ?")
                    params.append(self._encode_value(value))
                statement += " WHERE " + " AND ".join(clauses)
            if order_by:
                self._check_columns(table, [order_by], known)
                statement += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
            cursor = self._execute(
                connection, statement, params, action=f"{table}.select", table=table
            )
            rows = [self._decode_row(table, row) for row in cursor.fetchall()]
        LOGGER.debug("Selected %s row(s) from %s", len(rows), table)
        return rows

    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        values = {key: value for key, value in record.items() if key != "id"}
        with self._connect() as connection:
            known = self._table_columns(connection, table)
            self._check_columns(table, list(values), known)
            if values:
                names = ", ".join(values)
                placeholders = ", ".join("?" for _ in values)
                statement = f"INSERT INTO {table}({names}) VALUES ({placeholders})"
            else:
                statement = f"INSERT INTO {table} DEFAULT VALUES"
            cursor = self._execute(
                connection,
                statement,
                [self._encode_value(value) for value in values.values()],
                action=f"{table}.insert",
                table=table,
            )
            row_id = int(cursor.lastrowid)
            cursor = self._execute(
                connection,
                f"SELECT * FROM {table} WHERE id = ?",
                (row_id,),
                action=f"{table}.fetch_inserted",
                table=table,
            )
            row = cursor.fetchone()
        LOGGER.debug("Inserted row id=%s into %s", row_id, table)
        return self._decode_row(table, row)

    def update(self, table: str, values: Mapping[str, Any], *, column: str, value: Any) -> int:
        if not values:
            raise PlatformError("No values to update")
        with self._connect() as connection:
            known = self._table_columns(connection, table)
            self._check_columns(table, list(values) + [column], known)
            assignments = ", ".join(f"{name} = ?" for name in values)
            params = [self._encode_value(item) for item in values.values()]
            params.append(self._encode_value(value))
            cursor = self._execute(
                connection,
                f"UPDATE {table} SET {assignments} WHERE {column} = ?",
                params,
                action=f"{table}.update",
                table=table,
            )
            count = max(cursor.rowcount, 0)
        LOGGER.debug("Updated %s row(s) of %s where %s=%s", count, table, column, value)
        return count

    def delete(self, table: str, *, column: str, value: Any) -> int:
        with self._connect() as connection:
            known = self._table_columns(connection, table)
            self._check_columns(table, [column], known)
            cursor = self._execute(
                connection,
                f"DELETE FROM {table} WHERE {column} = ?",
                (self._encode_value(value),),
                action=f"{table}.delete",
                table=table,
            )
            count = max(cursor.rowcount, 0)
        LOGGER.debug("Deleted %s row(s) of %s where %s=%s", count, table, column, value)
        return count

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------
    def _bucket_root(self, bucket: str) -> Path:
        if not bucket or "/" in bucket or bucket in {".", ".."}:
            raise PlatformError(f"Invalid bucket name '{bucket}'")
        root = (self._buckets_root / bucket).resolve()
        if not root.is_dir():
            raise PlatformError(f"Bucket not found: {bucket}")
        return root

    def _resolve_object(self, bucket: str, path: str) -> Tuple[Path, Path]:
        root = self._bucket_root(bucket)
        relative = (path or "").strip("/")
        candidate = (root / relative).resolve() if relative else root
        try:
            candidate.relative_to(root)
        except ValueError:
            raise PlatformError(f"Invalid object path '{path}'") from None
        return root, candidate

    @staticmethod
    def _object_metadata(path: Path) -> Dict[str, Any]:
        info = path.stat()
        mimetype = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        modified = datetime.fromtimestamp(info.st_mtime, tz=timezone.utc)
        return {
            "mimetype": mimetype,
            "size": info.st_size,
            "lastModified": modified.isoformat(),
        }

    def list(
        self,
        bucket: str,
        prefix: str = "",
        *,
        sort_by: str = "name",
        ascending: bool = True,
    ) -> List[StorageObject]:
        with self._track_event(STORAGE_EVENT, "list", bucket=bucket, prefix=prefix) as event:
            root, directory = self._resolve_object(bucket, prefix)
            if not directory.is_dir():
                event["count"] = 0
                return []
            entries: List[StorageObject] = []
            for child in directory.iterdir():
                relative = child.relative_to(root).as_posix()
                if child.is_dir():
                    entries.append(StorageObject(name=child.name))
                else:
                    entries.append(
                        StorageObject(
                            name=child.name,
                            id=relative,
                            metadata=self._object_metadata(child),
                        )
                    )
            if sort_by == "name":
                entries.sort(key=lambda entry: entry.name, reverse=not ascending)
            event["count"] = len(entries)
        return entries

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
    ) -> str:
        with self._track_event(
            STORAGE_EVENT,
            "upload",
            bucket=bucket,
            path=path,
            size=len(data),
            content_type=content_type,
        ):
            root, target = self._resolve_object(bucket, path)
            if target == root:
                raise PlatformError("Object path is required")
            if target.exists():
                raise PlatformError("The resource already exists")
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            except OSError as exc:
                raise PlatformError(f"Upload failed: {exc}") from exc
        LOGGER.debug("Stored %s byte(s) at %s/%s", len(data), bucket, path)
        return target.relative_to(root).as_posix()

    def download(self, bucket: str, path: str) -> bytes:
        with self._track_event(STORAGE_EVENT, "download", bucket=bucket, path=path) as event:
            _root, target = self._resolve_object(bucket, path)
            if not target.is_file():
                raise PlatformError("Object not found")
            try:
                data = target.read_bytes()
            except OSError as exc:
                raise PlatformError(f"Download failed: {exc}") from exc
            event["size"] = len(data)
        return data

    def move(self, bucket: str, source: str, destination: str) -> None:
        with self._track_event(
            STORAGE_EVENT, "move", bucket=bucket, source=source, destination=destination
        ):
            root, source_path = self._resolve_object(bucket, source)
            _root, destination_path = self._resolve_object(bucket, destination)
            if source_path == root or not source_path.exists():
                raise PlatformError("Object not found")
            if destination_path == root or destination_path.exists():
                raise PlatformError("The resource already exists")
            if source_path in destination_path.parents:
                raise PlatformError("Cannot move an object into itself")
            try:
                destination_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(source_path), str(destination_path))
            except OSError as exc:
                raise PlatformError(f"Move failed: {exc}") from exc
            self._prune_empty_parents(root, source_path.parent)
        LOGGER.debug("Moved %s/%s to %s", bucket, source, destination)

    def remove(self, bucket: str, paths: Sequence[str]) -> List[str]:
        removed: List[str] = []
        with self._track_event(
            STORAGE_EVENT, "remove", bucket=bucket, requested=len(paths)
        ) as event:
            for path in paths:
                root, target = self._resolve_object(bucket, path)
                if target == root or not target.is_file():
                    continue
                try:
                    target.unlink()
                except OSError as exc:
                    raise PlatformError(f"Remove failed: {exc}") from exc
                removed.append(target.relative_to(root).as_posix())
                self._prune_empty_parents(root, target.parent)
            event["removed"] = len(removed)
        LOGGER.debug("Removed %s object(s) from %s", len(removed), bucket)
        return removed

    def get_public_url(self, bucket: str, path: str) -> str:
        return build_public_url(self._public_base_url, bucket, path)

    @staticmethod
    def _prune_empty_parents(root: Path, directory: Path) -> None:
        # Object stores have no empty folders; mirror that on disk.
        current = directory
        while current != root and root in current.parents:
            try:
                current.rmdir()
            except OSError:
                break
            current = current.parent


__all__ = ["LocalPlatform"]
