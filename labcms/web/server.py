"""FastAPI application powering the Lab CMS dashboard."""

from __future__ import annotations

import contextvars
import json
import logging
import mimetypes
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from urllib.parse import quote

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..logging_utils import DEFAULT_LOG_FORMAT
from ..services.entities import (
    UNEXPECTED_ERROR,
    EntityController,
    ImageUpload,
    build_controllers,
)
from ..services.events import (
    DB_EVENT,
    EVENT_ATTRIBUTE,
    STORAGE_EVENT,
    Event,
    emit_action_event,
    emit_row_event,
    emit_storage_event,
)
from ..services.file_tree import LOAD_FAILED, FileTreeBrowser, TreeNode
from ..services.platform import Platform, PlatformError
from ..services.schemas import ENTITY_SCHEMAS
from ..services.table import RecordTable
from ..ui.overview import collect_overview

_TEMPLATE_PATH = Path(__file__).parent / "templates" / "index.html"
_SLOW_EVENT_MS: Dict[str, float] = {DB_EVENT: 450.0, STORAGE_EVENT: 300.0}
_MAX_PER_PAGE = 100


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "labcms_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "labcms_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _format_actor_label(role: str, detail: Optional[str] = None) -> str:
    base = role.strip() if role else "actor"
    if detail is None:
        return base
    suffix = str(detail).strip()
    return f"{base}:{suffix}" if suffix else base


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and echo it back as a header."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor_hint = _format_actor_label("request", method.upper() if isinstance(method, str) else None)
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor_hint)

        async def send_with_request_id(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        correlation = _collect_correlation_context()
        for key, value in correlation.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("labcms.web.events"), {})


def _forward_platform_event(
    event_type: str,
    action: str,
    *,
    payload: Dict[str, Any],
    duration_ms: Optional[float] = None,
) -> None:
    details = dict(payload)
    correlation = _collect_correlation_context()
    if event_type == DB_EVENT:
        emit_row_event(
            details.pop("table", None),
            action,
            duration_ms=duration_ms,
            correlation=correlation,
            logger=EVENT_LOGGER,
            **details,
        )
    else:
        emit_storage_event(
            details.pop("bucket", None),
            action,
            duration_ms=duration_ms,
            correlation=correlation,
            logger=EVENT_LOGGER,
            **details,
        )


def _log_event(message: str, **details: Any) -> None:
    emit_action_event(message, correlation=_collect_correlation_context(), logger=EVENT_LOGGER, **details)


class DebugLogHandler(logging.Handler):
    """Keeps recent log records in memory for ``/api/debug/logs``.

    Repeated events with the same type, message and fields share one entry
    whose ``count`` and timings are updated in place.
    """

    def __init__(self, capacity: int = 500) -> None:
        super().__init__(level=logging.DEBUG)
        self._capacity = max(1, capacity)
        self._entries: Deque[Dict[str, Any]] = deque()
        self._entry_index: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._last_id = 0
        self.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

    @staticmethod
    def _build_key(event_type: str, message: str, fields: Dict[str, Any]) -> Tuple[str, str, str]:
        return (event_type, message, json.dumps(fields, sort_keys=True, default=str))

    @staticmethod
    def _severity(record: logging.LogRecord, event: Optional[Event]) -> Optional[str]:
        if record.levelno >= logging.ERROR or (event is not None and event.failed):
            return "error"
        if event is not None and event.duration_ms is not None:
            threshold = _SLOW_EVENT_MS.get(event.event_type)
            if threshold is not None and event.duration_ms >= threshold:
                return "warning"
        if record.levelno >= logging.WARNING:
            return "warning"
        return None

    def emit(self, record: logging.LogRecord) -> None:
        event = getattr(record, EVENT_ATTRIBUTE, None)
        if not isinstance(event, Event):
            event = None

        if event is not None:
            event_type, message = event.event_type, event.message
            fields = dict(event.fields)
            correlation = dict(event.correlation)
        else:
            event_type, message, fields = record.name, record.getMessage(), {}
            if record.exc_info:
                formatter = self.formatter or logging.Formatter()
                message = f"{message}\n{formatter.formatException(record.exc_info)}"
            correlation = {
                name: str(getattr(record, name))
                for name in ("request_id", "actor")
                if getattr(record, name, None)
            }
        duration_ms = event.duration_ms if event is not None else None
        severity = self._severity(record, event)
        key = self._build_key(event_type, message, fields)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()

        with self._lock:
            self._last_id += 1
            entry = self._entry_index.get(key)
            if entry is not None:
                self._entries.remove(entry)
                entry["count"] += 1
            else:
                entry = {"message": message, "event_type": event_type, "count": 1, "_key": key}
                if fields:
                    entry["fields"] = fields
                self._entry_index[key] = entry
            entry.update(id=self._last_id, timestamp=timestamp, level=record.levelname, logger=record.name)
            entry.update(correlation)
            if duration_ms is not None:
                entry["_total_ms"] = entry.get("_total_ms", 0.0) + duration_ms
                entry["duration_ms"] = duration_ms
                entry["average_duration_ms"] = entry["_total_ms"] / entry["count"]
            if severity and entry.get("severity") != "error":
                entry["severity"] = severity
            self._entries.append(entry)
            while len(self._entries) > self._capacity:
                oldest = self._entries.popleft()
                self._entry_index.pop(oldest["_key"], None)

    @staticmethod
    def _public(entry: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in entry.items() if not key.startswith("_")}

    def collect(self, after: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        with self._lock:
            data = [entry for entry in self._entries if not after or entry["id"] > after]
            return [self._public(entry) for entry in data[-limit:]]

    def export_text(self) -> str:
        entries = self.collect(limit=self._capacity)
        if not entries:
            return "# Debug log is currently empty.\n"

        lines: List[str] = []
        for entry in entries:
            line = f"[{entry['timestamp']}] {entry['level']:<7} {entry['event_type']}: {entry['message']}"
            if entry["count"] > 1:
                line += f" | count={entry['count']}"
            if entry.get("severity"):
                line += f" | severity={entry['severity']}"
            if entry.get("duration_ms") is not None:
                line += f" | duration_ms={entry['duration_ms']:.3f}"
            if entry.get("fields"):
                line += " | " + json.dumps(entry["fields"], ensure_ascii=False, sort_keys=True)
            lines.append(line)
        return "\n".join(lines) + "\n"

    @property
    def last_id(self) -> int:
        with self._lock:
            return self._last_id


class UpdateDirectivePayload(BaseModel):
    column: str
    value: Any = None
    condition_column: str = "id"
    condition_value: Any = None


class UpdatePayload(BaseModel):
    updates: List[UpdateDirectivePayload] = Field(default_factory=list)


class FolderPayload(BaseModel):
    name: str
    path: str = ""


class RenamePayload(BaseModel):
    path: str
    new_name: str


class MovePayload(BaseModel):
    source: str
    destination: str


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def create_app(
    platform: Platform,
    *,
    config: AppConfig,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    app = FastAPI(
        title="Lab CMS",
        description="Manage the research group's website content",
        root_path=normalized_root,
    )

    configure_emitter = getattr(platform, "configure_event_emitter", None)
    if callable(configure_emitter):
        configure_emitter(_forward_platform_event)
    root_logger = logging.getLogger()
    debug_handler = next(
        (handler for handler in root_logger.handlers if isinstance(handler, DebugLogHandler)),
        None,
    )
    if debug_handler is None:
        debug_handler = DebugLogHandler()
        root_logger.addHandler(debug_handler)
    app.state.debug_log_handler = debug_handler
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    controllers: Dict[str, EntityController] = build_controllers(platform, config)
    app.state.platform = platform
    app.state.controllers = controllers
    app.state.config = config
    index_html = _TEMPLATE_PATH.read_text(encoding="utf-8")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, error: Exception) -> JSONResponse:
        LOGGER.error(
            "Unhandled error during %s %s",
            request.method,
            request.url.path,
            exc_info=(type(error), error, error.__traceback__),
        )
        return JSONResponse(status_code=500, content={"detail": UNEXPECTED_ERROR})

    def _render_index_html(request: Request | None = None) -> str:
        resolved = normalized_root
        if request is not None:
            scope_root = _normalize_root_path(request.scope.get("root_path"))
            resolved = scope_root or resolved
        safe_value = json.dumps(resolved)[1:-1]
        return index_html.replace("__LABCMS_ROOT_PATH__", safe_value)

    def _require_controller(entity: str) -> EntityController:
        controller = controllers.get(entity)
        if controller is None:
            raise HTTPException(status_code=404, detail=f"Unknown collection '{entity}'")
        return controller

    def _require_record(controller: EntityController, record_id: int) -> Dict[str, Any]:
        try:
            record = controller.get(record_id)
        except PlatformError as error:
            raise HTTPException(status_code=502, detail=str(error)) from error
        if record is None:
            raise HTTPException(status_code=404, detail=f"{controller.singular} not found")
        return record

    def _guard(label: str, operation: Callable[[], Any]) -> Any:
        try:
            return operation()
        except (HTTPException, PlatformError):
            raise
        except Exception as error:
            LOGGER.exception("%s failed", label)
            raise HTTPException(status_code=500, detail=UNEXPECTED_ERROR) from error

    def _browser() -> FileTreeBrowser:
        return FileTreeBrowser(platform, config.bucket)

    def _locate(browser: FileTreeBrowser, path: str) -> TreeNode:
        node = browser.locate(path)
        if node is None:
            raise HTTPException(status_code=404, detail="File not found")
        return node

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        return HTMLResponse(_render_index_html(request))

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "backend": config.backend, "bucket": config.bucket}

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------
    @app.get("/api/entities")
    async def list_entities() -> Dict[str, Any]:
        return {"entities": [schema.to_dict() for schema in ENTITY_SCHEMAS.values()]}

    @app.get("/api/entities/{entity}")
    async def get_entity_table(
        entity: str,
        search: str = "",
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Dict[str, Any]:
        controller = _require_controller(entity)
        size = per_page if per_page is not None else config.items_per_page
        if size < 1 or size > _MAX_PER_PAGE:
            raise HTTPException(status_code=400, detail=f"per_page must be between 1 and {_MAX_PER_PAGE}")
        result = _guard(f"Loading {entity}", controller.fetch)
        if not result.ok:
            raise HTTPException(status_code=502, detail=result.error)
        table = RecordTable(result.records, items_per_page=size, schema=controller.schema)
        table.set_search(search)
        table.go_to_page(page)
        _log_event("Loaded collection", entity=entity, count=len(result.records), search=search)
        return {
            "entity": entity,
            "title": controller.schema.title,
            "table": table.view().to_dict(),
            "records": table.current_data,
        }

    @app.post("/api/entities/{entity}", status_code=status.HTTP_201_CREATED)
    async def create_entity(entity: str, request: Request) -> Dict[str, Any]:
        controller = _require_controller(entity)
        form = await request.form()
        image: Optional[ImageUpload] = None
        upload = form.get("image")
        if isinstance(upload, StarletteUploadFile) and upload.filename:
            image = ImageUpload(
                filename=upload.filename,
                data=await upload.read(),
                content_type=upload.content_type,
            )
        result = _guard(f"Adding to {entity}", lambda: controller.add(form, image))
        if not result.success:
            _log_event("Add rejected", entity=entity, error=result.error)
            raise HTTPException(status_code=400, detail=result.error)
        _log_event("Added record", entity=entity, record_id=(result.record or {}).get("id"))
        return result.to_dict()

    @app.patch("/api/entities/{entity}/{record_id}")
    async def update_entity(entity: str, record_id: int, payload: UpdatePayload) -> Dict[str, Any]:
        controller = _require_controller(entity)
        item = _require_record(controller, record_id)
        table = RecordTable([item], schema=controller.schema, on_update=controller.update)
        table.begin_edit(item)
        try:
            for directive in payload.updates:
                table.change_field(directive.column, directive.value)
        except ValueError as error:
            table.cancel_edit()
            raise HTTPException(status_code=400, detail=str(error)) from error
        result = _guard(f"Updating {entity}", table.save_edit)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        _log_event("Updated record", entity=entity, record_id=record_id, fields=[d.column for d in payload.updates])
        response = result.to_dict()
        response["record"] = _require_record(controller, record_id)
        return response

    @app.delete("/api/entities/{entity}/{record_id}")
    async def delete_entity(entity: str, record_id: int) -> Dict[str, Any]:
        controller = _require_controller(entity)
        item = _require_record(controller, record_id)
        table = RecordTable([item], schema=controller.schema, on_delete=controller.delete)
        table.request_delete(item)
        result = _guard(f"Deleting from {entity}", table.confirm_delete)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        _log_event("Deleted record", entity=entity, record_id=record_id)
        return result.to_dict()

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    @app.get("/api/files/tree")
    async def get_file_tree(path: str = "") -> Dict[str, Any]:
        browser = _browser()
        nodes = browser.listing(path)
        return {"bucket": config.bucket, "path": path.strip("/"), "nodes": [node.to_dict() for node in nodes]}

    @app.get("/api/files/preview")
    async def preview_file(path: str) -> Dict[str, Any]:
        browser = _browser()
        node = _locate(browser, path)
        if node.is_folder:
            raise HTTPException(status_code=400, detail="Select a file to view its contents")
        preview = browser.preview(node)
        if preview.kind == "error":
            raise HTTPException(status_code=502, detail=LOAD_FAILED)
        payload = preview.to_dict()
        if preview.kind == "image":
            payload["download_url"] = f"{normalized_root}/api/files/download?path={quote(node.path)}"
        return payload

    @app.get("/api/files/download")
    async def download_file(path: str) -> Response:
        try:
            data = platform.download(config.bucket, path.strip("/"))
        except PlatformError as error:
            raise HTTPException(status_code=404, detail=LOAD_FAILED) from error
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        filename = path.rstrip("/").rsplit("/", 1)[-1]
        return Response(
            content=data,
            media_type=media_type,
            headers={"Content-Disposition": f'inline; filename="{filename}"'},
        )

    @app.post("/api/files/upload", status_code=status.HTTP_201_CREATED)
    async def upload_file(file: UploadFile = File(...), path: str = Form("")) -> Dict[str, Any]:
        browser = _browser()
        browser.current_path = path.strip("/")
        data = await file.read()
        result = browser.upload(file.filename or "", data, content_type=file.content_type)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        _log_event("Uploaded file", path=result.details.get("path"), size=len(data))
        return result.to_dict()

    @app.post("/api/files/folders", status_code=status.HTTP_201_CREATED)
    async def create_folder(payload: FolderPayload) -> Dict[str, Any]:
        browser = _browser()
        browser.current_path = payload.path.strip("/")
        result = browser.create_folder(payload.name)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        return result.to_dict()

    @app.post("/api/files/rename")
    async def rename_file(payload: RenamePayload) -> Dict[str, Any]:
        browser = _browser()
        node = _locate(browser, payload.path)
        result = browser.rename(node, payload.new_name)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        return result.to_dict()

    @app.post("/api/files/move")
    async def move_file(payload: MovePayload) -> Dict[str, Any]:
        browser = _browser()
        source = _locate(browser, payload.source)
        destination = _locate(browser, payload.destination)
        result = browser.move(source, destination)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        return result.to_dict()

    @app.delete("/api/files")
    async def delete_file(path: str) -> Dict[str, Any]:
        browser = _browser()
        node = _locate(browser, path)
        result = browser.delete(node)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        _log_event("Deleted file", path=node.path, folder=node.is_folder)
        return result.to_dict()

    # ------------------------------------------------------------------
    # Overview and diagnostics
    # ------------------------------------------------------------------
    @app.get("/api/overview")
    async def get_overview() -> Dict[str, Any]:
        snapshot = _guard("Building overview", lambda: collect_overview(platform))
        return snapshot.to_dict()

    @app.get("/api/debug/logs")
    async def get_debug_logs(after: Optional[int] = None) -> Dict[str, Any]:
        handler: DebugLogHandler = app.state.debug_log_handler
        entries = handler.collect(after)
        next_marker = handler.last_id if entries else (after or handler.last_id)
        return {"logs": entries, "next": next_marker}

    @app.get("/api/debug/logs/download")
    async def download_debug_logs() -> Response:
        handler: DebugLogHandler = app.state.debug_log_handler
        label = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return Response(
            content=handler.export_text(),
            media_type="text/plain; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="labcms-debug-{label}.log"'},
        )

    return app


__all__ = ["DebugLogHandler", "create_app"]
