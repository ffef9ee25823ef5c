"""Searchable, paginated, inline-editable view over a list of records."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .platform import ActionResult
from .schemas import DisplayValue, EntitySchema, Record


LOGGER = logging.getLogger(__name__)

DEFAULT_ITEMS_PER_PAGE = 6
TRUNCATE_AT = 40

CHECK_GLYPH = "✓"
CROSS_GLYPH = "✗"


class CellKind(str, Enum):
    CHIPS = "chips"
    LIST = "list"
    CHECK = "check"
    LINK = "link"
    TEXT = "text"


@dataclass
class Cell:
    """One rendered value: what to show and how to show it."""

    kind: CellKind
    value: DisplayValue
    text: str = ""
    expandable: bool = False
    items: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind.value, "text": self.text}
        if self.kind in (CellKind.CHIPS, CellKind.LIST):
            payload["items"] = list(self.items)
        if self.kind is CellKind.CHECK:
            payload["checked"] = bool(self.value)
        if self.kind is CellKind.LINK:
            payload["href"] = self.value
        if self.expandable:
            payload["expandable"] = True
            payload["full_text"] = "" if self.value is None else str(self.value)
        return payload


@dataclass(frozen=True)
class UpdateDirective:
    column: str
    value: Any
    condition_column: str = "id"
    condition_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column": self.column,
            "value": self.value,
            "condition_column": self.condition_column,
            "condition_value": self.condition_value,
        }


@dataclass
class TableView:
    """Snapshot of everything a front-end needs to draw the current page."""

    headers: List[str]
    labels: Dict[str, str]
    image_field: Optional[str]
    rows: List[Dict[str, Any]]
    page: int
    total_pages: int
    items_per_page: int
    total_count: int
    filtered_count: int
    search: str = ""
    editing_id: Any = None
    pending_delete_id: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "headers": list(self.headers),
            "labels": dict(self.labels),
            "image_field": self.image_field,
            "rows": list(self.rows),
            "page": self.page,
            "total_pages": self.total_pages,
            "items_per_page": self.items_per_page,
            "total_count": self.total_count,
            "filtered_count": self.filtered_count,
            "search": self.search,
            "editing_id": self.editing_id,
            "pending_delete_id": self.pending_delete_id,
        }


def header_label(header: str) -> str:
    """Turn ``shortDescription`` or ``short_description`` into ``Short Description``."""

    spaced = re.sub(r"([A-Z])", r" \1", header).replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


def _search_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_search_text(item) for item in value)
    return str(value)


def filter_records(data: Sequence[Record], term: str) -> List[Record]:
    """Return the records with a non-``id`` field containing *term*, ignoring case."""

    if not term:
        return list(data)
    needle = term.lower()
    return [
        record
        for record in data
        if any(
            key != "id" and value and needle in _search_text(value).lower()
            for key, value in record.items()
        )
    ]


def page_count(total: int, per_page: int) -> int:
    return math.ceil(total / per_page) if per_page > 0 else 0


def paginate(records: Sequence[Record], page: int, per_page: int) -> List[Record]:
    """Return the 1-based *page* of *records*."""

    start = (page - 1) * per_page
    return list(records[start:start + per_page])


def render_cell(header: str, value: DisplayValue) -> Cell:
    """Pick the presentation for one value; the first matching rule wins."""

    if isinstance(value, (list, tuple)):
        items = [_search_text(item) for item in value]
        kind = CellKind.CHIPS if header == "tags" else CellKind.LIST
        return Cell(kind, list(value), text=", ".join(items), items=items)
    if isinstance(value, bool) and header.startswith("is_"):
        return Cell(CellKind.CHECK, value, text=CHECK_GLYPH if value else CROSS_GLYPH)
    if isinstance(value, str) and value.startswith("http"):
        return Cell(CellKind.LINK, value, text=value)
    content = "" if value is None or value == "" else _search_text(value)
    if len(content) <= TRUNCATE_AT:
        return Cell(CellKind.TEXT, value, text=content)
    return Cell(CellKind.TEXT, value, text=f"{content[:TRUNCATE_AT]}...", expandable=True)


class RecordTable:
    """View state for one collection: search, page, edit session and delete prompt.

    The table never loads anything itself. Callers hand it records and wire
    ``on_update``/``on_delete`` to storage; ``on_reload`` may return the
    refreshed list, which then replaces ``data``.
    """

    def __init__(
        self,
        data: Optional[Sequence[Record]] = None,
        *,
        items_per_page: int = DEFAULT_ITEMS_PER_PAGE,
        schema: Optional[EntitySchema] = None,
        on_delete: Optional[Callable[[Record], ActionResult]] = None,
        on_update: Optional[Callable[[List[UpdateDirective], Record], Any]] = None,
        on_reload: Optional[Callable[[], Optional[Sequence[Record]]]] = None,
    ) -> None:
        if items_per_page < 1:
            raise ValueError("items_per_page must be at least 1")
        self._data: List[Record] = list(data or [])
        self.items_per_page = items_per_page
        self.schema = schema
        self.on_delete = on_delete
        self.on_update = on_update
        self.on_reload = on_reload

        self.current_page = 1
        self.search_term = ""
        self.editing_id: Any = None
        self.edited_data: Record = {}
        self.updated_fields: List[str] = []
        self.delete_candidate: Optional[Record] = None

    # Data ---------------------------------------------------------------
    @property
    def data(self) -> List[Record]:
        return self._data

    def set_data(self, data: Sequence[Record]) -> None:
        self._data = list(data)
        self.current_page = self._clamp(self.current_page)

    @property
    def headers(self) -> List[str]:
        if self.schema is not None:
            return [name for name in self.schema.field_names if name != "id"]
        if not self._data:
            return []
        return [key for key in self._data[0].keys() if key != "id"]

    @property
    def image_field(self) -> Optional[str]:
        for header in self.headers:
            if "image" in header.lower():
                return header
        return None

    @property
    def display_headers(self) -> List[str]:
        image_field = self.image_field
        return [header for header in self.headers if header != image_field]

    def label_for(self, header: str) -> str:
        if self.schema is not None:
            spec = self.schema.get_field(header)
            if spec is not None:
                return spec.label
        return header_label(header)

    # Search and pagination ----------------------------------------------
    def set_search(self, term: str) -> None:
        self.search_term = term or ""
        self.current_page = 1

    @property
    def filtered_data(self) -> List[Record]:
        return filter_records(self._data, self.search_term)

    @property
    def total_pages(self) -> int:
        return page_count(len(self.filtered_data), self.items_per_page)

    def _clamp(self, page: int) -> int:
        return min(max(page, 1), max(self.total_pages, 1))

    def go_to_page(self, page: int) -> int:
        self.current_page = self._clamp(page)
        return self.current_page

    def next_page(self) -> int:
        return self.go_to_page(self.current_page + 1)

    def previous_page(self) -> int:
        return self.go_to_page(self.current_page - 1)

    @property
    def current_data(self) -> List[Record]:
        return paginate(self.filtered_data, self.current_page, self.items_per_page)

    # Inline edit --------------------------------------------------------
    def begin_edit(self, row: Record) -> None:
        self.editing_id = row.get("id")
        self.edited_data = dict(row)
        self.updated_fields = []

    def is_editing(self, row: Record) -> bool:
        return self.editing_id is not None and row.get("id") == self.editing_id

    def change_field(self, name: str, value: Any) -> None:
        if self.editing_id is None:
            LOGGER.warning("Ignoring change to '%s' outside of an edit session", name)
            return
        if name == "id" or name == self.image_field:
            raise ValueError(f"Column '{name}' cannot be edited inline")
        if self.schema is not None:
            spec = self.schema.get_field(name)
            if spec is not None and not spec.editable:
                raise ValueError(f"Column '{name}' cannot be edited inline")
        self.edited_data[name] = value
        if name not in self.updated_fields:
            self.updated_fields.append(name)

    def cancel_edit(self) -> None:
        self.editing_id = None
        self.edited_data = {}
        self.updated_fields = []

    def build_directives(self) -> List[UpdateDirective]:
        return [
            UpdateDirective(
                column=name,
                value=self.edited_data.get(name),
                condition_column="id",
                condition_value=self.editing_id,
            )
            for name in self.updated_fields
        ]

    def save_edit(self) -> Any:
        """Push the touched fields through ``on_update`` and reload.

        The session is cleared whatever the outcome; the update callback's
        return value is handed back so callers can report failures.
        """

        result = None
        try:
            if self.on_update is not None and self.editing_id is not None:
                directives = self.build_directives()
                result = self.on_update(directives, dict(self.edited_data))
                self.reload()
        finally:
            self.cancel_edit()
        return result

    # Delete -------------------------------------------------------------
    def request_delete(self, row: Record) -> None:
        self.delete_candidate = row

    def cancel_delete(self) -> None:
        self.delete_candidate = None

    def confirm_delete(self) -> Optional[ActionResult]:
        candidate = self.delete_candidate
        try:
            if self.on_delete is None or candidate is None:
                LOGGER.warning("Delete confirmed without a delete handler or candidate")
                return None
            result = self.on_delete(candidate)
            if result.success:
                if self.on_reload is None:
                    return result
                self.reload()
                return ActionResult.ok("Item deleted successfully.")
            if result.error:
                LOGGER.error("Error deleting item: %s", result.error)
                return ActionResult.failed(f"Failed to delete item: {result.error}")
            return result
        finally:
            self.delete_candidate = None

    # Reload and rendering -----------------------------------------------
    def reload(self) -> None:
        if self.on_reload is None:
            return
        refreshed = self.on_reload()
        if refreshed is not None:
            self.set_data(refreshed)

    def render_row(self, row: Record) -> Dict[str, Any]:
        image_field = self.image_field
        rendered: Dict[str, Any] = {
            "id": row.get("id"),
            "cells": {header: render_cell(header, row.get(header)).to_dict() for header in self.display_headers},
        }
        if image_field is not None:
            image = row.get(image_field)
            rendered["image"] = image
            rendered["image_fallback"] = image[:1] if isinstance(image, str) and image else "A"
        return rendered

    def view(self) -> TableView:
        filtered = self.filtered_data
        headers = self.display_headers
        return TableView(
            headers=headers,
            labels={header: self.label_for(header) for header in headers},
            image_field=self.image_field,
            rows=[
                self.render_row(row)
                for row in paginate(filtered, self.current_page, self.items_per_page)
            ],
            page=self.current_page,
            total_pages=page_count(len(filtered), self.items_per_page),
            items_per_page=self.items_per_page,
            total_count=len(self._data),
            filtered_count=len(filtered),
            search=self.search_term,
            editing_id=self.editing_id,
            pending_delete_id=self.delete_candidate.get("id") if self.delete_candidate else None,
        )


__all__ = [
    "Cell",
    "CellKind",
    "DEFAULT_ITEMS_PER_PAGE",
    "RecordTable",
    "TableView",
    "UpdateDirective",
    "filter_records",
    "header_label",
    "page_count",
    "paginate",
    "render_cell",
]
