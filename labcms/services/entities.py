"""CRUD controllers for the managed collections."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..config import AppConfig
from .naming import build_image_storage_path, format_publication_date
from .platform import ActionResult, Platform, PlatformError, extract_storage_path
from .schemas import (
    AFFILIATIONS,
    FACULTY,
    MEMBERS,
    PROJECTS,
    PUBLICATIONS,
    EntitySchema,
    FieldKind,
    Record,
)
from .table import UpdateDirective


LOGGER = logging.getLogger(__name__)

UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."

_TRUE_VALUES = {"true", "1", "yes", "on"}


@dataclass
class FetchResult:
    records: List[Record] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImageUpload:
    filename: str
    data: bytes
    content_type: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.filename)


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def parse_list(value: Any) -> List[str]:
    """Accept a list, a JSON array string or a comma separated string."""

    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    text = str(value).strip()
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            return [str(item) for item in decoded]
    return [part.strip() for part in text.split(",") if part.strip()]


class EntityController:
    """Fetch, add, update and delete rows of one collection.

    Every operation reports through ``ActionResult``/``FetchResult``;
    ``PlatformError`` never escapes.
    """

    singular = "Item"

    def __init__(self, platform: Platform, schema: EntitySchema, *, bucket: str) -> None:
        self._platform = platform
        self.schema = schema
        self.bucket = bucket

    @property
    def table(self) -> str:
        return self.schema.table

    # Reading ------------------------------------------------------------
    def fetch(self) -> FetchResult:
        try:
            records = self._platform.select(self.table)
        except PlatformError as error:
            LOGGER.error("Failed to load %s: %s", self.table, error)
            return FetchResult(error=str(error))
        return FetchResult(records=records)

    def get(self, record_id: Any) -> Optional[Record]:
        rows = self._platform.select(self.table, filters={"id": record_id})
        return rows[0] if rows else None

    # Field mapping hooks ------------------------------------------------
    def build_record(self, fields: Mapping[str, Any]) -> Record:
        """Translate submitted form fields into a row, excluding the image."""

        record: Record = {}
        for spec in self.schema.fields:
            if spec.kind is FieldKind.IMAGE:
                continue
            value = fields.get(spec.name)
            if spec.is_list:
                value = parse_list(value)
            elif spec.is_flag:
                value = parse_flag(value)
            record[spec.name] = value
        return record

    def prepare_update(self, values: Dict[str, Any]) -> Dict[str, Any]:
        for name, value in list(values.items()):
            spec = self.schema.get_field(name)
            if spec is None:
                continue
            if spec.is_list and not isinstance(value, list):
                values[name] = parse_list(value)
            elif spec.is_flag and not isinstance(value, bool):
                values[name] = parse_flag(value)
        return values

    def validate(self, record: Mapping[str, Any]) -> Optional[str]:
        for spec in self.schema.fields:
            value = record.get(spec.name)
            if spec.required and (value is None or (isinstance(value, str) and not value.strip())):
                return f"{spec.label} is required."
            if spec.choices and value not in (None, "") and value not in spec.choices:
                return f"Invalid {spec.label.lower()}: '{value}'."
        return None

    # Writing ------------------------------------------------------------
    def _upload_image(self, image: ImageUpload) -> str:
        folder = self.schema.image_folder or self.table
        path = build_image_storage_path(folder, image.filename)
        self._platform.upload(self.bucket, path, image.data, content_type=image.content_type)
        LOGGER.debug("Uploaded %s image to %s", self.table, path)
        return path

    def _discard_upload(self, path: str) -> None:
        try:
            self._platform.remove(self.bucket, [path])
        except PlatformError as error:
            LOGGER.warning("Could not remove orphaned image %s: %s", path, error)
        else:
            LOGGER.info("Removed image %s after failed insert", path)

    def add(self, fields: Mapping[str, Any], image: Optional[ImageUpload] = None) -> ActionResult:
        record = self.build_record(fields)
        problem = self.validate(record)
        if problem:
            return ActionResult.failed(problem)

        image_field = self.schema.image_field
        uploaded: Optional[str] = None
        if image_field is not None:
            record[image_field] = None
            if image:
                try:
                    uploaded = self._upload_image(image)
                    record[image_field] = self._platform.get_public_url(self.bucket, uploaded)
                except PlatformError as error:
                    LOGGER.error("Image upload for %s failed: %s", self.table, error)
                    if uploaded is not None:
                        self._discard_upload(uploaded)
                    return ActionResult.failed(str(error))

        try:
            stored = self._platform.insert(self.table, record)
        except PlatformError as error:
            LOGGER.error("Insert into %s failed: %s", self.table, error)
            if uploaded is not None:
                self._discard_upload(uploaded)
            return ActionResult.failed(str(error))
        LOGGER.info("Added %s row id=%s", self.table, stored.get("id"))
        return ActionResult.ok(f"{self.singular} added successfully.", record=stored)

    def update(self, directives: Sequence[UpdateDirective], item: Mapping[str, Any]) -> ActionResult:
        values: Dict[str, Any] = {}
        for directive in directives:
            values[directive.column] = directive.value
        if not values:
            return ActionResult.ok("Nothing to update.")
        values = self.prepare_update(values)
        try:
            self._platform.update(self.table, values, column="id", value=item.get("id"))
        except PlatformError as error:
            LOGGER.error("Update of %s id=%s failed: %s", self.table, item.get("id"), error)
            return ActionResult.failed(str(error))
        LOGGER.info("Updated %s id=%s (%s)", self.table, item.get("id"), ", ".join(values))
        return ActionResult.ok(f"{self.singular} updated successfully.")

    # Deleting -----------------------------------------------------------
    def stored_image_url(self, item: Mapping[str, Any]) -> Optional[str]:
        """Return the image URL currently stored for *item*'s row."""

        rows = self._platform.select(
            self.table, columns=[self.schema.image_field], filters={"id": item.get("id")}
        )
        if len(rows) != 1:
            raise PlatformError(f"{self.singular} not found")
        return rows[0].get(self.schema.image_field)

    def _remove_image(self, item: Mapping[str, Any]) -> Optional[str]:
        """Remove the row's stored image; return an error message on failure."""

        try:
            image_url = self.stored_image_url(item)
        except PlatformError as error:
            LOGGER.error("Error fetching %s id=%s: %s", self.table, item.get("id"), error)
            return str(error)
        path = extract_storage_path(image_url, self.bucket)
        if path is None:
            return None
        try:
            self._platform.remove(self.bucket, [path])
        except PlatformError as error:
            LOGGER.error("Error deleting image from storage: %s", error)
            return self.image_error(error)
        LOGGER.debug("Removed image %s for %s id=%s", path, self.table, item.get("id"))
        return None

    def image_error(self, error: PlatformError) -> str:
        return str(error)

    def delete(self, item: Mapping[str, Any]) -> ActionResult:
        image_removed = False
        if self.schema.image_field is not None:
            problem = self._remove_image(item)
            if problem is not None:
                return ActionResult.failed(problem)
            image_removed = True
        try:
            self._platform.delete(self.table, column="id", value=item.get("id"))
        except PlatformError as error:
            if image_removed:
                LOGGER.warning(
                    "Row %s id=%s kept after its image was removed: %s",
                    self.table,
                    item.get("id"),
                    error,
                )
            else:
                LOGGER.error("Error deleting %s id=%s: %s", self.table, item.get("id"), error)
            return ActionResult.failed(str(error))
        LOGGER.info("Deleted %s id=%s", self.table, item.get("id"))
        return ActionResult.ok(f"{self.singular} deleted successfully.")


class AffiliationController(EntityController):
    singular = "Affiliation"

    def __init__(self, platform: Platform, *, bucket: str) -> None:
        super().__init__(platform, AFFILIATIONS, bucket=bucket)


class FacultyController(EntityController):
    singular = "Faculty member"

    def __init__(self, platform: Platform, *, bucket: str) -> None:
        super().__init__(platform, FACULTY, bucket=bucket)


class MemberController(EntityController):
    singular = "Member"

    def __init__(self, platform: Platform, *, bucket: str) -> None:
        super().__init__(platform, MEMBERS, bucket=bucket)

    def build_record(self, fields: Mapping[str, Any]) -> Record:
        record = super().build_record(fields)
        interests = [
            str(value)
            for key, value in _items(fields)
            if key.startswith("interest-") and value
        ]
        if interests:
            record["research_interests"] = interests
        return record

    # Member rows carry the image URL the table already shows.
    def stored_image_url(self, item: Mapping[str, Any]) -> Optional[str]:
        return item.get("image")

    def image_error(self, error: PlatformError) -> str:
        return "Failed to delete image"


class ProjectController(EntityController):
    singular = "Project"

    FORM_ALIASES = {
        "description": "short_description",
        "is_openSource": "is_open_source",
        "project_status": "status",
        "project_type": "type",
    }

    def __init__(self, platform: Platform, *, bucket: str) -> None:
        super().__init__(platform, PROJECTS, bucket=bucket)

    def build_record(self, fields: Mapping[str, Any]) -> Record:
        renamed = dict(fields)
        for form_name, column in self.FORM_ALIASES.items():
            if form_name in fields:
                renamed[column] = fields[form_name]
        return super().build_record(renamed)


class PublicationController(EntityController):
    singular = "Publication"

    def __init__(self, platform: Platform, *, bucket: str) -> None:
        super().__init__(platform, PUBLICATIONS, bucket=bucket)

    def build_record(self, fields: Mapping[str, Any]) -> Record:
        record = super().build_record(fields)
        month, year = fields.get("month"), fields.get("year")
        if month and year:
            record["date"] = format_publication_date(month, year)
        return record

    def prepare_update(self, values: Dict[str, Any]) -> Dict[str, Any]:
        if values.get("month") and values.get("year"):
            values["date"] = format_publication_date(values.pop("month"), values.pop("year"))
        return super().prepare_update(values)


def _items(fields: Mapping[str, Any]) -> Iterable:
    # Multipart forms may repeat keys; prefer the multi-item view when present.
    multi_items = getattr(fields, "multi_items", None)
    if callable(multi_items):
        return multi_items()
    return fields.items()


CONTROLLER_TYPES = {
    AFFILIATIONS.table: AffiliationController,
    FACULTY.table: FacultyController,
    MEMBERS.table: MemberController,
    PROJECTS.table: ProjectController,
    PUBLICATIONS.table: PublicationController,
}


def build_controllers(platform: Platform, config: AppConfig) -> Dict[str, EntityController]:
    """Return one controller per collection, keyed by table name."""

    return {
        table: controller_type(platform, bucket=config.bucket)
        for table, controller_type in CONTROLLER_TYPES.items()
    }


__all__ = [
    "AffiliationController",
    "CONTROLLER_TYPES",
    "EntityController",
    "FacultyController",
    "FetchResult",
    "ImageUpload",
    "MemberController",
    "ProjectController",
    "PublicationController",
    "UNEXPECTED_ERROR",
    "build_controllers",
    "parse_flag",
    "parse_list",
]
