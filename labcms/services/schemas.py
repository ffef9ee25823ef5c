"""Explicit column descriptors for every managed collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


DisplayValue = Union[str, bool, int, float, List[str], None]
Record = Dict[str, DisplayValue]


class FieldKind(str, Enum):
    TEXT = "text"
    LONG_TEXT = "long_text"
    URL = "url"
    EMAIL = "email"
    IMAGE = "image"
    FLAG = "flag"
    TAGS = "tags"
    LIST = "list"
    CHOICE = "choice"


_LIST_KINDS = {FieldKind.TAGS, FieldKind.LIST}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    editable: bool = True
    required: bool = False
    choices: Tuple[str, ...] = ()

    @property
    def is_list(self) -> bool:
        return self.kind in _LIST_KINDS

    @property
    def is_flag(self) -> bool:
        return self.kind is FieldKind.FLAG

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "label": self.label,
            "kind": self.kind.value,
            "editable": self.editable,
            "required": self.required,
            "choices": list(self.choices),
        }


@dataclass(frozen=True)
class EntitySchema:
    """Describe one collection: its table, columns and image folder."""

    table: str
    title: str
    fields: Tuple[FieldSpec, ...] = field(default_factory=tuple)
    image_folder: Optional[str] = None

    @property
    def field_names(self) -> List[str]:
        return [spec.name for spec in self.fields]

    @property
    def image_field(self) -> Optional[str]:
        for spec in self.fields:
            if spec.kind is FieldKind.IMAGE:
                return spec.name
        return None

    @property
    def list_fields(self) -> List[str]:
        return [spec.name for spec in self.fields if spec.is_list]

    @property
    def flag_fields(self) -> List[str]:
        return [spec.name for spec in self.fields if spec.is_flag]

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "table": self.table,
            "title": self.title,
            "image_field": self.image_field,
            "fields": [spec.to_dict() for spec in self.fields],
        }


AFFILIATION_TYPES = ("university", "company", "organization", "other")
PUBLICATION_TYPES = ("journal", "conference", "workshop", "preprint")
RESEARCH_STATUSES = ("ongoing", "completed", "planned")
PROJECT_STATUSES = ("active", "completed", "on_hold")
PROJECT_TYPES = ("research", "development", "design", "other")


AFFILIATIONS = EntitySchema(
    table="affiliations",
    title="Affiliations",
    image_folder="affiliations",
    fields=(
        FieldSpec("name", "Name", required=True),
        FieldSpec("type", "Type", FieldKind.CHOICE, choices=AFFILIATION_TYPES),
        FieldSpec("url", "URL", FieldKind.URL),
        FieldSpec("image", "Logo", FieldKind.IMAGE, editable=False),
    ),
)

FACULTY = EntitySchema(
    table="faculty",
    title="Faculty",
    image_folder="faculty",
    fields=(
        FieldSpec("name", "Name", required=True),
        FieldSpec("email", "Email", FieldKind.EMAIL, required=True),
        FieldSpec("bio", "Bio", FieldKind.LONG_TEXT, required=True),
        FieldSpec("image", "Photo", FieldKind.IMAGE, editable=False),
        FieldSpec("scholar", "Google Scholar", FieldKind.URL),
        FieldSpec("website", "Website", FieldKind.URL),
        FieldSpec("linkedin", "LinkedIn", FieldKind.URL),
        FieldSpec("twitter", "Twitter", FieldKind.URL),
    ),
)

MEMBERS = EntitySchema(
    table="members",
    title="Members",
    image_folder="member",
    fields=(
        FieldSpec("name", "Name", required=True),
        FieldSpec("title", "Title"),
        FieldSpec("advisor", "Advisor"),
        FieldSpec("email", "Email", FieldKind.EMAIL),
        FieldSpec("image", "Photo", FieldKind.IMAGE, editable=False),
        FieldSpec("github", "GitHub", FieldKind.URL),
        FieldSpec("linkedin", "LinkedIn", FieldKind.URL),
        FieldSpec("scholar", "Google Scholar", FieldKind.URL),
        FieldSpec("twitter", "Twitter", FieldKind.URL),
        FieldSpec("website", "Website", FieldKind.URL),
        FieldSpec("research_interests", "Research Interests", FieldKind.LIST),
        FieldSpec("type", "Type"),
    ),
)

PROJECTS = EntitySchema(
    table="projects",
    title="Projects",
    fields=(
        FieldSpec("name", "Name", required=True),
        FieldSpec("title", "Title", required=True),
        FieldSpec("short_description", "Description", FieldKind.LONG_TEXT, required=True),
        FieldSpec("link", "Link", FieldKind.URL, required=True),
        FieldSpec("is_featured", "Featured", FieldKind.FLAG),
        FieldSpec("is_open_source", "Open Source", FieldKind.FLAG),
        FieldSpec("is_ours", "Our Project", FieldKind.FLAG),
        FieldSpec("research_status", "Research Status", FieldKind.CHOICE, choices=RESEARCH_STATUSES),
        FieldSpec("status", "Project Status", FieldKind.CHOICE, choices=PROJECT_STATUSES),
        FieldSpec("type", "Project Type", FieldKind.CHOICE, choices=PROJECT_TYPES),
    ),
)

PUBLICATIONS = EntitySchema(
    table="publications",
    title="Publications",
    fields=(
        FieldSpec("title", "Title", required=True),
        FieldSpec("venue", "Venue"),
        FieldSpec("type", "Type", FieldKind.CHOICE, choices=PUBLICATION_TYPES),
        FieldSpec("date", "Date"),
        FieldSpec("authors", "Authors", FieldKind.LIST),
        FieldSpec("tags", "Tags", FieldKind.TAGS),
        FieldSpec("links", "Links", FieldKind.LIST),
    ),
)


ENTITY_SCHEMAS: Dict[str, EntitySchema] = {
    schema.table: schema
    for schema in (AFFILIATIONS, FACULTY, MEMBERS, PROJECTS, PUBLICATIONS)
}


def get_schema(table: str) -> EntitySchema:
    """Return the schema registered for *table* or raise ``KeyError``."""

    try:
        return ENTITY_SCHEMAS[table]
    except KeyError:
        raise KeyError(f"Unknown collection '{table}'") from None


__all__ = [
    "AFFILIATIONS",
    "DisplayValue",
    "ENTITY_SCHEMAS",
    "EntitySchema",
    "FACULTY",
    "FieldKind",
    "FieldSpec",
    "MEMBERS",
    "PROJECTS",
    "PUBLICATIONS",
    "Record",
    "get_schema",
]
