"""Shared helpers for building dashboard overview snapshots."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from ..services.platform import Platform, PlatformError
from ..services.schemas import ENTITY_SCHEMAS, PROJECTS, PUBLICATIONS


LOGGER = logging.getLogger(__name__)


COLLECTION_LABELS: Dict[str, str] = {
    "affiliations": "🏛️ Affiliations",
    "faculty": "🎓 Faculty",
    "members": "👥 Members",
    "projects": "🧪 Projects",
    "publications": "📚 Publications",
}

_DATE_PATTERN = re.compile(r"^\s*(\d{1,2})\s*,\s*(\d{4})\s*$")


@dataclass
class OverviewSnapshot:
    counts: Dict[str, int]
    publications_past_year: int
    recent_projects: List[str]
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "counts": dict(self.counts),
            "publications_past_year": self.publications_past_year,
            "recent_projects": list(self.recent_projects),
            "errors": dict(self.errors),
        }


def parse_publication_date(value: object) -> Optional[date]:
    """Return the first day of the month stored as ``MM, YYYY``."""

    if not isinstance(value, str):
        return None
    match = _DATE_PATTERN.match(value)
    if match is None:
        return None
    month, year = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return date(year, month, 1)


def within_past_year(published: date, today: date) -> bool:
    """``True`` for the current month and the eleven months before it."""

    current = today.year * 12 + today.month - 1
    candidate = published.year * 12 + published.month - 1
    return current - 11 <= candidate <= current


def collect_overview(
    platform: Platform,
    *,
    today: Optional[date] = None,
    recent_limit: int = 5,
) -> OverviewSnapshot:
    """Aggregate collection data into a convenient snapshot for UIs."""

    today = today or date.today()
    counts: Dict[str, int] = {}
    errors: Dict[str, str] = {}
    publications: List[dict] = []
    recent_projects: List[str] = []

    for table in ENTITY_SCHEMAS:
        try:
            rows = platform.select(table)
        except PlatformError as error:
            LOGGER.error("Could not count %s: %s", table, error)
            errors[table] = str(error)
            counts[table] = 0
            continue
        counts[table] = len(rows)
        if table == PUBLICATIONS.table:
            publications = rows

    try:
        projects = platform.select(
            PROJECTS.table, columns=["name"], order_by="id", descending=True
        )
    except PlatformError as error:
        LOGGER.error("Could not load recent projects: %s", error)
        errors.setdefault(PROJECTS.table, str(error))
    else:
        recent_projects = [str(row.get("name") or "") for row in projects[:recent_limit]]

    past_year = 0
    for row in publications:
        published = parse_publication_date(row.get("date"))
        if published is not None and within_past_year(published, today):
            past_year += 1

    return OverviewSnapshot(
        counts=counts,
        publications_past_year=past_year,
        recent_projects=recent_projects,
        errors=errors,
    )


__all__ = [
    "COLLECTION_LABELS",
    "OverviewSnapshot",
    "collect_overview",
    "parse_publication_date",
    "within_past_year",
]
