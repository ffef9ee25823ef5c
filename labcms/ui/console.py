"""Plain console output for environments without a rich terminal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from ..services.file_tree import TreeNode
from ..services.platform import Platform
from ..services.table import TableView
from .overview import COLLECTION_LABELS, collect_overview


@dataclass
class ConsoleSection:
    title: str
    entries: Iterable[str]


class ConsoleUI:
    """Minimal console UI that surfaces stored content."""

    def __init__(self, platform: Platform) -> None:
        self._platform = platform

    def run(self) -> None:
        """Print collection counts and recent projects to stdout."""

        print("Lab CMS – Console Overview")
        print("=" * 40)
        for section in self._build_sections():
            print(section.title)
            print("-" * len(section.title))
            has_entries = False
            for entry in section.entries:
                has_entries = True
                print(entry)
            if not has_entries:
                print("(empty)")
            print()

    def _build_sections(self) -> Iterable[ConsoleSection]:
        snapshot = collect_overview(self._platform)
        counts: List[str] = []
        for table, count in snapshot.counts.items():
            label = COLLECTION_LABELS.get(table, table)
            suffix = f" (error: {snapshot.errors[table]})" if table in snapshot.errors else ""
            counts.append(f"  {label}: {count}{suffix}")
        counts.append(f"  Publications in the past year: {snapshot.publications_past_year}")
        yield ConsoleSection(title="Collections", entries=counts)
        yield ConsoleSection(
            title="Recent projects",
            entries=[f"  {name}" for name in snapshot.recent_projects],
        )


def print_table(title: str, view: TableView) -> None:
    print(f"{title} – page {view.page} of {view.total_pages} ({view.filtered_count} of {view.total_count})")
    if not view.rows:
        print("No data available")
        return
    print(" | ".join(["ID"] + [view.labels[header] for header in view.headers]))
    for row in view.rows:
        values = [str(row["id"])] + [row["cells"][header]["text"] for header in view.headers]
        print(" | ".join(values))


def print_tree(nodes: Iterable[TreeNode], *, indent: int = 0) -> None:
    for node in nodes:
        marker = "/" if node.is_folder else ""
        print(f"{'  ' * indent}{node.name}{marker}")
        print_tree(node.children, indent=indent + 1)


__all__ = ["ConsoleUI", "print_table", "print_tree"]
