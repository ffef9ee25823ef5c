"""A Rich-powered console front-end for browsing the managed content."""

from __future__ import annotations

from typing import Iterable, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.file_tree import TreeNode
from ..services.platform import Platform
from ..services.table import TableView
from .overview import COLLECTION_LABELS, OverviewSnapshot, collect_overview


_CELL_STYLES = {
    "link": "blue underline",
    "chips": "magenta",
    "list": "white",
    "text": "white",
}


class ModernUI:
    """Render overviews, tables and file trees using Rich widgets."""

    def __init__(self, platform: Platform, *, console: Optional[Console] = None) -> None:
        self._platform = platform
        self._console = console or Console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> None:
        snapshot = collect_overview(self._platform)
        console = self._console

        console.clear()
        console.rule("[bold magenta]Lab CMS Overview")

        if snapshot.total_records == 0 and not snapshot.errors:
            console.print(
                Panel(
                    "Nothing has been added yet.\n"
                    "Start the dashboard with [bold]python run.py serve[/bold] to add content.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        projects_panel = Panel(
            self._build_projects(snapshot),
            title="Recent projects",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([projects_panel, self._build_stats_panel(snapshot)], expand=True, equal=True))
        console.print()
        console.print(
            Text(
                "Tip: pass [bold]--style console[/bold] for the plain layout.",
                style="dim",
            ),
            justify="center",
        )

    def show_table(self, title: str, view: TableView) -> None:
        if not view.rows:
            self._console.print(Panel("No data available", title=title, border_style="yellow"))
            return
        self._console.print(self._build_table(title, view))

    def show_tree(self, bucket: str, nodes: Iterable[TreeNode]) -> None:
        tree = Tree(f"[bold cyan]{bucket}", guide_style="cyan")
        self._add_nodes(tree, nodes)
        self._console.print(tree)

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_projects(snapshot: OverviewSnapshot) -> Tree:
        tree = Tree("[bold cyan]Projects", guide_style="cyan")
        if not snapshot.recent_projects:
            tree.add("[dim]No projects yet")
        for name in snapshot.recent_projects:
            tree.add(Text(name, style="bold"))
        return tree

    def _build_stats_panel(self, snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        for table, count in snapshot.counts.items():
            value = Text(str(count))
            if table in snapshot.errors:
                value = Text("error", style="red")
            metrics.add_row(COLLECTION_LABELS.get(table, table), value)

        recent = Table.grid(expand=True, padding=(0, 1))
        recent.add_column(style="dim")
        recent.add_column(justify="right", style="bold")
        recent.add_row("Publications (past 12 months)", str(snapshot.publications_past_year))

        body = Group(metrics, Rule(style="magenta"), recent)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)

    @staticmethod
    def _build_table(title: str, view: TableView) -> Table:
        table = Table(
            title=f"{title} · page {view.page} of {view.total_pages}",
            caption=f"{view.filtered_count} of {view.total_count} record(s)"
            + (f" matching '{view.search}'" if view.search else ""),
            box=box.ROUNDED,
            header_style="bold magenta",
        )
        table.add_column("ID", justify="right", style="dim")
        for header in view.headers:
            table.add_column(view.labels[header])
        for row in view.rows:
            values = [str(row["id"])]
            for header in view.headers:
                cell = row["cells"][header]
                if cell["kind"] == "check":
                    style = "green" if cell.get("checked") else "red"
                else:
                    style = _CELL_STYLES.get(cell["kind"], "white")
                values.append(Text(cell["text"], style=style))
            table.add_row(*values)
        return table

    def _add_nodes(self, parent: Tree, nodes: Iterable[TreeNode]) -> None:
        for node in nodes:
            if node.is_folder:
                branch = parent.add(f"📁 [bold]{node.name}")
                self._add_nodes(branch, node.children)
            else:
                parent.add(f"📄 {node.name}")


__all__ = ["ModernUI"]
