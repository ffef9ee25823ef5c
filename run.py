"""Entry-point for the Lab CMS application."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from enum import Enum
from pathlib import Path
from typing import Optional

import uvicorn
import typer

from labcms.bootstrap import initialize_app
from labcms.logging_utils import build_default_handlers, configure_logging
from labcms.services.entities import CONTROLLER_TYPES
from labcms.services.file_tree import FileTreeBrowser
from labcms.services.platform import build_platform
from labcms.services.table import RecordTable
from labcms.ui.console import ConsoleUI, print_table, print_tree
from labcms.ui.modern import ModernUI
from labcms.web import create_app


LOGGER = logging.getLogger("labcms.cli")


cli = typer.Typer(add_completion=False, help="Lab CMS management commands")


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_default_handlers(storage_root))


class UIStyle(str, Enum):
    MODERN = "modern"
    CONSOLE = "console"

style_option = typer.Option(
    UIStyle.MODERN,
    "--style",
    "-s",
    help="Select the presentation style.",
    show_default=True,
)


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, open_browser=True)


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="LABCMS_ROOT_PATH",
    ),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-open-browser",
        help="Open the dashboard in a browser once the server starts",
    ),
) -> None:
    """Run the FastAPI-powered dashboard."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    platform = build_platform(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(platform, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    if open_browser:
        browser_host = host
        if not browser_host or browser_host in {"0.0.0.0", "::"}:
            browser_host = "127.0.0.1"
        url_path = f"{normalized_root}/" if normalized_root else "/"
        url = f"http://{browser_host}:{port}{url_path}"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            try:
                webbrowser.open(url, new=2, autoraise=True)
            except webbrowser.Error as error:
                LOGGER.debug("Could not open a browser for %s: %s", url, error)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def overview(style: UIStyle = style_option) -> None:
    """Render collection counts and recent projects using the chosen UI style."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    platform = build_platform(config)
    if style is UIStyle.MODERN:
        ui = ModernUI(platform)
    else:
        ui = ConsoleUI(platform)
    ui.run()


@cli.command()
def table(
    entity: str = typer.Argument(..., help="Collection to show, e.g. 'projects'"),
    search: str = typer.Option("", "--search", "-q", help="Only show rows containing this text"),
    page: int = typer.Option(1, help="Page to show"),
    per_page: Optional[int] = typer.Option(None, min=1, help="Rows per page (defaults to the configured value)"),
    style: UIStyle = style_option,
) -> None:
    """Print one page of a collection."""

    controller_type = CONTROLLER_TYPES.get(entity)
    if controller_type is None:
        choices = ", ".join(sorted(CONTROLLER_TYPES))
        raise typer.BadParameter(f"Unknown collection '{entity}' (choose from: {choices})", param_hint="ENTITY")

    config = initialize_app()
    _prepare_logging(config.storage_root)

    platform = build_platform(config)
    controller = controller_type(platform, bucket=config.bucket)
    result = controller.fetch()
    if not result.ok:
        typer.echo(f"Failed to load {entity}: {result.error}")
        raise typer.Exit(code=1)

    view_table = RecordTable(
        result.records,
        items_per_page=per_page if per_page is not None else config.items_per_page,
        schema=controller.schema,
    )
    view_table.set_search(search)
    view_table.go_to_page(page)
    view = view_table.view()
    if style is UIStyle.MODERN:
        ModernUI(platform).show_table(controller.schema.title, view)
    else:
        print_table(controller.schema.title, view)


@cli.command()
def files(
    path: str = typer.Option("", "--path", "-p", help="Folder to list, relative to the bucket root"),
    style: UIStyle = style_option,
) -> None:
    """List the object-store bucket as a tree."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    platform = build_platform(config)
    browser = FileTreeBrowser(platform, config.bucket)
    nodes = browser.listing(path)
    if style is UIStyle.MODERN:
        ModernUI(platform).show_tree(config.bucket, nodes)
    else:
        print_tree(nodes)


if __name__ == "__main__":
    cli()
