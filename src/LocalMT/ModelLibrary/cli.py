# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.cli",
#   "purpose": "Typer CLI (mtlib) for listing, installing, and removing translation model packages",
#   "sections": [
#     {"id": "context", "name": "CliContext", "anchor": "CTX", "kind": "class"},
#     {"id": "callback", "name": "Global Options", "anchor": "GLB", "kind": "function"},
#     {"id": "commands", "name": "Commands", "anchor": "CMD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the model library.

Example:
    $ mtlib list
    $ mtlib install ~/Downloads/en-de.tar.gz
    $ mtlib remove ende en de
    $ mtlib --config library.yaml catalog --json
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from .errors import ModelLibraryError
from .events import ERROR, Event
from .library import ModelLibrary
from .logging_utils import setup_logging
from .models import PackageRecord
from .net import HttpxFetcher
from .settings import get_default_settings, load_settings

__all__ = ["app", "CliContext", "get_context", "main"]

_CATALOG_FAILURES = {"NetworkError", "CatalogParseError"}

# --- CliContext ---------------------------------------------------------------


class CliContext:
    """Shared state for one CLI invocation.

    Holds the settings, the library facade, and every error event the
    library published while the command ran.
    """

    def __init__(self, config: Optional[Path] = None, log_level: Optional[str] = None) -> None:
        self.console = Console(soft_wrap=True)
        self.settings = load_settings(config) if config is not None else get_default_settings(copy=True)
        if log_level is not None:
            self.settings.logging.level = log_level
        setup_logging(self.settings.logging)
        self.errors: List[Event] = []
        self._fetch: Optional[HttpxFetcher] = None
        self._library: Optional[ModelLibrary] = None

    @property
    def library(self) -> ModelLibrary:
        if self._library is None:
            self._fetch = HttpxFetcher(self.settings.catalog)
            self._library = ModelLibrary(self.settings, fetch=self._fetch)
            self._library.bus.subscribe(self._on_error, types=[ERROR])
            self._library.startup_load()
        return self._library

    def _on_error(self, event: Event) -> None:
        self.errors.append(event)
        typer.echo(f"error: {event.message}", err=True)

    async def aclose(self) -> None:
        if self._fetch is not None:
            await self._fetch.aclose()


app = typer.Typer(
    name="mtlib",
    help="Manage locally installed translation model packages",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    """Return the context created by the global options callback.

    Raises:
        RuntimeError: If no command is running.
    """
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


# --- Global Options -----------------------------------------------------------


@app.callback()
def _global_options(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="MTLIB_CONFIG",
        help="Path to a YAML settings file",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Manage locally installed translation model packages."""
    global _context

    try:
        _context = CliContext(config=config, log_level=log_level)
    except (ModelLibraryError, ValueError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(1)


# --- Commands -----------------------------------------------------------------


def _package_table(title: str, records: Sequence[PackageRecord], *, location: str) -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Target", style="green")
    table.add_column("Type")
    table.add_column("Version", justify="right")
    table.add_column(location, overflow="fold")
    for record in records:
        version = record.version
        table.add_row(
            record.short_name,
            record.source_language,
            record.target_language,
            record.package_type,
            "" if version is None else f"{version:g}",
            record.install_path if record.is_local else record.download_url,
        )
    return table


@app.command("list")
def list_packages() -> None:
    """List installed packages from the managed and search directories."""
    ctx = get_context()
    library = ctx.library
    if not library.installed_packages:
        ctx.console.print("No models installed.")
        return
    ctx.console.print(_package_table("Installed models", library.installed_packages, location="Path"))


@app.command()
def install(
    archive: Path = typer.Argument(..., help="Model archive (.tar.gz) to install"),
    name: Optional[str] = typer.Option(
        None, "--name", help="Archive name used for the package directory"
    ),
) -> None:
    """Install a model archive into the managed directory."""
    ctx = get_context()
    record = ctx.library.install_file(archive, name)
    if record is None:
        raise typer.Exit(1)
    ctx.console.print(
        f"Installed [bold]{record.display_name or record.short_name}[/bold] "
        f"({record.source_language} -> {record.target_language}) at {record.install_path}"
    )


@app.command()
def remove(
    short_name: str = typer.Argument(..., help="Package short name"),
    src: str = typer.Argument(..., help="Source language code"),
    trg: str = typer.Argument(..., help="Target language code"),
) -> None:
    """Remove an installed package from the managed directory."""
    ctx = get_context()
    library = ctx.library
    record = library.registry.find((short_name, src, trg))
    if record is None:
        typer.echo(f"error: no installed model {short_name} ({src} -> {trg})", err=True)
        raise typer.Exit(1)
    if not library.remove(record):
        raise typer.Exit(1)
    ctx.console.print(f"Removed {short_name} ({src} -> {trg}) from {record.install_path}")


def _records_json(records: Sequence[PackageRecord]) -> List[Dict[str, object]]:
    return [record.to_manifest() for record in records]


async def _refresh(ctx: CliContext) -> None:
    try:
        await ctx.library.refresh_catalog_and_wait()
    finally:
        await ctx.aclose()


@app.command()
def catalog(
    as_json: bool = typer.Option(False, "--json", help="Print new and outdated models as JSON"),
) -> None:
    """Fetch the remote catalog and show new and outdated models."""
    ctx = get_context()
    library = ctx.library
    asyncio.run(_refresh(ctx))
    if any(event.category in _CATALOG_FAILURES for event in ctx.errors):
        raise typer.Exit(1)

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "remote": len(library.remote_packages),
                    "new": _records_json(library.new_packages),
                    "outdated": _records_json(library.outdated_packages),
                },
                indent=2,
            )
        )
        return

    ctx.console.print(f"{len(library.remote_packages)} models in the remote catalog.")
    if library.new_packages:
        ctx.console.print(_package_table("New models", library.new_packages, location="URL"))
    if library.outdated_packages:
        ctx.console.print(
            _package_table("Updates available", library.outdated_packages, location="URL")
        )
    if not library.new_packages and not library.outdated_packages:
        ctx.console.print("Everything is up to date.")


@app.command()
def archives() -> None:
    """List archive files waiting in the managed directory."""
    ctx = get_context()
    pending = ctx.library.pending_archives
    if not pending:
        ctx.console.print("No pending archives.")
        return
    for name in pending:
        typer.echo(name)


def main() -> None:
    """Console script entry point."""

    app()


if __name__ == "__main__":
    main()
