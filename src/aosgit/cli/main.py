"""Main CLI entry point for aosgit."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from aosgit.config import SynthesisConfig
from aosgit.constants import (
    DEFAULT_WORKERS,
    EXIT_DATA_ERROR,
    EXIT_SYSTEM_ERROR,
    EXIT_USER_ERROR,
)
from aosgit.core import (
    CatalogError,
    DestinationNotEmptyError,
    FetchError,
    History,
    RepositoryWriterError,
)
from aosgit.download import Downloader
from aosgit.pipeline import (
    create_component_repository,
    create_components_repositories,
    create_release_repository,
)
from aosgit.storage import ObjectStoreError

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(
    name="aosgit",
    help="Convert Apple open source tarballs into deterministic Git repositories",
    add_completion=False,
)

NO_BARE_OPTION = typer.Option(
    False,
    "--no-bare",
    help="Create a working tree instead of a bare repository",
)
WORKERS_OPTION = typer.Option(
    DEFAULT_WORKERS,
    "--workers",
    "-j",
    min=1,
    help="Maximum number of archives fetched and expanded at once",
)
ANNOTATED_TAGS_OPTION = typer.Option(
    False,
    "--annotated-tags",
    help="Write annotated tag objects instead of lightweight tags",
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging",
    ),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@app.command()
def version() -> None:
    """Show aosgit version."""
    from aosgit import __version__
    typer.echo(f"aosgit version {__version__}")


@app.command()
def components() -> None:
    """Print available component names."""
    downloader = Downloader()
    try:
        names = downloader.get_components()
    except FetchError as e:
        _fail(f"Failed to list components: {e}", EXIT_SYSTEM_ERROR)

    for name in names:
        typer.echo(name)


@app.command("component-versions")
def component_versions(
    component: Optional[List[str]] = typer.Argument(
        None,
        help="Component names (all components if omitted)",
    ),
) -> None:
    """Print available versions of the given components."""
    downloader = Downloader()
    try:
        if component:
            groups = [downloader.get_component_versions(name) for name in component]
        else:
            groups = list(downloader.get_components_versions().values())
    except FetchError as e:
        _fail(f"Failed to list versions: {e}", EXIT_SYSTEM_ERROR)

    for records in groups:
        for record in records:
            typer.echo(f"{record.component}\t{record.version}\t{record.url}")


@app.command("component-to-git")
def component_to_git(
    component: str = typer.Argument(..., help="Component name"),
    dest: Path = typer.Argument(..., help="Destination directory of Git repository"),
    no_bare: bool = NO_BARE_OPTION,
    workers: int = WORKERS_OPTION,
    annotated_tags: bool = ANNOTATED_TAGS_OPTION,
) -> None:
    """Fetch an Apple open source component and convert it to a Git repository."""
    config = SynthesisConfig(workers=workers, annotated_tags=annotated_tags)
    downloader = Downloader()

    with _fatal_errors():
        history = create_component_repository(
            downloader, component, dest, bare=not no_bare, config=config
        )

    _print_summary([history], dest)


@app.command("components-to-gits")
def components_to_gits(
    dest: Path = typer.Argument(..., help="Destination directory for Git repositories"),
    no_bare: bool = NO_BARE_OPTION,
    workers: int = WORKERS_OPTION,
    annotated_tags: bool = ANNOTATED_TAGS_OPTION,
) -> None:
    """Fetch all Apple open source components and convert them to Git repositories."""
    config = SynthesisConfig(workers=workers, annotated_tags=annotated_tags)
    downloader = Downloader()

    with _fatal_errors():
        histories, errors = create_components_repositories(
            downloader, dest, bare=not no_bare, config=config
        )

    _print_summary(histories.values(), dest)
    if errors:
        _print_errors(errors)
        raise typer.Exit(EXIT_DATA_ERROR)


@app.command()
def releases() -> None:
    """Print available software releases."""
    downloader = Downloader()
    try:
        records = downloader.get_releases()
    except FetchError as e:
        _fail(f"Failed to list releases: {e}", EXIT_SYSTEM_ERROR)

    for record in records:
        typer.echo(f"{record.entity}\t{record.version}")


@app.command("release-components")
def release_components(
    release: str = typer.Argument(..., help="Name of software release"),
    release_version: str = typer.Argument(..., metavar="VERSION", help="Version of software release"),
) -> None:
    """Print the components within a software release."""
    downloader = Downloader()
    try:
        record = next(
            (
                r for r in downloader.get_releases()
                if r.matches_entity(release) and r.version == release_version
            ),
            None,
        )
        if record is None:
            _fail(f"Failed to find version {release_version} of {release}", EXIT_USER_ERROR)
        records = downloader.get_release_components(record)
    except FetchError as e:
        _fail(f"Failed to list release components: {e}", EXIT_SYSTEM_ERROR)

    for component in records:
        typer.echo(f"{component.component}\t{component.url}")


@app.command("release-to-git")
def release_to_git(
    release: str = typer.Argument(..., help="Name of released entity"),
    dest: Path = typer.Argument(..., help="Destination directory of Git repository"),
    no_bare: bool = NO_BARE_OPTION,
    workers: int = WORKERS_OPTION,
    annotated_tags: bool = ANNOTATED_TAGS_OPTION,
) -> None:
    """Convert a released entity to a Git repository with one commit per release."""
    config = SynthesisConfig(workers=workers, annotated_tags=annotated_tags)
    downloader = Downloader()

    with _fatal_errors():
        history = create_release_repository(
            downloader, release, dest, bare=not no_bare, config=config
        )

    _print_summary([history], dest)


@contextmanager
def _fatal_errors() -> Iterator[None]:
    """Map run-aborting errors onto exit codes."""
    try:
        yield
    except DestinationNotEmptyError as e:
        _fail(str(e), EXIT_USER_ERROR)
    except CatalogError as e:
        _fail(f"Catalog could not be built: {e}", EXIT_DATA_ERROR)
    except (ObjectStoreError, RepositoryWriterError) as e:
        _fail(f"Repository could not be written: {e}", EXIT_SYSTEM_ERROR)


def _fail(message: str, code: int) -> NoReturn:
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", style="red")
    raise typer.Exit(code)


def _print_summary(histories: Iterable[History], dest: Path) -> None:
    """Report commits per history and every skipped version, after the run."""
    histories = list(histories)
    for history in histories:
        console.print(
            f"[bold green]✓[/bold green] {escape(history.name)}: "
            f"{len(history.commits)} commit(s), head "
            f"[cyan]{(history.head or '-')[:12]}[/cyan]"
        )

    skipped = [s for history in histories for s in history.skipped]
    if not skipped:
        console.print(f"\n[dim]Repository written to {escape(str(dest))}, nothing skipped[/dim]")
        return

    table = Table(title=f"Skipped versions ({len(skipped)})")
    table.add_column("Component")
    table.add_column("Version")
    table.add_column("Severity")
    table.add_column("Reason", overflow="fold")
    styles = {"info": "dim", "warning": "yellow", "error": "red"}
    for item in skipped:
        table.add_row(
            escape(item.component),
            escape(item.label),
            f"[{styles.get(item.severity, 'default')}]{item.severity}[/]",
            escape(item.reason),
        )
    console.print()
    console.print(table)


def _print_errors(errors: Dict[str, Exception]) -> None:
    err_console.print(f"\n[bold red]{len(errors)} component(s) failed:[/bold red]")
    for name, error in errors.items():
        err_console.print(f"  [red]x[/red] {escape(name)}: {escape(str(error))}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
