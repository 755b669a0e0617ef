"""tagres CLI - inspect the tags a template would see.

Usage:
    tagres tags path/to/template.marko          # list resolved tags
    tagres check path/to/template.marko my-tag name title
    tagres -v tags ...                          # INFO logging
    TAGRES_DEBUG=1 tagres tags ...              # DEBUG logging

Exit codes: 3 malformed definitions, 4 invalid usage, 5 unresolvable tags.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tagres import __version__
from tagres.config import resolve_settings
from tagres.errors import TagresError
from tagres.occurrence import AttributeUsage
from tagres.spec import NestedRef, RendererRef, TagDefinition, TemplateRef
from tagres.walker import TaglibDiscoveryWalker

console = Console()

app = typer.Typer(help="Taglib discovery and tag resolution.", no_args_is_help=True)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the tagres package.

    Log levels:
    - Normal: Only warnings/errors shown
    - Verbose (-v): INFO level
    - Debug (TAGRES_DEBUG=1): DEBUG level - cache hits, skipped files, shadowing
    """
    debug = bool(os.environ.get("TAGRES_DEBUG"))
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=verbose,
        show_path=debug,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("tagres")
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False


def exit_with_error(message: str, exit_code: int = 1) -> NoReturn:
    """Exit the program with an error message."""
    typer.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


def handle_error(error: TagresError) -> NoReturn:
    """Report a tagres error and exit with the code of its kind."""
    kind = type(error).__name__
    exit_with_error(f"{kind}: {error}", error.exit_code)


def _walker(boundary: Optional[Path], config: Optional[Path]) -> TaglibDiscoveryWalker:
    settings = resolve_settings(overrides={"boundary": boundary}, config_file=config)
    return TaglibDiscoveryWalker(settings)


def _describe_implementation(tag: TagDefinition) -> str:
    impl = tag.implementation
    if isinstance(impl, RendererRef):
        return f"{impl.path.name}:{impl.export}"
    if isinstance(impl, TemplateRef):
        return impl.path.name
    if isinstance(impl, NestedRef):
        return f"-> {impl.parent}.{impl.parent_property}"
    return "?"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Show INFO logs."),
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
) -> None:
    setup_logging(verbose)
    if version:
        typer.echo(f"tagres {__version__}")
        raise typer.Exit()


@app.command("tags")
def tags_command(
    template: Path = typer.Argument(..., help="Template file being compiled."),
    boundary: Optional[Path] = typer.Option(
        None, "--boundary", "-b", help="Stop walking upward at this directory."
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML settings file."
    ),
) -> None:
    """List every tag visible to TEMPLATE."""
    try:
        registry = _walker(boundary, config).discover(template)
    except TagresError as e:
        handle_error(e)

    if not len(registry):
        console.print("[yellow]No tags found[/yellow]")
        return

    table = Table()
    table.add_column("Tag", style="cyan", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Implementation")
    table.add_column("Rank")
    table.add_column("Source", overflow="fold")

    kind_colors = {"renderer": "green", "template": "blue", "nested": "magenta"}
    for name in sorted(registry):
        tag = registry[name]
        kind = tag.implementation.kind
        color = kind_colors.get(kind, "white")
        table.add_row(
            name,
            f"[{color}]{kind}[/{color}]",
            _describe_implementation(tag),
            f"{tag.provenance.rank.level}.{tag.provenance.rank.position}",
            str(tag.provenance.path),
        )

    console.print(table)
    if registry.shadowed:
        console.print(f"[dim]{len(registry.shadowed)} shadowed definitions[/dim]")


@app.command("check")
def check_command(
    template: Path = typer.Argument(..., help="Template file being compiled."),
    tag: str = typer.Argument(..., help="Qualified tag name, e.g. ui-tabs.tab"),
    attributes: Optional[List[str]] = typer.Argument(None, help="Attribute names used."),
    boundary: Optional[Path] = typer.Option(
        None, "--boundary", "-b", help="Stop walking upward at this directory."
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML settings file."
    ),
) -> None:
    """Validate attribute names used on TAG as seen from TEMPLATE."""
    usages = [AttributeUsage(name=name) for name in attributes or []]
    try:
        registry = _walker(boundary, config).discover(template)
        bound = registry.validate(tag, usages)
    except TagresError as e:
        handle_error(e)

    console.print(f"[green]OK[/green] {tag}")
    for name, prop in bound.declared.items():
        console.print(f"  {name} -> {prop}")
    for name in bound.absorbed:
        console.print(f"  {name} -> *")
