import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.traceback import install

from . import config as config_module
from .builder import build
from .decorators import handle_model_errors
from .loader import load_workspace
from .model import Element, Model
from .query import search, select, to_records
from .views import OrderedContent, ViewService

# Initialize Rich Traceback for better error messages
install(show_locals=True)

console = Console()
err_console = Console(stderr=True)

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=err_console, rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Select architecture model elements and compose views")
config_app = typer.Typer(help="Show and change archview configuration")
app.add_typer(config_app, name="config")

FILES_ARGUMENT = typer.Argument(..., help="Declaration files or directories (YAML/JSON)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    archview - architecture model selection and view composition.

    Loads normalized model declarations, evaluates selection criteria and
    composes the ordered content of views for a renderer.
    """
    if verbose or config_module.load_config().cli.verbose:
        logging.getLogger("archview").setLevel(logging.DEBUG)
        logger.debug("Verbose mode enabled")


def _load(files: List[Path]):
    cfg = config_module.load_config()
    sources, view_defs = load_workspace(
        files, parallel=cfg.compose.parallel, max_workers=cfg.compose.max_workers)
    model = build(
        sources,
        parallel=cfg.compose.parallel,
        max_workers=cfg.compose.max_workers,
        max_hierarchy_depth=cfg.compose.max_hierarchy_depth,
    )
    return cfg, model, view_defs


def _print_warnings(model: Model) -> None:
    for warning in model.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(str(warning))}")


def _content_table(content: OrderedContent) -> Table:
    table = Table(title=content.title or content.view_id)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Tech", style="green")
    for ci in content:
        marker = "*" if ci.overridden else ""
        table.add_row(str(ci.order_index), ci.id, f"{ci.kind}", f"{ci.name or ''}{marker}",
                      ", ".join(ci.tech))
    return table


@app.command("select")
@handle_model_errors
def select_command(
    files: List[Path] = FILES_ARGUMENT,
    criteria: str = typer.Option(..., "--select", "-s",
                                 help="Criteria, e.g. 'el:system tag:backend' or YAML"),
    query: Optional[str] = typer.Option(None, "--query", "-q",
                                        help="JMESPath expression applied to the results"),
    output_format: Optional[str] = typer.Option(None, "--format", "-f",
                                                help="Output format: table, json or ids"),
    ignore_case: bool = typer.Option(False, "--ignore-case", "-i",
                                     help="Case-insensitive name/desc/doc patterns"),
):
    """
    Select elements and relations matching criteria.

    Example:
        archview select model.yaml -s 'el:system !external?:true'
    """
    cfg, model, _ = _load(files)
    output_format = output_format or cfg.cli.output_format
    ignore_case = ignore_case or cfg.selection.regex_ignore_case
    kwargs = dict(ignore_case=ignore_case, warn_on_empty=cfg.selection.warn_on_empty_criteria)

    if query:
        typer.echo(json.dumps(search(model, criteria, query, **kwargs), indent=2))
        return

    items = select(model, criteria, **kwargs)
    if output_format == "json":
        typer.echo(json.dumps(to_records(items), indent=2))
    elif output_format == "ids":
        for item_id in sorted(item.id for item in items):
            typer.echo(item_id)
    else:
        table = Table(title=f"{len(items)} matching items")
        table.add_column("Id", style="cyan")
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Tags", style="magenta")
        for record in to_records(items):
            table.add_row(record["id"], record["el"], record.get("name", ""),
                          ", ".join(record.get("tags", [])))
        console.print(table)


@app.command("compose")
@handle_model_errors
def compose_command(
    files: List[Path] = FILES_ARGUMENT,
    view_id: Optional[str] = typer.Option(None, "--view", "-V", help="Compose only this view"),
    output_format: Optional[str] = typer.Option(None, "--format", "-f",
                                                help="Output format: table or json"),
):
    """
    Compose views into ordered content lists.

    Example:
        archview compose model.yaml views.yaml --view acme/context --format json
    """
    cfg, model, view_defs = _load(files)
    _print_warnings(model)
    service = ViewService(model, view_defs, config=cfg)
    output_format = output_format or cfg.cli.output_format

    if view_id:
        contents = {view_id: service.compose(view_id)}
        errors = {}
    else:
        report = service.compose_all()
        contents, errors = report.contents, report.errors

    if output_format == "json":
        typer.echo(json.dumps({
            "views": [c.to_dict() for c in contents.values()],
            "errors": {vid: str(e) for vid, e in errors.items()},
        }, indent=2))
    else:
        for content in contents.values():
            console.print(_content_table(content))
        for vid, error in errors.items():
            console.print(f"[red]✗ {escape(vid)}:[/red] {escape(str(error))}")

    if errors:
        raise typer.Exit(code=1)


@app.command("views")
@handle_model_errors
def views_command(files: List[Path] = FILES_ARGUMENT):
    """List the views defined in the given files."""
    cfg, model, view_defs = _load(files)
    service = ViewService(model, view_defs, config=cfg)

    table = Table(title=f"{len(service)} views")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Title")
    table.add_column("Depends on", style="dim")
    for info in service.list():
        table.add_row(info["id"], info["kind"], info["title"], ", ".join(info["depends_on"]))
    console.print(table)


@app.command("check")
@handle_model_errors
def check_command(files: List[Path] = FILES_ARGUMENT):
    """
    Build the model and compose every view, reporting problems.

    Exits with code 1 if any view fails to compose.
    """
    cfg, model, view_defs = _load(files)
    elements = sum(1 for item in model.items() if isinstance(item, Element))
    console.print(f"[green]✓ Model:[/green] {elements} elements, "
                  f"{len(model) - elements} relations, "
                  f"{len(model.hierarchy.roots())} containment roots")
    _print_warnings(model)

    service = ViewService(model, view_defs, config=cfg)
    report = service.compose_all()
    for vid, content in report.contents.items():
        console.print(f"[green]✓ {escape(vid)}[/green] ({len(content)} items)")
    for vid, warning in report.warnings():
        console.print(f"[yellow]! {escape(vid)}:[/yellow] {escape(str(warning))}")
    for vid, error in report.errors.items():
        console.print(f"[red]✗ {escape(vid)}:[/red] {escape(str(error))}")

    if not report.ok:
        raise typer.Exit(code=1)


# ============================================================================
# Configuration
# ============================================================================

@config_app.command("show")
def config_show():
    """Show the current configuration."""
    cfg = config_module.load_config()
    typer.echo(json.dumps(cfg.to_dict(), indent=2))
    err_console.print(f"[dim]{config_module.get_config_path()}[/dim]")


@config_app.command("set")
def config_set(
    warn_on_empty_criteria: Optional[bool] = typer.Option(
        None, "--warn-empty/--no-warn-empty", help="Warn about match-all criteria"),
    regex_ignore_case: Optional[bool] = typer.Option(
        None, "--ignore-case/--match-case", help="Case-insensitive name/desc/doc patterns"),
    parallel: Optional[bool] = typer.Option(
        None, "--parallel/--sequential", help="Load and compose in parallel"),
    max_workers: Optional[int] = typer.Option(None, "--max-workers", help="Thread pool size"),
    max_hierarchy_depth: Optional[int] = typer.Option(
        None, "--max-depth", help="Bound for containment traversals"),
    verbose: Optional[bool] = typer.Option(None, "--verbose/--quiet", help="Default verbosity"),
    output_format: Optional[str] = typer.Option(
        None, "--format", help="Default output format: table, json or ids"),
):
    """Update configuration values; unspecified values are left unchanged."""
    try:
        config_module.update_config(
            warn_on_empty_criteria=warn_on_empty_criteria,
            regex_ignore_case=regex_ignore_case,
            parallel=parallel,
            max_workers=max_workers,
            max_hierarchy_depth=max_hierarchy_depth,
            verbose=verbose,
            output_format=output_format,
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Configuration saved to {config_module.get_config_path()}[/green]")


if __name__ == "__main__":
    app()
