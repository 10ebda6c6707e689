"""Main CLI commands — tree, watch, show, stats, doctor, config, serve."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from beadview.cli.issue import issue_app

app = typer.Typer(
    name="beadview",
    help="beadview — auto-refreshing tree viewer for beads issues.",
    add_completion=False,
    rich_markup_mode="rich",
)
app.add_typer(issue_app, name="issue", help="Change issues through the bd CLI")

console = Console()
logger = logging.getLogger(__name__)

_state = {"verbose": False}


def _setup_logging(verbose: bool = False, console_output: bool = True) -> None:
    from beadview.config import get_settings
    from beadview.logging_config import configure_logging

    settings = get_settings()
    level = "DEBUG" if verbose else settings.log_level
    configure_logging(
        level=level,
        log_file=settings.log_file,
        json_format=settings.log_json,
        console=console_output,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """beadview CLI root."""
    _state["verbose"] = verbose


def _load(filter_text: str = "", view: str = "all"):
    """Fetch once and return a loaded reconciler, exiting on store errors."""
    from beadview.refresh import RefreshReconciler
    from beadview.search import ViewMode
    from beadview.store import BeadsStore, StoreError

    try:
        mode = ViewMode(view)
    except ValueError:
        console.print(f"[red]Unknown view: {view}. Use all, active or ready.[/red]")
        raise typer.Exit(1)

    reconciler = RefreshReconciler(BeadsStore())
    try:
        reconciler.load_initial()
    except StoreError as exc:
        console.print(f"[bold red]❌ Could not load issues:[/bold red] {exc}")
        raise typer.Exit(1)

    state = reconciler.state
    if filter_text:
        state.set_filter(filter_text)
    state.set_view_mode(mode)
    return reconciler


# ── tree ──────────────────────────────────────────────────────────────

@app.command()
def tree(
    filter_text: str = typer.Option("", "--filter", "-f", help="Title substring filter"),
    view: str = typer.Option("all", "--view", help="View mode: all, active, ready"),
    expand_all: bool = typer.Option(False, "--expand-all", "-a", help="Expand every branch"),
) -> None:
    """Print the issue tree once."""
    from beadview.render import render_status_bar, render_tree

    _setup_logging(_state["verbose"])
    reconciler = _load(filter_text, view)
    state = reconciler.state
    if expand_all:
        state.expand_all()

    console.print(render_tree(state))
    console.print()
    console.print(render_status_bar(state.stats(), state))


# ── watch ─────────────────────────────────────────────────────────────

@app.command()
def watch(
    filter_text: str = typer.Option("", "--filter", "-f", help="Initial title filter"),
    view: str = typer.Option("all", "--view", help="View mode: all, active, ready"),
    interval: Optional[int] = typer.Option(
        None, "--interval", "-i", help="Refresh interval in seconds (0 disables)"
    ),
) -> None:
    """Open the interactive, auto-refreshing viewer."""
    from beadview.cli.viewer import run_viewer

    # The live display owns the terminal; logs go to the file only.
    _setup_logging(_state["verbose"], console_output=False)
    reconciler = _load(filter_text, view)
    if interval is not None:
        if interval < 0:
            console.print("[red]--interval must be >= 0[/red]")
            raise typer.Exit(1)
        reconciler.interval = interval

    run_viewer(reconciler, console)


# ── show ──────────────────────────────────────────────────────────────

@app.command()
def show(
    issue_id: str = typer.Argument(..., help="Issue id, e.g. ab-12"),
) -> None:
    """Show one issue with its subtasks, blockers and blocked issues."""
    from beadview.render import render_detail

    _setup_logging(_state["verbose"])
    reconciler = _load()
    if issue_id not in reconciler.state.forest.records:
        console.print(f"[yellow]Issue {issue_id} not found.[/yellow]")
        raise typer.Exit(1)
    console.print(render_detail(reconciler.state.forest, issue_id))


# ── stats ─────────────────────────────────────────────────────────────

@app.command()
def stats() -> None:
    """Print issue counts by state."""
    _setup_logging(_state["verbose"])
    reconciler = _load()
    counts = reconciler.state.stats()

    table = Table(title="Issue Stats", header_style="bold cyan")
    table.add_column("State", style="bold yellow")
    table.add_column("Count", justify="right")
    table.add_row("In progress", str(counts.in_progress))
    table.add_row("Ready", str(counts.ready))
    table.add_row("Blocked", str(counts.blocked))
    table.add_row("Closed", str(counts.closed))
    table.add_row("Total", str(counts.total), style="bold")
    console.print(table)


# ── config show ──────────────────────────────────────────────────────

@app.command(name="config")
def config_show() -> None:
    """Print resolved configuration."""
    from beadview.config import get_settings

    settings = get_settings()
    display = settings.as_display_dict()

    table = Table(
        title="beadview Configuration",
        show_lines=True,
        header_style="bold cyan",
    )
    table.add_column("Setting", style="bold yellow", no_wrap=True)
    table.add_column("Value")

    for key, val in display.items():
        table.add_row(key, val)

    console.print(table)

    errors = settings.validate_store_config()
    if errors:
        console.print("\n[bold red]⚠️  Configuration issues:[/bold red]")
        for err in errors:
            console.print(f"  • {err}")
    else:
        console.print("\n[bold green]✅ Configuration looks valid[/bold green]")


# ── doctor ────────────────────────────────────────────────────────────

@app.command()
def doctor() -> None:
    """Run diagnostics — check the store, then data integrity."""
    import shutil

    from beadview.config import get_settings
    from beadview.refresh import build_pipeline
    from beadview.store import BeadsStore, StoreError

    _setup_logging(_state["verbose"])
    settings = get_settings()

    console.print(Panel("🩺 [bold]beadview Doctor[/bold]", style="cyan"))

    console.print("\n[bold]Store:[/bold]")
    db = settings.database_file
    if db.exists():
        console.print(f"  ✅ Database: {db}")
    else:
        console.print(f"  ⚠️  No database at {db} (reads fall back to the bd CLI)")
    bd_path = shutil.which(settings.bd_binary)
    if bd_path:
        console.print(f"  ✅ bd CLI: {bd_path}")
    else:
        console.print(f"  ⚠️  {settings.bd_binary!r} not found in PATH (mutations unavailable)")
    for err in settings.validate_store_config():
        console.print(f"  ❌ {err}")

    try:
        records = BeadsStore(settings).fetch_all()
    except StoreError as exc:
        console.print(f"  ❌ Fetch failed: {exc}")
        raise typer.Exit(1)
    console.print(f"  ✅ Fetched {len(records)} issues")

    pipeline = build_pipeline(records)
    _check_data_integrity(pipeline.diagnostics.as_dict())


def _check_data_integrity(counts: dict[str, int]) -> None:
    """Report the graph builder's data-quality counters."""
    console.print("\n[bold]Data Integrity:[/bold]")
    labels = {
        "duplicate_ids": "Duplicate issue ids",
        "dangling_edges": "Relationships to missing issues",
        "self_edges": "Self-referential relationships",
        "cyclic_edges": "Parent links rejected to break cycles",
        "unknown_relations": "Unknown relationship types",
        "unknown_statuses": "Unrecognized statuses",
    }
    for key, label in labels.items():
        count = counts.get(key, 0)
        if count:
            console.print(f"  ⚠️  {label}: {count}")
        else:
            console.print(f"  ✅ {label}: none")


# ── serve ─────────────────────────────────────────────────────────────

@app.command()
def serve(
    port: int = typer.Option(8765, help="Port to run the API server on"),
    host: str = typer.Option("127.0.0.1", help="Host to bind the API server to"),
) -> None:
    """Start the viewer API server."""
    try:
        import uvicorn
        from beadview.api import create_app
    except ImportError:
        console.print("[bold red]API dependencies not installed.[/bold red]")
        console.print("Run: [yellow]pip install beadview[gui][/yellow]")
        raise typer.Exit(1)

    console.print(Panel(
        f"🚀 [bold green]beadview API running![/bold green]\n\n"
        f"  Rows: http://{host}:{port}/api/rows\n"
        f"  API Documentation: http://{host}:{port}/docs\n\n"
        "Press [bold]Ctrl+C[/bold] to stop.",
        style="green",
    ))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")
