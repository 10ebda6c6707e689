"""CLI issue commands — status, close, reopen, label, create, delete, dep."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

import typer
from rich.console import Console

issue_app = typer.Typer(help="Change issues through the bd CLI")
label_app = typer.Typer(help="Add or remove labels")
dep_app = typer.Typer(help="Add or remove relationships")
issue_app.add_typer(label_app, name="label")
issue_app.add_typer(dep_app, name="dep")

console = Console()


def _store():
    from beadview.store import BeadsStore

    return BeadsStore()


def _mutate(action: Callable[[], object], success: str) -> object:
    """Run one mutation; failures are reported once with a non-zero exit."""
    from beadview.store import StoreError

    try:
        result = action()
    except ValueError as exc:
        console.print(f"[bold red]❌ Invalid input:[/bold red] {exc}")
        raise typer.Exit(2)
    except StoreError as exc:
        console.print(f"[bold red]❌ bd failed:[/bold red] {exc}")
        raise typer.Exit(1)
    console.print(f"[green]✅ {success}[/green]")
    return result


@issue_app.command()
def status(
    issue_id: str = typer.Argument(..., help="Issue id"),
    value: str = typer.Argument(..., help="open, in_progress, blocked, deferred or closed"),
) -> None:
    """Set the status of an issue."""
    from beadview.models import is_known_status

    if not is_known_status(value.strip().lower()):
        console.print(f"[red]Unknown status: {value}[/red]")
        raise typer.Exit(2)
    store = _store()
    _mutate(lambda: store.update_status(issue_id, value.strip().lower()), f"{issue_id} → {value}")


@issue_app.command()
def close(issue_id: str = typer.Argument(..., help="Issue id")) -> None:
    """Close an issue."""
    store = _store()
    _mutate(lambda: store.close(issue_id), f"Closed {issue_id}")


@issue_app.command()
def reopen(issue_id: str = typer.Argument(..., help="Issue id")) -> None:
    """Reopen a closed issue."""
    store = _store()
    _mutate(lambda: store.reopen(issue_id), f"Reopened {issue_id}")


@issue_app.command()
def create(
    title: str = typer.Argument(..., help="Issue title"),
    issue_type: str = typer.Option("task", "--type", "-t", help="Issue type"),
    priority: int = typer.Option(2, "--priority", "-p", min=0, max=4, help="Priority 0-4"),
    labels: Optional[str] = typer.Option(None, "--labels", "-l", help="Comma-separated labels"),
    assignee: Optional[str] = typer.Option(None, "--assignee", "-a", help="Assignee"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Description"),
    parent: Optional[str] = typer.Option(None, "--parent", help="Parent issue id"),
) -> None:
    """Create an issue, optionally as a child of another."""
    store = _store()
    label_list = [p.strip() for p in (labels or "").split(",") if p.strip()]
    record = _mutate(
        lambda: store.create(
            title,
            issue_type=issue_type,
            priority=priority,
            labels=label_list,
            assignee=assignee,
            description=description,
            parent_id=parent,
        ),
        "Issue created",
    )
    console.print(f"  {record.id}  {record.title}")


@issue_app.command()
def delete(
    issue_id: str = typer.Argument(..., help="Issue id"),
    cascade: bool = typer.Option(False, "--cascade", help="Also delete dependents"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an issue."""
    if not yes:
        typer.confirm(f"Delete {issue_id}{' and its dependents' if cascade else ''}?", abort=True)
    store = _store()
    _mutate(lambda: store.delete(issue_id, cascade=cascade), f"Deleted {issue_id}")


@label_app.command("add")
def label_add(
    issue_id: str = typer.Argument(..., help="Issue id"),
    label: str = typer.Argument(..., help="Label"),
) -> None:
    """Add a label to an issue."""
    store = _store()
    _mutate(lambda: store.add_label(issue_id, label), f"Labeled {issue_id} with {label}")


@label_app.command("remove")
def label_remove(
    issue_id: str = typer.Argument(..., help="Issue id"),
    label: str = typer.Argument(..., help="Label"),
) -> None:
    """Remove a label from an issue."""
    store = _store()
    _mutate(lambda: store.remove_label(issue_id, label), f"Removed {label} from {issue_id}")


@dep_app.command("add")
def dep_add(
    from_id: str = typer.Argument(..., help="Dependent issue id"),
    to_id: str = typer.Argument(..., help="Target issue id"),
    dep_type: str = typer.Option("blocks", "--type", help="blocks, parent-child, related, ..."),
) -> None:
    """Add a relationship (FROM depends on TO)."""
    store = _store()
    _mutate(lambda: store.add_dependency(from_id, to_id, dep_type), f"{from_id} → {to_id} ({dep_type})")


@dep_app.command("remove")
def dep_remove(
    from_id: str = typer.Argument(..., help="Dependent issue id"),
    to_id: str = typer.Argument(..., help="Target issue id"),
) -> None:
    """Remove a relationship."""
    store = _store()
    _mutate(lambda: store.remove_dependency(from_id, to_id), f"Removed {from_id} → {to_id}")
