"""CLI manual group commands — list, create, rename, delete, clear, move, move-author."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from reviewtree.models import UNASSIGNED

groups_app = typer.Typer(help="Manage manual pull request groups")
console = Console()


def _store():
    from reviewtree.manual_groups import ManualGroupStore
    from reviewtree.storage import open_store

    return ManualGroupStore(open_store())


def _target(group_id: Optional[str]) -> Optional[str]:
    return None if group_id in (None, "", UNASSIGNED) else group_id


@groups_app.command(name="list")
def list_groups() -> None:
    """List manual groups and their member counts."""
    groups = _store().groups
    if not groups:
        console.print("[yellow]No manual groups yet. Create one with 'reviewtree groups create'.[/yellow]")
        return

    table = Table(header_style="bold cyan")
    table.add_column("Id", style="bold yellow", no_wrap=True)
    table.add_column("Name")
    table.add_column("PRs", justify="right")
    table.add_column("Members")
    for group in sorted(groups, key=lambda g: (g.name.casefold(), g.order)):
        members = ", ".join(f"#{leaf_id}" for leaf_id in group.member_leaf_ids)
        table.add_row(group.id, group.name, str(len(group.member_leaf_ids)), members)
    console.print(table)


@groups_app.command()
def create(name: str = typer.Argument(..., help="Group name")) -> None:
    """Create an empty manual group."""
    group_id = _store().create_group(name)
    console.print(f"[green]✅ Created group {group_id}: {name}[/green]")


@groups_app.command()
def rename(
    group_id: str = typer.Argument(..., help="Group id, e.g. manual-3"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a manual group."""
    if not _store().rename_group(group_id, name):
        console.print(f"[red]No group {group_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Renamed {group_id} to {name}[/green]")


@groups_app.command()
def delete(group_id: str = typer.Argument(..., help="Group id")) -> None:
    """Delete a manual group (its PRs become unassigned)."""
    if not _store().delete_group(group_id):
        console.print(f"[red]No group {group_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Deleted {group_id}[/green]")


@groups_app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every manual group."""
    if not yes and not typer.confirm("Delete all manual groups?"):
        raise typer.Exit(0)
    count = _store().delete_all_groups()
    console.print(f"[green]✅ Deleted {count} group(s)[/green]")


@groups_app.command()
def move(
    leaf_id: int = typer.Argument(..., help="Pull request id"),
    to_group: str = typer.Option(UNASSIGNED, "--to", help="Target group id or 'unassigned'"),
    from_group: str = typer.Option(UNASSIGNED, "--from", help="Source group id or 'unassigned'"),
) -> None:
    """Move one pull request into a group (or back to unassigned)."""
    if not _store().move_leaf(leaf_id, _target(from_group), _target(to_group)):
        console.print(f"[red]No group {to_group}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Moved PR #{leaf_id} to {to_group}[/green]")


async def _move_author(author: str, from_group: Optional[str], to_group: Optional[str]):
    from reviewtree.coordinator import build_coordinator

    coordinator = build_coordinator()
    try:
        await coordinator.refresh()
        return coordinator.move_author_leaves(author, from_group, to_group)
    finally:
        await coordinator.source.close()


@groups_app.command(name="move-author")
def move_author(
    author: str = typer.Argument(..., help="Author display name"),
    to_group: str = typer.Option(UNASSIGNED, "--to", help="Target group id or 'unassigned'"),
    from_group: str = typer.Option(UNASSIGNED, "--from", help="Source group id or 'unassigned'"),
) -> None:
    """Move all of an author's pull requests from one bucket to another."""
    from reviewtree.coordinator import RefreshError
    from reviewtree.devops_client import DevOpsClientError

    try:
        result = asyncio.run(_move_author(author, _target(from_group), _target(to_group)))
    except (DevOpsClientError, RefreshError) as exc:
        console.print(f"[bold red]❌ Azure DevOps error:[/bold red] {exc}")
        raise typer.Exit(1)

    if not result.ok:
        console.print(f"[red]{result.detail}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Moved {result.affected} PR(s) by {author} to {to_group}[/green]")
