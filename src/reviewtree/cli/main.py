"""Main CLI commands — config, show, serve."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reviewtree.cli.groups import groups_app
from reviewtree.models import GroupingMode

app = typer.Typer(
    name="reviewtree",
    help="reviewtree — group pull requests by author, work item hierarchy or manual folders.",
    add_completion=False,
    rich_markup_mode="rich",
)
app.add_typer(groups_app, name="groups", help="Manage manual pull request groups")

console = Console()

MODE_ALIASES = {
    "author": GroupingMode.BY_AUTHOR,
    "people": GroupingMode.BY_AUTHOR,
    "ancestor": GroupingMode.BY_ANCESTOR,
    "workitems": GroupingMode.BY_ANCESTOR,
    "manual": GroupingMode.MANUAL,
}


def _setup_logging(verbose: bool = False) -> None:
    from reviewtree.config import get_settings
    from reviewtree.logging_config import configure_logging

    settings = get_settings()
    level = "DEBUG" if verbose else settings.log_level
    configure_logging(
        level=level,
        log_file=settings.log_file,
        json_format=settings.log_json,
        debug_hierarchy=settings.debug_hierarchy,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """reviewtree CLI root."""
    _setup_logging(verbose)


# ── config show ──────────────────────────────────────────────────────

@app.command(name="config")
def config_show() -> None:
    """Print resolved configuration (sensitive values masked)."""
    from reviewtree.config import get_settings

    settings = get_settings()
    table = Table(
        title="reviewtree Configuration",
        show_lines=True,
        header_style="bold cyan",
    )
    table.add_column("Setting", style="bold yellow", no_wrap=True)
    table.add_column("Value")

    for key, val in settings.as_display_dict().items():
        table.add_row(key, val)

    console.print(table)

    errors = settings.validate_devops_config()
    if errors:
        console.print("\n[bold red]⚠️  Configuration issues:[/bold red]")
        for err in errors:
            console.print(f"  • {err}")
    else:
        console.print("\n[bold green]✅ Configuration looks valid[/bold green]")


# ── show ──────────────────────────────────────────────────────────────

async def _load_tree(mode: GroupingMode, depth: int | None):
    from reviewtree.coordinator import build_coordinator

    coordinator = build_coordinator()
    try:
        if depth is not None:
            result = await coordinator.set_depth(depth)
            if not result.ok:
                console.print(f"[red]{result.detail}[/red]")
                raise typer.Exit(1)
        await coordinator.refresh()
        if mode is GroupingMode.BY_ANCESTOR:
            await coordinator.wait_for_hierarchy()
        coordinator.set_mode(mode)
        return coordinator.get_grouping_tree(), coordinator.review_status
    finally:
        await coordinator.source.close()


@app.command()
def show(
    mode: str = typer.Option("author", "--mode", "-m", help="author, ancestor or manual"),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", help="Work item level to group by"),
) -> None:
    """Fetch pull requests and print them grouped."""
    from reviewtree.coordinator import RefreshError
    from reviewtree.devops_client import DevOpsClientError
    from reviewtree.render import render_rich_tree

    grouping_mode = MODE_ALIASES.get(mode.lower())
    if grouping_mode is None:
        console.print(f"[red]Unknown mode: {mode}. Use author, ancestor or manual.[/red]")
        raise typer.Exit(1)

    try:
        tree, status = asyncio.run(_load_tree(grouping_mode, depth))
    except (DevOpsClientError, RefreshError) as exc:
        console.print(f"[bold red]❌ Azure DevOps error:[/bold red] {exc}")
        raise typer.Exit(1)

    console.print(render_rich_tree(tree, status))
    if tree.unresolved_count:
        console.print(f"\n[yellow]{tree.unresolved_count} pull request(s) without a work item at this level[/yellow]")


# ── serve ─────────────────────────────────────────────────────────────

@app.command()
def serve(
    port: int = typer.Option(8766, help="Port to run the API server on"),
    host: str = typer.Option("127.0.0.1", help="Host to bind the API server to"),
) -> None:
    """Start the reviewtree HTTP API."""
    try:
        import uvicorn
        from reviewtree.api import create_app
    except ImportError:
        console.print("[bold red]Server dependencies not installed.[/bold red]")
        console.print("Run: [yellow]pip install reviewtree[gui][/yellow]")
        raise typer.Exit(1)

    console.print(Panel(
        f"🚀 [bold green]reviewtree API running![/bold green]\n\n"
        f"  Grouping tree: http://localhost:{port}/api/tree\n"
        f"  API Documentation: http://localhost:{port}/docs\n\n"
        "Press [bold]Ctrl+C[/bold] to stop.",
        style="green",
    ))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")
