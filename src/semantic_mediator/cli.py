"""CLI for SemanticMediator.

Commands:
    init-db                              - Create database tables
    resolve <module-a> <data-a> <module-b> <data-b>
                                         - Resolve conflicts between two payloads
    top                                  - Most used cached transformations
    recent                               - Most recently used cached transformations
    purge                                - Tombstone stale cache entries
    analyze                              - Oracle analysis of cache usage
    register-source <name> <description> - Register a data source
    list-sources                         - List registered data sources
    remove-source <source-id>            - Retire a data source
    find-sources <intent>                - Rank data sources for an intent
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from semantic_mediator.cache.entry import CacheEntry
from semantic_mediator.cache.semantic_key import entity_type_of
from semantic_mediator.config import settings
from semantic_mediator.db import init_db
from semantic_mediator.factory import build_mediator

app = typer.Typer(
    name="semantic-mediator",
    help="SemanticMediator — semantic conflict resolution with a learning transformation cache",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def load_payload(value: str) -> Any:
    """Parse a JSON payload given inline or as ``@path/to/file.json``."""
    if value.startswith("@"):
        path = Path(value[1:])
        if not path.is_file():
            console.print(f"[red]Error:[/red] File does not exist: {path}")
            raise typer.Exit(1)
        value = path.read_text(encoding="utf-8")
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] Invalid JSON payload: {e}")
        raise typer.Exit(1) from None


def _entries_table(title: str, entries: list[CacheEntry]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Source", style="cyan")
    table.add_column("Target", style="cyan")
    table.add_column("Uses", justify="right")
    table.add_column("Last Used")
    table.add_column("Strategy")

    for entry in entries:
        table.add_row(
            str(entry.id)[:8],
            entity_type_of(entry.source_descriptor),
            entity_type_of(entry.target_descriptor),
            str(entry.usage_count),
            entry.last_used.strftime("%Y-%m-%d %H:%M"),
            str(entry.metadata.get("strategy_used", "-")),
        )
    return table


@app.command("init-db")
def init_database():
    """Initialize the database schema (creates tables if they don't exist)."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized successfully.[/green]")

    run_async(_init())


@app.command()
def resolve(
    module_a: Annotated[str, typer.Argument(help="Source module id")],
    data_a: Annotated[str, typer.Argument(help="Source payload (JSON or @file)")],
    module_b: Annotated[str, typer.Argument(help="Target module id")],
    data_b: Annotated[str, typer.Argument(help="Target payload (JSON or @file)")],
    strategy: Annotated[
        str | None, typer.Option("--strategy", "-s", help="Force a strategy by name")
    ] = None,
    context: Annotated[
        str | None, typer.Option(help="Extra context for the oracle (JSON or @file)")
    ] = None,
    no_cache: Annotated[
        bool, typer.Option("--no-cache", help="Do not cache a successful result")
    ] = False,
):
    """Resolve semantic conflicts between two modules' data."""
    payload_a = load_payload(data_a)
    payload_b = load_payload(data_b)
    extra_context = load_payload(context) if context else None

    async def _resolve():
        await init_db()
        mediator = build_mediator()
        result = await mediator.resolver.resolve(
            module_a,
            payload_a,
            module_b,
            payload_b,
            force_strategy=strategy,
            context=extra_context,
            cache_results=not no_cache,
        )

        status = "[green]resolved[/green]" if result.success else "[red]unresolved[/red]"
        console.print(
            Panel(
                JSON.from_data(result.resolved_data, default=str),
                title=f"{module_a} → {module_b}: {status}",
                subtitle=f"{result.strategy_used} (confidence {result.confidence:.2f})",
            )
        )
        for note in result.resolved_conflicts:
            console.print(f"  [green]✓[/green] {note.type}: {note.description}")
        for note in result.unresolved_conflicts:
            console.print(f"  [red]✗[/red] {note.type}: {note.description} ({note.reason})")
        console.print(f"\n[dim]{result.metadata.execution_time_ms:.0f}ms[/dim]")

        if not result.success:
            raise typer.Exit(1)

    run_async(_resolve())


@app.command()
def top(
    limit: Annotated[int, typer.Option(help="Maximum entries to show")] = 10,
):
    """Show the most used cached transformations."""
    async def _top():
        await init_db()
        entries = await build_mediator().cache.most_used(limit)
        if not entries:
            console.print("[yellow]Cache is empty.[/yellow]")
            return
        console.print(_entries_table("Most Used Transformations", entries))

    run_async(_top())


@app.command()
def recent(
    limit: Annotated[int, typer.Option(help="Maximum entries to show")] = 10,
):
    """Show the most recently used cached transformations."""
    async def _recent():
        await init_db()
        entries = await build_mediator().cache.most_recent(limit)
        if not entries:
            console.print("[yellow]Cache is empty.[/yellow]")
            return
        console.print(_entries_table("Recently Used Transformations", entries))

    run_async(_recent())


@app.command()
def purge(
    older_than_days: Annotated[
        float | None,
        typer.Option(help="Retention in days (default from CACHE_RETENTION_DAYS)"),
    ] = None,
    all_entries: Annotated[
        bool, typer.Option("--all", help="Tombstone every cache entry")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Skip confirmation prompt")
    ] = False,
):
    """Tombstone cache entries not used within the retention window."""
    if all_entries and not force:
        confirm = typer.confirm("This will purge the ENTIRE cache. Are you sure?", default=False)
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    days = settings.cache_retention_days if older_than_days is None else older_than_days
    cutoff = None if all_entries else datetime.now(UTC) - timedelta(days=days)

    async def _purge():
        await init_db()
        purged = await build_mediator().cache.purge(cutoff)
        console.print(f"[green]Purged {purged} cache entries.[/green]")

    run_async(_purge())


@app.command()
def analyze(
    optimize: Annotated[
        bool, typer.Option("--optimize", help="Also ask for an optimization plan")
    ] = False,
):
    """Analyze cache usage patterns with the oracle."""
    async def _analyze():
        await init_db()
        cache = build_mediator().cache
        analysis = await cache.analyze_usage()

        console.print(Panel(analysis.insights or "-", title="Insights"))
        if analysis.patterns:
            console.print("[bold]Patterns:[/bold]")
            for pattern in analysis.patterns:
                console.print(f"  • {json.dumps(pattern, ensure_ascii=False, default=str)}")
        if analysis.recommendations:
            console.print("[bold]Recommendations:[/bold]")
            for rec in analysis.recommendations:
                console.print(f"  • {rec}")
        if analysis.error:
            console.print(f"[red]Error:[/red] {analysis.error}")

        if optimize:
            plan = await cache.recommend_optimizations()
            if plan.error:
                console.print(f"[red]Optimization failed:[/red] {plan.error}")
            else:
                console.print(f"\n[bold]Retain:[/bold] {', '.join(plan.retain_types) or '-'}")
                console.print(f"[bold]Purge:[/bold] {', '.join(plan.purge_types) or '-'}")
                for suggestion in plan.additional_suggestions:
                    console.print(f"  • {suggestion}")

        console.print(f"\n[dim]Predictive threshold: {cache.adaptive_threshold:.2f}[/dim]")

    run_async(_analyze())


@app.command("register-source")
def register_source(
    name: Annotated[str, typer.Argument(help="Data source name")],
    description: Annotated[str, typer.Argument(help="What the source provides")],
    capability: Annotated[
        list[str] | None, typer.Option("--capability", "-c", help="Capability (repeatable)")
    ] = None,
    module: Annotated[str | None, typer.Option(help="Owning module id")] = None,
):
    """Register a data source for candidate-source search."""
    async def _register():
        await init_db()
        source_id = await build_mediator().resolver.register_data_source(
            name, description, capability or [], module
        )
        console.print(f"[green]Registered[/green] {source_id}")

    run_async(_register())


@app.command("list-sources")
def list_sources(
    module: Annotated[str | None, typer.Option(help="Only sources owned by this module")] = None,
):
    """List registered data sources."""
    async def _list():
        await init_db()
        sources = await build_mediator().resolver.list_data_sources(module)
        if not sources:
            console.print("[yellow]No data sources registered.[/yellow]")
            return

        table = Table(title="Data Sources")
        table.add_column("Source", style="cyan")
        table.add_column("Module")
        table.add_column("Description")
        table.add_column("Capabilities")
        for s in sources:
            table.add_row(
                s.source_id,
                s.module_id or "-",
                s.description,
                ", ".join(s.capabilities),
            )
        console.print(table)

    run_async(_list())


@app.command("remove-source")
def remove_source(
    source_id: Annotated[str, typer.Argument(help="Id returned by register-source")],
):
    """Retire a data source so it no longer appears in searches."""
    async def _remove():
        await init_db()
        if not await build_mediator().resolver.remove_data_source(source_id):
            console.print(f"[red]Error:[/red] Unknown data source: {source_id}")
            raise typer.Exit(1)
        console.print(f"[green]Removed[/green] {source_id}")

    run_async(_remove())


@app.command("find-sources")
def find_sources(
    intent: Annotated[str, typer.Argument(help="Semantic intent, e.g. 'customer billing address'")],
):
    """Rank registered data sources against a semantic intent."""
    async def _find():
        await init_db()
        candidates = await build_mediator().resolver.find_candidate_sources(intent)
        if not candidates:
            console.print("[yellow]No relevant data sources found.[/yellow]")
            return

        table = Table(title=f"Sources for: {intent}")
        table.add_column("Source", style="cyan")
        table.add_column("Relevance", justify="right")
        table.add_column("Description")
        table.add_column("Capabilities")
        for c in candidates:
            table.add_row(
                c.source_id,
                f"{c.relevance:.2f}",
                str(c.metadata.get("description") or ""),
                ", ".join(c.metadata.get("capabilities") or []),
            )
        console.print(table)

    run_async(_find())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
