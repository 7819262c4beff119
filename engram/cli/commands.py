"""CLI commands for engram."""

import sys
import time
from datetime import timedelta
from typing import Callable, TypeVar

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from engram import __logo__, __version__

app = typer.Typer(
    name="engram",
    help=f"{__logo__} engram - garbage-collected memory for coding agents",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} engram v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """engram - garbage-collected memory for coding agents."""
    pass


# ============================================================================
# Store access
# ============================================================================


def _setup_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="{time:HH:mm:ss} [{level}] {message}")


def _with_store(operation: Callable[["MemoryStore"], T]) -> T:
    """
    Open the configured store, run one operation, and close it.

    Engine errors become a one-line diagnostic and a non-zero exit status.
    A locked store is retried with exponential backoff first.
    """
    from engram.config.loader import load_config
    from engram.memory import Corruption, EngramError, MemoryStore, StoreLocked

    config = load_config()
    _setup_logging(config.log_level)

    attempts = config.cli.lock_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            with MemoryStore.from_config(config) as store:
                return operation(store)
        except StoreLocked as e:
            if attempt == attempts:
                err_console.print(f"[red]Error:[/red] {escape(str(e))}")
                raise typer.Exit(1)
            delay = 0.1 * 2 ** (attempt - 1)
            logger.debug(f"Store locked, retrying in {delay:.1f}s ({attempt}/{attempts - 1})")
            time.sleep(delay)
        except Corruption as e:
            err_console.print(f"[red]Corruption:[/red] {escape(str(e))}")
            err_console.print("Run [cyan]engram rebuild[/cyan] to regenerate the projection.")
            raise typer.Exit(2)
        except EngramError as e:
            err_console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1)

    raise typer.Exit(1)


def _print_memory(memory) -> None:
    from engram.memory.visualize import format_memory_line

    console.print(escape(format_memory_line(memory)), highlight=False)


# ============================================================================
# Memory Commands
# ============================================================================


@app.command()
def add(
    content: str = typer.Argument(..., help="The memory content"),
    scope: str = typer.Option("global", "--scope", help="Scope: global or project:<path>"),
):
    """Add a new memory."""
    memory = _with_store(lambda store: store.add(content, scope))
    typer.echo(memory.id)


@app.command("list")
def list_memories(
    scope: str = typer.Option(None, "--scope", help="Filter by scope (project filters include global)"),
    gen: int = typer.Option(None, "--gen", help="Filter by generation (0, 1, 2)"),
):
    """List memories in creation order."""
    memories = _with_store(lambda store: store.list(scope=scope, generation=gen))

    if not memories:
        console.print("No memories found.")
        return

    for memory in memories:
        _print_memory(memory)


@app.command()
def show(memory_id: str = typer.Argument(..., help="Memory ID or unique prefix")):
    """Show a specific memory."""
    from engram.memory.record import GENERATION_LABELS

    memory = _with_store(lambda store: store.show(memory_id))

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()

    table.add_row("ID:", memory.id)
    table.add_row("Content:", escape(memory.content))
    table.add_row("Scope:", escape(str(memory.scope)))
    table.add_row("Generation:", f"{memory.generation} ({GENERATION_LABELS[memory.generation]})")
    table.add_row("Taps:", str(memory.tap_count))
    table.add_row("Created:", memory.created_at.isoformat(timespec="seconds"))
    if memory.last_tapped_at:
        table.add_row("Last tap:", memory.last_tapped_at.isoformat(timespec="seconds"))

    console.print(table)


@app.command()
def edit(
    memory_id: str = typer.Argument(..., help="Memory ID or unique prefix"),
    content: str = typer.Argument(..., help="New content"),
):
    """Replace a memory's content."""
    memory = _with_store(lambda store: store.edit(memory_id, content))
    console.print(f"[green]✓[/green] Edited {memory.id}")


@app.command()
def remove(memory_id: str = typer.Argument(..., help="Memory ID or unique prefix")):
    """Remove a memory (its history stays in the log)."""
    def _remove(store):
        resolved = store.resolve(memory_id)
        store.remove(resolved)
        return resolved

    removed = _with_store(_remove)
    console.print(f"[green]✓[/green] Removed {removed}")


@app.command()
def tap(
    ids: list[str] = typer.Argument(None, help="Memory IDs to tap"),
    match: str = typer.Option(None, "--match", help="Tap memories whose content contains this text"),
):
    """Record memory usage (tap)."""
    from engram.memory import AmbiguousId, NotFound

    def _tap(store):
        tapped: list[str] = []
        not_found: list[str] = []
        # All taps of one command commit or roll back together
        with store.transaction():
            if match:
                tapped.extend(store.tap_match(match))
            for ref in ids or []:
                try:
                    memory_id = store.resolve(ref)
                    store.tap(memory_id)
                    tapped.append(memory_id)
                except (NotFound, AmbiguousId) as e:
                    not_found.append(str(e))
        return tapped, not_found

    tapped, not_found = _with_store(_tap)

    if not tapped and not not_found:
        console.print("No memories to tap.")
        return

    if tapped:
        console.print(f"Tapped {len(tapped)} memory(ies): {', '.join(tapped)}")
    if not_found:
        for message in not_found:
            err_console.print(f"[red]Error:[/red] {escape(message)}")
        raise typer.Exit(1)


@app.command()
def log(
    action: str = typer.Option(None, "--action", "-a", help="Filter by action (ADD, TAP, EDIT, REMOVE, EXPIRE, PROMOTE)"),
    memory_id: str = typer.Option(None, "--id", help="Filter by memory ID or prefix (removed memories included)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent events"),
):
    """Show the event log."""
    from engram.memory import NotFound
    from engram.memory.event import ACTIONS
    from engram.memory.visualize import enrich_event, format_event_line

    if action:
        action = action.upper()
        if action not in ACTIONS:
            err_console.print(f"[red]Error:[/red] Unknown action '{escape(action)}'")
            raise typer.Exit(1)

    def _log(store):
        target = memory_id
        if target:
            try:
                target = store.resolve_logged(target)
            except NotFound:
                pass
        events = store.log(action=action, memory_id=target, limit=limit)
        return [format_event_line(enrich_event(store, e)) for e in events]

    lines = _with_store(_log)

    if not lines:
        console.print("No events found.")
        return

    for line in lines:
        console.print(escape(line), highlight=False)


@app.command()
def gc(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be expired"),
    limit: int = typer.Option(None, "--limit", help="Maximum memories to expire"),
):
    """Run garbage collection."""
    from engram.memory.ids import short_id
    from engram.memory.visualize import truncate

    def _gc(store):
        candidates = store.gc(dry_run=dry_run, limit=limit)
        return [
            (c, store.ledger.last_content(c.memory_id) or "")
            for c in candidates
        ]

    results = _with_store(_gc)
    prefix = "[DRY RUN] " if dry_run else ""

    if not results:
        console.print(f"{escape(prefix)}No changes.")
        return

    verb = "Would expire" if dry_run else "Expired"
    console.print(f"{escape(prefix)}{verb} {len(results)} memory(ies):")
    for candidate, content in results:
        console.print(
            escape(f"  - [{short_id(candidate.memory_id)}] {truncate(content, 40)} ({candidate.reason})"),
            highlight=False,
        )


@app.command()
def stats():
    """Show memory statistics."""
    from engram.memory.record import GENERATION_LABELS

    result = _with_store(lambda store: store.stats())

    console.print("\n[bold]Engram Stats[/bold]")
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")

    table.add_row("Total memories:", str(result.total))
    for generation, count in enumerate(result.by_generation):
        table.add_row(f"Gen {generation} ({GENERATION_LABELS[generation]}):", str(count))
    table.add_row("Total taps:", str(result.total_taps))
    table.add_row("Never tapped:", str(result.never_tapped))
    console.print(table)

    if result.scopes:
        scope_table = Table(title="By scope")
        scope_table.add_column("Scope", style="cyan")
        scope_table.add_column("Memories", justify="right")
        for scope_tag, count in result.scopes:
            scope_table.add_row(escape(scope_tag), str(count))
        console.print(scope_table)


@app.command()
def hot(
    hours: int = typer.Option(None, "--hours", help="Time window in hours"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of memories"),
):
    """Show the most tapped memories in a recent window."""
    from engram.memory.ids import short_id
    from engram.memory.visualize import truncate

    def _hot(store):
        window = hours if hours is not None else store.config.cli.hot_window_hours
        return store.hot(window=timedelta(hours=window), limit=limit)

    memories = _with_store(_hot)

    if not memories:
        console.print("No taps in this window.")
        return

    table = Table(title="Hot memories")
    table.add_column("ID", style="cyan")
    table.add_column("Recent", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Content")
    for memory in memories:
        table.add_row(
            short_id(memory.id),
            str(memory.recent_taps),
            str(memory.total_taps),
            escape(truncate(memory.content, 50)),
        )
    console.print(table)


@app.command()
def activity(days: int = typer.Option(7, "--days", help="Number of days")):
    """Show daily activity."""
    summaries = _with_store(lambda store: store.activity(days=days))

    if not summaries:
        console.print("No activity in this period.")
        return

    table = Table(title=f"Activity (last {days} days)")
    table.add_column("Day", style="cyan")
    table.add_column("Adds", justify="right")
    table.add_column("Taps", justify="right")
    table.add_column("Removes", justify="right")
    table.add_column("Expires", justify="right")
    for summary in summaries:
        table.add_row(
            summary.period,
            str(summary.adds),
            str(summary.taps),
            str(summary.removes),
            str(summary.expires),
        )
    console.print(table)


@app.command()
def init(
    scope: list[str] = typer.Option(None, "--scope", help="Scopes to include (global is always included)"),
):
    """Print the memory context block for session start hooks."""
    from engram.memory.visualize import format_context_block

    memories = _with_store(lambda store: store.context_memories(scope or []))
    typer.echo(format_context_block(memories))


# ============================================================================
# Integrity Commands
# ============================================================================


@app.command()
def verify():
    """Check the projection against a full replay of the event log."""
    count = _with_store(lambda store: (store.verify(), store.ledger.count())[1])
    console.print(f"[green]✓[/green] Projection matches the event log ({count} events)")


@app.command()
def rebuild():
    """Regenerate the projection from the event log."""
    count = _with_store(lambda store: store.rebuild())
    console.print(f"[green]✓[/green] Rebuilt projection: {count} memories")


if __name__ == "__main__":
    app()
