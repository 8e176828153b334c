"""
Comment feed CLI.

Operator commands against the configured connection registry.
"""

import asyncio
import json
import sys
import time
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="comment-feed",
    help="Comment feed registry and broadcast CLI",
    add_completion=False,
)
console = Console()


def _run(coro):
    """Run a coroutine, printing FeedErrors instead of tracebacks."""
    from shared.utils.exceptions import FeedError
    from comment_feed.dependencies import close_dependencies

    async def _wrapped():
        try:
            return await coro
        finally:
            await close_dependencies()

    try:
        return asyncio.run(_wrapped())
    except FeedError as e:
        console.print(f"[red]✗ {e.error_code}: {e.detail}[/red]")
        raise typer.Exit(1)


# =============================================================================
# Registry Commands
# =============================================================================

@app.command()
def query(channel: str = typer.Argument(..., help="Channel to list")):
    """List the connections registered under a channel."""
    from comment_feed.dependencies import get_registry

    async def _query():
        registry = await get_registry()
        return await registry.query(channel)

    members = _run(_query())
    table = Table(title=f"Channel {channel}")
    table.add_column("Connection ID", style="cyan")
    for cid in sorted(members):
        table.add_row(cid)
    console.print(table)
    console.print(f"[blue]{len(members)} connection(s)[/blue]")


@app.command()
def join(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    channel: str = typer.Option(None, help="Channel (default channel when omitted)"),
):
    """Register a connection under a channel."""
    from comment_feed.dependencies import get_trigger_services

    async def _join():
        services = await get_trigger_services()
        if channel:
            await services.membership.join(connection_id, channel)
            return channel
        return await services.membership.join_default(connection_id)

    joined = _run(_join())
    console.print(f"[green]✓ {connection_id} joined {joined}[/green]")


@app.command()
def leave(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    channel: str = typer.Option(None, help="Channel (current channel when omitted)"),
):
    """Remove a connection from a channel."""
    from comment_feed.dependencies import get_trigger_services

    async def _leave():
        services = await get_trigger_services()
        if channel:
            await services.membership.leave(connection_id, channel)
            return channel
        return await services.membership.leave_current(connection_id)

    left = _run(_leave())
    if left is None:
        console.print(f"[yellow]{connection_id} was not registered[/yellow]")
    else:
        console.print(f"[green]✓ {connection_id} left {left}[/green]")


@app.command()
def switch(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    from_channel: str = typer.Argument(..., help="Current channel"),
    to_channel: str = typer.Argument(..., help="New channel"),
):
    """Move a connection to another channel."""
    from comment_feed.dependencies import get_trigger_services

    async def _switch():
        services = await get_trigger_services()
        await services.membership.switch_channel(connection_id, from_channel, to_channel)

    _run(_switch())
    console.print(f"[green]✓ {connection_id}: {from_channel} → {to_channel}[/green]")


@app.command()
def broadcast(
    channel: str = typer.Argument(..., help="Target channel"),
    message: str = typer.Argument(..., help="Message text"),
    endpoint: str = typer.Option(None, help="Push endpoint URL (defaults to PUSH_ENDPOINT_URL)"),
):
    """Send a message to every connection in a channel."""
    from comment_feed.dependencies import get_trigger_services

    async def _broadcast():
        services = await get_trigger_services()
        return await services.dispatcher(endpoint).broadcast(channel, message)

    report = _run(_broadcast())

    table = Table(title=f"Broadcast to {channel}")
    table.add_column("Connection ID", style="cyan")
    table.add_column("Outcome", style="green")
    table.add_column("Detail", style="yellow")
    for cid, result in sorted(report.results.items()):
        table.add_row(cid, result.status.value, result.detail or "")
    console.print(table)
    if report.cleaned_up:
        console.print(f"[blue]Removed stale: {', '.join(report.cleaned_up)}[/blue]")
    if report.cleanup_failed:
        console.print(f"[red]Cleanup failed: {', '.join(report.cleanup_failed)}[/red]")


@app.command()
def sweep(
    probe: bool = typer.Option(False, "--probe", help="Ask the push gateway about every member"),
    repair: bool = typer.Option(False, "--repair", help="Fix what is found"),
    endpoint: str = typer.Option(None, help="Push endpoint URL for --probe"),
    grace: float = typer.Option(30.0, help="Ignore switches younger than this (seconds)"),
):
    """Find (and optionally repair) orphaned, duplicate and stale registry entries."""
    from comment_feed.dependencies import get_push_gateway, get_registry
    from comment_feed.reconcile import ReconciliationSweep

    async def _sweep():
        registry = await get_registry()
        gateway = get_push_gateway(endpoint) if probe else None
        return await ReconciliationSweep(registry, gateway, grace_period=grace).run(
            probe=probe, repair=repair,
        )

    report = _run(_sweep())
    console.print_json(json.dumps(report.to_dict()))
    if report.clean:
        console.print("[green]✓ Registry is consistent[/green]")
    elif not repair:
        console.print("[yellow]Run again with --repair to fix[/yellow]")


# =============================================================================
# Health Commands
# =============================================================================

@app.command()
def health(
    url: str = typer.Option("http://localhost:8002/health", help="Trigger host health URL"),
):
    """Check system health."""
    import httpx

    async def _health():
        table = Table(title="Service Health")
        table.add_column("Service", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Response Time", style="yellow")

        async with httpx.AsyncClient(timeout=5.0) as client:
            try:
                start = time.time()
                response = await client.get(url)
                elapsed = (time.time() - start) * 1000
                if response.status_code == 200:
                    table.add_row("Trigger host", "✓ Healthy", f"{elapsed:.0f}ms")
                else:
                    table.add_row("Trigger host", f"✗ Status {response.status_code}", f"{elapsed:.0f}ms")
            except httpx.HTTPError as e:
                table.add_row("Trigger host", f"✗ {type(e).__name__}", "-")

        from shared.infrastructure.redis_pool import check_redis_health, close_redis_pool

        result = await check_redis_health()
        if result["status"] == "healthy":
            table.add_row("Redis", "✓ Healthy", f"{result['latency_ms']:.0f}ms")
        else:
            table.add_row("Redis", f"✗ {result.get('error')}", "-")
        await close_redis_pool()

        console.print(table)

    asyncio.run(_health())


@app.command()
def version():
    """Show version information."""
    from comment_feed import __version__

    console.print(f"comment-feed {__version__}")


if __name__ == "__main__":
    app()
