import asyncio
from datetime import timedelta

import click
from rich.console import Console
from rich.table import Table

from agentdock.config import Config
from agentdock.logging import uvicorn_log_config

console = Console()


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx):
    """agentdock - coding agent session backend"""
    try:
        ctx.ensure_object(dict)
        ctx.obj["config"] = Config()
    except ValueError as e:
        ctx.obj["config_error"] = str(e)

    if ctx.invoked_subcommand is None:
        console.print("[bold]agentdock[/bold] - coding agent session backend\n")
        console.print("Run [cyan]agentdock serve[/cyan] to start the server.")
        console.print("\nUse [cyan]agentdock --help[/cyan] for all commands.")


def _config(ctx) -> Config:
    if "config_error" in ctx.obj:
        console.print(f"[red]Error:[/red] {ctx.obj['config_error']}")
        raise SystemExit(1)
    return ctx.obj["config"]


async def _with_runtime(config: Config, fn):
    from agentdock.server.runtime import Runtime

    runtime = Runtime(config=config)
    await runtime.connect()
    try:
        return await fn(runtime)
    finally:
        await runtime.close()


@main.command()
@click.pass_context
def status(ctx):
    """Show configuration and queue metrics."""
    config = _config(ctx)

    async def collect(runtime):
        return await runtime.jobs.metrics(), await runtime.session_service.active_count()

    metrics, active = asyncio.run(_with_runtime(config, collect))

    console.print("[bold]agentdock status[/bold]")
    console.print()
    console.print(f"Database: [cyan]{config.db_path}[/cyan]")
    console.print(f"Workers: {config.worker_concurrency}")
    console.print(f"Claude model: {config.claude_model}")
    console.print(f"Codex model: {config.codex_model} ({config.codex_reasoning_effort})")
    console.print(f"Active sessions: {active}")
    console.print()

    table = Table(title="Job queue")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for key, value in metrics.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@main.command()
@click.argument("session_id")
@click.pass_context
def cancel(ctx, session_id: str):
    """Cancel every pending or running job of a session."""
    config = _config(ctx)

    async def run(runtime):
        return await runtime.jobs.cancel_all_for_session(session_id)

    cancelled = asyncio.run(_with_runtime(config, run))
    if cancelled:
        console.print(f"Cancelled [green]{len(cancelled)}[/green] job(s) for session {session_id}")
    else:
        console.print(f"[dim]No active jobs for session {session_id}[/dim]")


@main.command()
@click.option("--days", type=int, default=None, help="Retention in days (defaults to config)")
@click.pass_context
def purge(ctx, days: int | None):
    """Delete finished jobs older than the retention window."""
    config = _config(ctx)
    retention = timedelta(days=days if days is not None else config.job_retention_days)

    async def run(runtime):
        return await runtime.jobs.purge_older_than(retention)

    removed = asyncio.run(_with_runtime(config, run))
    console.print(f"Purged [green]{removed}[/green] job(s)")


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
def serve(ctx, host: str, port: int, reload: bool):
    """Start the agentdock API server."""
    config = _config(ctx)

    import uvicorn

    console.print(f"[bold]agentdock server[/bold] starting on http://{host}:{port}")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    uvicorn.run(
        "agentdock.server.app:app",
        host=host,
        port=port,
        reload=reload,
        log_config=uvicorn_log_config(config.log_level, config.log_json),
    )
