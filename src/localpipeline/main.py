"""Main CLI entry point for localpipeline.

Usage:
    localpipeline serve --port 3000
    localpipeline status
    localpipeline dispatch LIN-42 "Fix auth flow" --agent ember
    localpipeline release ember --force
    localpipeline events --agent ember --limit 20
    localpipeline queue list
    localpipeline workspaces clean ember
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from localpipeline.config import PipelineConfig, load_config
from localpipeline.logging import setup_logging
from localpipeline.models.agent import AgentStatus
from localpipeline.models.event import ActivityEventType
from localpipeline.models.work_item import WorkItem
from localpipeline.orchestrator.state_machine import InvalidTransitionError
from localpipeline.runtime import PipelineRuntime, build_runtime
from localpipeline.store.registry import AgentBusyError, UnknownAgentError

app = typer.Typer(
    name="localpipeline",
    help="localpipeline: dispatch tracker work items to a local pool of coding agents",
    no_args_is_help=True,
)
queue_app = typer.Typer(help="Inspect and manage the pending queue", no_args_is_help=True)
workspaces_app = typer.Typer(help="Manage agent workspaces", no_args_is_help=True)
app.add_typer(queue_app, name="queue")
app.add_typer(workspaces_app, name="workspaces")

console = Console()

STATUS_STYLES = {
    AgentStatus.idle: "dim",
    AgentStatus.provisioning: "yellow",
    AgentStatus.working: "cyan",
    AgentStatus.done: "green",
    AgentStatus.error: "red",
}

EVENT_STYLES = {
    ActivityEventType.DONE: "green",
    ActivityEventType.MARKED_DONE: "green",
    ActivityEventType.ERROR: "red",
    ActivityEventType.MAX_RETRIES: "red",
    ActivityEventType.MARK_DONE_FAILED: "red",
    ActivityEventType.RETRY: "yellow",
}

_config: PipelineConfig | None = None


def get_config() -> PipelineConfig:
    """Configuration loaded by the CLI callback.

    Raises:
        RuntimeError: If the callback has not run.
    """
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call initialize_config first.")
    return _config


def initialize_config(config: PipelineConfig) -> PipelineConfig:
    global _config
    _config = config
    return _config


def _runtime() -> PipelineRuntime:
    try:
        return build_runtime(get_config())
    except Exception as e:
        console.print(f"[red]Error initializing localpipeline:[/red] {e}")
        raise typer.Exit(code=1)


async def _wait_for_watchers(runtime: PipelineRuntime, agents: list[str]) -> None:
    tasks = [t for t in (runtime.dispatcher.watcher_for(a) for a in agents) if t is not None]
    if tasks:
        console.print(f"[dim]Waiting for {len(tasks)} agent process(es) to exit...[/dim]")
        await asyncio.gather(*tasks, return_exceptions=True)


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default: web.host)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default: web.port)"),
    ] = None,
) -> None:
    """Start the webhook server and the retry supervisor."""
    import uvicorn

    from localpipeline.web.app import create_app

    config = get_config()
    host = host or config.web.host
    port = port or config.web.port

    console.print("[bold cyan]Starting localpipeline webhook server[/bold cyan]")
    console.print(f"[dim]Agents:[/dim] {', '.join(config.agents.names)}")
    console.print(f"[dim]Repo root:[/dim] {config.git.repo_root}")
    console.print(f"[dim]Listening:[/dim] http://{host}:{port}")
    if config.web.webhook_secret:
        console.print("[dim]Webhook secret:[/dim] configured")
    console.print()

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


@app.command()
def status() -> None:
    """Show the agent pool."""
    runtime = _runtime()

    table = Table(title="Agents")
    table.add_column("Agent", style="bold")
    table.add_column("Status")
    table.add_column("Work item")
    table.add_column("Branch", style="dim")
    table.add_column("PID", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Error", style="red")

    for record in runtime.registry.get_all():
        style = STATUS_STYLES[record.status]
        item = record.work_item_id or ""
        if record.work_item_title:
            item = f"{item} {record.work_item_title}"
        table.add_row(
            record.name,
            f"[{style}]{record.status.value}[/{style}]",
            item,
            record.branch or "",
            str(record.pid) if record.pid else "",
            str(record.retry_count) if record.retry_count else "",
            record.error or "",
        )

    console.print(table)
    console.print(f"[dim]Pending queue:[/dim] {len(runtime.queue)} item(s)")


@app.command()
def dispatch(
    item_id: Annotated[str, typer.Argument(help="Work item id, e.g. LIN-42")],
    title: Annotated[str, typer.Argument(help="Work item title")],
    agent: Annotated[
        Optional[str],
        typer.Option("--agent", "-a", help="Agent to use (default: first free)"),
    ] = None,
    description: Annotated[
        Optional[str],
        typer.Option("--description", "-d", help="Work item description"),
    ] = None,
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Originating tracker name"),
    ] = "",
) -> None:
    """Dispatch a work item to an agent and wait for its process to exit.

    The exit code is only observed by this process, so the command stays
    attached until the agent finishes.
    """
    runtime = _runtime()
    item = WorkItem(id=item_id, title=title, description=description, source=source)

    async def run() -> str | None:
        if agent is None:
            name = await runtime.dispatcher.dispatch_next(item)
        else:
            await runtime.dispatcher.dispatch(agent, item)
            name = agent
        if name is not None:
            await _wait_for_watchers(runtime, [name])
        return name

    try:
        name = asyncio.run(run())
    except (UnknownAgentError, AgentBusyError) as e:
        console.print(f"[red]Cannot dispatch:[/red] {e}")
        raise typer.Exit(code=1)

    if name is None:
        console.print("[yellow]All agents are busy[/yellow]")
        raise typer.Exit(code=1)

    record = runtime.registry.get_agent(name)
    style = STATUS_STYLES[record.status]
    console.print(
        f"[bold]{item.id}[/bold] -> {name}: [{style}]{record.status.value}[/{style}]"
    )
    if record.error:
        console.print(f"[red]{record.error}[/red]")


@app.command()
def release(
    agent: Annotated[str, typer.Argument(help="Agent to release")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Release even if provisioning or working"),
    ] = False,
) -> None:
    """Reset an agent to idle."""
    runtime = _runtime()
    try:
        record = runtime.registry.get_agent(agent)
        runtime.registry.release(agent, force=force)
    except UnknownAgentError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    except InvalidTransitionError:
        console.print(
            f"[red]Agent {agent} is {record.status.value}; use --force to release it[/red]"
        )
        raise typer.Exit(code=1)

    runtime.activity.append_for(record, ActivityEventType.RELEASED, "Released from CLI")
    console.print(f"[green]Released {agent}[/green]")


@app.command()
def events(
    agent: Annotated[
        Optional[str],
        typer.Option("--agent", "-a", help="Only show events for this agent"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of most recent events"),
    ] = 20,
) -> None:
    """Show the activity log."""
    runtime = _runtime()
    table = Table(title="Activity")
    table.add_column("Time", style="dim")
    table.add_column("Agent", style="bold")
    table.add_column("Event")
    table.add_column("Work item")
    table.add_column("Message")

    for event in runtime.activity.read_events(agent=agent, limit=limit):
        style = EVENT_STYLES.get(event.event, "cyan")
        table.add_row(
            event.timestamp,
            event.agent,
            f"[{style}]{event.event.value}[/{style}]",
            event.work_item_id or "",
            event.message or "",
        )
    console.print(table)


@queue_app.command("list")
def queue_list() -> None:
    """List pending work items, oldest first."""
    runtime = _runtime()
    items = runtime.queue.list_items()
    if not items:
        console.print("[dim]Queue is empty[/dim]")
        return

    table = Table(title="Pending queue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Id", style="bold")
    table.add_column("Title")
    table.add_column("Source")
    for position, item in enumerate(items, start=1):
        table.add_row(str(position), item.id, item.title, item.source)
    console.print(table)


@queue_app.command("clear")
def queue_clear() -> None:
    """Drop every pending work item."""
    removed = _runtime().queue.clear()
    console.print(f"[green]Removed {removed} item(s)[/green]")


@queue_app.command("drain")
def queue_drain() -> None:
    """Dispatch queued items to free agents, oldest first, and wait for them."""
    runtime = _runtime()

    async def run() -> list[str]:
        dispatched: list[str] = []
        while runtime.registry.get_next_free_agent() is not None:
            item = runtime.queue.pop()
            if item is None:
                break
            name = await runtime.dispatcher.dispatch_next(item)
            if name is None:
                runtime.queue.requeue_front(item)
                break
            console.print(f"[bold]{item.id}[/bold] -> {name}")
            dispatched.append(name)
        await _wait_for_watchers(runtime, dispatched)
        return dispatched

    dispatched = asyncio.run(run())
    console.print(
        f"[green]Dispatched {len(dispatched)} item(s)[/green], "
        f"{len(runtime.queue)} still pending"
    )


@workspaces_app.command("clean")
def workspaces_clean(
    agent: Annotated[str, typer.Argument(help="Agent whose workspace to remove")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Remove even if the agent is not idle"),
    ] = False,
) -> None:
    """Remove an agent's git worktree."""
    runtime = _runtime()
    try:
        record = runtime.registry.get_agent(agent)
    except UnknownAgentError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    if not record.is_idle and not force:
        console.print(
            f"[red]Agent {agent} is {record.status.value}; use --force to remove its workspace[/red]"
        )
        raise typer.Exit(code=1)

    if runtime.provisioner.cleanup(agent):
        console.print(f"[green]Removed workspace of {agent}[/green]")
    else:
        console.print(f"[dim]No workspace for {agent}[/dim]")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration and configure logging."""
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        config.logging = config.logging.model_copy(update={"level": "DEBUG"})
    setup_logging(config.logging)
    initialize_config(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
