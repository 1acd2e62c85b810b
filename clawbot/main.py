"""Application entrypoint and command-line interface.

Usage:
    clawbot gateway              Run channels, agent, cron and heartbeat
    clawbot agent -m "hello"     Run one direct turn and print the reply
    clawbot status               Show configuration and scheduler state
    clawbot cron list            Manage scheduled jobs
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from clawbot.agent_runtime import AgentRuntime
from clawbot.bus import MessageBus
from clawbot.channels.base import BaseChannel
from clawbot.channels.manager import ChannelManager
from clawbot.channels.signal import SignalChannel
from clawbot.config import Settings, allowed_senders, load_settings
from clawbot.cron.service import CronService
from clawbot.cron.types import CronJob, CronSchedule
from clawbot.db import Database
from clawbot.heartbeat import HeartbeatService
from clawbot.llm.base import LLMProvider
from clawbot.llm.openrouter import OpenRouterProvider
from clawbot.models import OutboundMessage
from clawbot.session import SessionManager
from clawbot.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

app = typer.Typer(name="clawbot", help="Personal AI assistant gateway", no_args_is_help=True)
cron_app = typer.Typer(help="Manage scheduled jobs")
app.add_typer(cron_app, name="cron")


@dataclass(slots=True)
class Components:
    """Long-lived objects shared by the gateway and the one-shot commands."""

    settings: Settings
    bus: MessageBus
    db: Database
    provider: LLMProvider
    cron: CronService
    runtime: AgentRuntime


def build_components(settings: Settings, provider: LLMProvider | None = None) -> Components:
    """Initialize storage, scheduler and runtime from settings."""

    workspace = settings.resolved_workspace
    workspace.mkdir(parents=True, exist_ok=True)

    db = Database(settings.resolved_database_path)
    db.initialize()

    bus = MessageBus()
    provider = provider or OpenRouterProvider(settings)
    cron = CronService(settings.cron_store_path)

    runtime = AgentRuntime(
        bus=bus,
        llm=provider,
        workspace=workspace,
        sessions=SessionManager(db),
        model=settings.openrouter_model,
        max_iterations=settings.max_tool_iterations,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        memory_window=settings.memory_window,
        request_timeout_seconds=settings.request_timeout_seconds,
        brave_api_key=settings.brave_api_key,
        web_search_max_results=settings.web_search_max_results,
        exec_timeout_seconds=settings.exec_timeout_seconds,
        exec_path_append=settings.exec_path_append,
        restrict_to_workspace=settings.restrict_to_workspace,
        cron_service=cron,
        tool_registry=ToolRegistry(db),
    )

    async def on_cron_job(job: CronJob) -> None:
        response = await runtime.process_direct(
            job.payload.message,
            session_key=f"cron:{job.id}",
            channel=job.payload.channel or "cli",
            chat_id=job.payload.to or "direct",
        )
        if job.payload.deliver and job.payload.to:
            await bus.publish_outbound(
                OutboundMessage(channel=job.payload.channel or "cli", chat_id=job.payload.to, content=response)
            )

    cron.on_job = on_cron_job
    return Components(settings=settings, bus=bus, db=db, provider=provider, cron=cron, runtime=runtime)


def build_channels(settings: Settings, bus: MessageBus) -> list[BaseChannel]:
    channels: list[BaseChannel] = []
    if settings.signal_enabled:
        channels.append(
            SignalChannel(
                bus,
                signal_cli_path=settings.signal_cli_path,
                account=settings.signal_account,
                poll_interval_seconds=settings.signal_poll_interval_seconds,
                allow_from=allowed_senders(settings),
            )
        )
    return channels


def _pick_heartbeat_target(manager: ChannelManager, components: Components) -> tuple[str, str]:
    """Most recently updated session on an enabled channel, else cli:direct."""

    for row in components.db.list_sessions():
        channel, sep, chat_id = row["key"].partition(":")
        if sep and channel in manager.channels:
            return channel, chat_id
    return "cli", "direct"


async def run_gateway(settings: Settings) -> None:
    """Run every long-lived service until cancelled."""

    components = build_components(settings)
    manager = ChannelManager(
        components.bus,
        build_channels(settings, components.bus),
        send_progress=settings.send_progress,
        send_tool_hints=settings.send_tool_hints,
    )

    async def on_heartbeat_execute(tasks: str) -> str:
        channel, chat_id = _pick_heartbeat_target(manager, components)
        return await components.runtime.process_direct(
            tasks, session_key="heartbeat", channel=channel, chat_id=chat_id
        )

    async def on_heartbeat_notify(response: str) -> None:
        channel, chat_id = _pick_heartbeat_target(manager, components)
        if channel == "cli":
            return
        await components.bus.publish_outbound(OutboundMessage(channel=channel, chat_id=chat_id, content=response))

    heartbeat = HeartbeatService(
        settings.resolved_workspace,
        components.provider,
        components.runtime.model,
        on_execute=on_heartbeat_execute,
        on_notify=on_heartbeat_notify,
        interval_seconds=settings.heartbeat_interval_seconds,
        enabled=settings.heartbeat_enabled,
    )

    await components.cron.start()
    background = [
        asyncio.create_task(components.runtime.run(), name="agent-runtime"),
        asyncio.create_task(heartbeat.run_forever(), name="heartbeat"),
    ]
    LOGGER.info("Gateway started with channels: %s", ", ".join(manager.enabled_channels) or "none")
    try:
        await manager.start_all()
        await asyncio.gather(*background)
    except asyncio.CancelledError:
        raise
    finally:
        heartbeat.stop()
        components.cron.stop()
        components.runtime.stop()
        await manager.stop_all()
        for task in background:
            task.cancel()
        LOGGER.info("Gateway shutdown complete")


def _format_ms(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000).astimezone().strftime("%Y-%m-%d %H:%M:%S")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    """clawbot - personal AI assistant."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@app.command()
def gateway() -> None:
    """Run channels, the agent loop, cron and heartbeat."""
    try:
        asyncio.run(run_gateway(load_settings()))
    except KeyboardInterrupt:
        typer.echo("Shutting down.")


@app.command()
def agent(
    message: str = typer.Option(..., "--message", "-m", help="Message to send to the agent"),
    session: str = typer.Option("cli:direct", "--session", "-s", help="Session key"),
) -> None:
    """Run a single direct turn and print the reply."""
    components = build_components(load_settings())

    async def on_progress(content: str, tool_hint: bool = False) -> None:
        typer.echo(f"  > {content}", err=True)

    reply = asyncio.run(components.runtime.process_direct(message, session_key=session, on_progress=on_progress))
    typer.echo(reply)


@app.command()
def status() -> None:
    """Show configuration, scheduler state and recent tool calls."""
    settings = load_settings()
    cron = CronService(settings.cron_store_path)
    cron_status = cron.status()
    typer.echo(f"Workspace: {settings.resolved_workspace}")
    typer.echo(f"Database:  {settings.resolved_database_path}")
    typer.echo(f"Model:     {settings.openrouter_model}")
    typer.echo(f"API key:   {'set' if settings.openrouter_api_key else 'not set'}")
    typer.echo(f"Signal:    {'enabled' if settings.signal_enabled else 'disabled'}")
    typer.echo(f"Cron jobs: {cron_status['jobs']} (next wake {_format_ms(cron_status['next_wake_at_ms'])})")
    if settings.resolved_database_path.exists():
        executions = Database(settings.resolved_database_path).list_tool_executions(limit=5)
        if executions:
            typer.echo("Recent tool calls:")
            for row in executions:
                outcome = "ok" if row["succeeded"] else "error"
                typer.echo(f"  {row['created_at']}  {row['tool_name']}  {outcome}")


@cron_app.command("list")
def cron_list(all_jobs: bool = typer.Option(False, "--all", "-a", help="Include disabled jobs")) -> None:
    """List scheduled jobs."""
    cron = CronService(load_settings().cron_store_path)
    jobs = cron.list_jobs(include_disabled=all_jobs)
    if not jobs:
        typer.echo("No scheduled jobs.")
        return
    for job in jobs:
        state = "enabled" if job.enabled else "disabled"
        typer.echo(
            f"{job.id}  {job.name}  {job.schedule.describe()}  {state}  next={_format_ms(job.state.next_run_at_ms)}"
        )


@cron_app.command("add")
def cron_add(
    name: str = typer.Option(..., "--name", "-n", help="Job name"),
    message: str = typer.Option(..., "--message", "-m", help="Message for the agent"),
    every: Optional[int] = typer.Option(None, "--every", "-e", help="Run every N seconds"),
    cron_expr: Optional[str] = typer.Option(None, "--cron", "-c", help="Cron expression"),
    tz: Optional[str] = typer.Option(None, "--tz", help="IANA timezone for --cron"),
    at: Optional[str] = typer.Option(None, "--at", help="Run once at an ISO datetime"),
    deliver: bool = typer.Option(False, "--deliver", "-d", help="Deliver the reply to a channel"),
    to: Optional[str] = typer.Option(None, "--to", help="Recipient chat id"),
    channel: Optional[str] = typer.Option(None, "--channel", help="Channel for delivery"),
) -> None:
    """Add a scheduled job."""
    if tz and not cron_expr:
        typer.echo("Error: --tz can only be used with --cron", err=True)
        raise typer.Exit(1)
    if every:
        schedule = CronSchedule.every(every * 1000)
    elif cron_expr:
        schedule = CronSchedule.cron(cron_expr, tz)
    elif at:
        try:
            when = datetime.fromisoformat(at)
        except ValueError:
            typer.echo(f"Error: invalid ISO datetime '{at}'", err=True)
            raise typer.Exit(1)
        schedule = CronSchedule.at(int(when.astimezone().timestamp() * 1000))
    else:
        typer.echo("Error: must specify --every, --cron, or --at", err=True)
        raise typer.Exit(1)

    cron = CronService(load_settings().cron_store_path)
    try:
        job = cron.add_job(name, schedule, message, deliver=deliver, channel=channel, to=to)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Added job '{job.name}' ({job.id})")


@cron_app.command("remove")
def cron_remove(job_id: str = typer.Argument(..., help="Job id")) -> None:
    """Remove a scheduled job."""
    cron = CronService(load_settings().cron_store_path)
    if not cron.remove_job(job_id):
        typer.echo(f"Job {job_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed job {job_id}")


@cron_app.command("enable")
def cron_enable(
    job_id: str = typer.Argument(..., help="Job id"),
    disable: bool = typer.Option(False, "--disable", help="Disable instead of enable"),
) -> None:
    """Enable or disable a job."""
    cron = CronService(load_settings().cron_store_path)
    job = cron.enable_job(job_id, enabled=not disable)
    if job is None:
        typer.echo(f"Job {job_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Job '{job.name}' {'disabled' if disable else 'enabled'}")


@cron_app.command("run")
def cron_run(
    job_id: str = typer.Argument(..., help="Job id"),
    force: bool = typer.Option(False, "--force", "-f", help="Run even if disabled"),
) -> None:
    """Run a job now through the agent."""
    components = build_components(load_settings())
    if not asyncio.run(components.cron.run_job(job_id, force=force)):
        typer.echo(f"Failed to run job {job_id}", err=True)
        raise typer.Exit(1)
    typer.echo("Job executed")


if __name__ == "__main__":
    app()
