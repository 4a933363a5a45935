from __future__ import annotations

import asyncio
import json
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from roadmapper.config import (
    LOG_LEVELS,
    PROVIDER_NAMES,
    ConfigError,
    RoadmapperConfig,
    load_config,
    save_config,
)
from roadmapper.errors import RoadmapNotFoundError
from roadmapper.models import Roadmap, RoadmapJob
from roadmapper.orchestrator import Orchestrator
from roadmapper.prompts import PhaseSettings
from roadmapper.providers import PROVIDER_PRESETS, CompletionProvider, OpenAICompatibleProvider
from roadmapper.retrier import RetryPolicy
from roadmapper.store import JsonRoadmapStore, StoreError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    config_path: Path
    config: RoadmapperConfig
    store: JsonRoadmapStore
    orchestrator: Orchestrator


def _resolve_config_path(config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = Path.cwd() / config_path
    return config_path.resolve()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_checked_config(config_path: Path) -> RoadmapperConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _build_provider(config: RoadmapperConfig) -> CompletionProvider:
    return OpenAICompatibleProvider.from_preset(
        config.provider.name,
        base_url=config.provider.base_url,
        api_key_env=config.provider.api_key_env,
        timeout_seconds=config.provider.timeout_seconds,
    )


def _describe_event(event: dict[str, Any]) -> str | None:
    name = event.get("event")
    if name == "job_started":
        verb = "Resuming" if event.get("is_resume") else "Starting"
        return f"{verb} job {event['job_id']}"
    if name == "model_attempt":
        return f"Generating {event['call']} with {event['model']}..."
    if name == "model_switched":
        return f"Switching to model {event['to_model']}..."
    if name == "structure_generated":
        return f"High-level plan ready: {event['phases']} phases ({event['roadmap_id']})"
    if name == "phase_generated":
        return f"Phase {event['phase_index'] + 1}/{event['phases']} generated and saved"
    if name == "job_interrupted":
        return f"Stopped job {event['job_id']} ({event['reason']})"
    if name == "job_failed":
        return f"Job {event['job_id']} failed: {event['error']}"
    if name == "job_completed":
        return f"Roadmap {event['roadmap_id']} completed"
    return None


def _echo_event(event: dict[str, Any]) -> None:
    message = _describe_event(event)
    if message:
        click.echo(message)


def _load_runtime(config_path: Path, *, log_level: str | None = None) -> Runtime:
    config = _load_checked_config(config_path)
    _configure_logging(log_level or config.logging.level)
    try:
        store = JsonRoadmapStore(config.saves_path(config_path))
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    orchestrator = Orchestrator(
        provider=_build_provider(config),
        store=store,
        models=config.provider.models,
        retry_policy=RetryPolicy(backoff_seconds=max(0.0, float(config.retry.backoff_seconds))),
        phase_settings=PhaseSettings(
            min_phases=config.generation.min_phases,
            max_phases=config.generation.max_phases,
            adaptive_difficulty=config.generation.adaptive_difficulty,
        ),
        yield_seconds=max(0.0, float(config.queue.yield_seconds)),
        event_hook=_echo_event,
    )
    return Runtime(
        config_path=config_path,
        config=config,
        store=store,
        orchestrator=orchestrator,
    )


def _request_pause(orchestrator: Orchestrator) -> None:
    click.echo("Pause requested; waiting for the in-flight request to return...", err=True)
    orchestrator.pause_queue()


async def _drain(orchestrator: Orchestrator) -> None:
    loop = asyncio.get_running_loop()
    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, _request_pause, orchestrator)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        logger.debug("SIGINT handler unavailable; Ctrl-C will abort immediately")
    try:
        await orchestrator.drain()
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _summarize(roadmap: Roadmap) -> str:
    detailed = sum(1 for phase in roadmap.phases if phase.is_detailed)
    return (
        f"{roadmap.id}  {roadmap.generation_state:<11} "
        f"{detailed}/{len(roadmap.phases)} phases  {roadmap.overall_progress():>3}%  "
        f"{roadmap.title}"
    )


def _run_and_report(runtime: Runtime) -> None:
    orchestrator = runtime.orchestrator
    asyncio.run(_drain(orchestrator))

    roadmap = orchestrator.current_roadmap
    if orchestrator.state.is_paused:
        click.echo("Queue paused.")
        if roadmap is not None and roadmap.id:
            click.echo(f"Resume with: roadmapper resume {roadmap.id}")
    elif roadmap is not None:
        click.echo(_summarize(roadmap))
    if orchestrator.last_error:
        raise click.ClickException(orchestrator.last_error)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Roadmapper CLI."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@cli.command("init")
@click.option("--provider", type=click.Choice(PROVIDER_NAMES), default=None)
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
def init_command(provider: str | None, config_value: str) -> None:
    config_path = _resolve_config_path(config_value)
    config = _load_checked_config(config_path)
    if provider:
        preset = PROVIDER_PRESETS[provider]
        config.provider.name = provider  # type: ignore[assignment]
        config.provider.models = list(preset["models"])
        config.provider.api_key_env = preset["api_key_env"]
    save_config(config_path, config)
    saves_dir = config.saves_path(config_path)
    saves_dir.mkdir(parents=True, exist_ok=True)

    click.echo(f"Config: {config_path}")
    click.echo(f"Provider: {config.provider.name}")
    click.echo(f"Models: {', '.join(config.provider.models)}")
    click.echo(f"Saves: {saves_dir}")


@cli.command("generate")
@click.argument("objective")
@click.argument("final_goal")
@click.option("--level", "starting_level", default="", help="Learner's starting level.")
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def generate_command(
    ctx: click.Context,
    objective: str,
    final_goal: str,
    starting_level: str,
    config_value: str,
) -> None:
    if not objective.strip() or not final_goal.strip():
        raise click.ClickException("Both an objective and a final goal are required.")
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    job = RoadmapJob(objective=objective, final_goal=final_goal, starting_level=starting_level)
    runtime.orchestrator.enqueue(job)
    _run_and_report(runtime)


@cli.command("resume")
@click.argument("roadmap_id")
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def resume_command(ctx: click.Context, roadmap_id: str, config_value: str) -> None:
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    try:
        queued = runtime.orchestrator.retry(roadmap_id)
    except RoadmapNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    if not queued:
        click.echo(f"Roadmap {roadmap_id} is already complete.")
        return
    _run_and_report(runtime)


@cli.command("resume-all")
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def resume_all_command(ctx: click.Context, config_value: str) -> None:
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    queued = runtime.orchestrator.resume_incomplete()
    if not queued:
        click.echo("No incomplete roadmaps.")
        return
    click.echo(f"Queued {queued} incomplete roadmap(s).")
    _run_and_report(runtime)


@cli.command("list")
@click.option("--incomplete", is_flag=True, default=False)
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def list_command(ctx: click.Context, incomplete: bool, config_value: str) -> None:
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    roadmaps = runtime.store.list_incomplete() if incomplete else runtime.store.list_all()
    if not roadmaps:
        click.echo("No roadmaps found.")
        return
    for roadmap in roadmaps:
        click.echo(_summarize(roadmap))


@cli.command("show")
@click.argument("roadmap_id")
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def show_command(ctx: click.Context, roadmap_id: str, config_value: str) -> None:
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    roadmap = runtime.store.get(roadmap_id)
    if roadmap is None:
        raise click.ClickException(f"Roadmap not found: {roadmap_id}")
    click.echo(json.dumps(roadmap.to_dict(), ensure_ascii=False, indent=2))


@cli.command("delete")
@click.argument("roadmap_id")
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def delete_command(ctx: click.Context, roadmap_id: str, config_value: str) -> None:
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    try:
        deleted = runtime.orchestrator.delete_roadmap(roadmap_id)
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    if not deleted:
        raise click.ClickException(f"Roadmap not found: {roadmap_id}")
    click.echo(f"Deleted {roadmap_id}")


@cli.command("toggle")
@click.argument("roadmap_id")
@click.argument("phase_number", type=int)
@click.argument("mini_goal_id")
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
@click.pass_context
def toggle_command(
    ctx: click.Context,
    roadmap_id: str,
    phase_number: int,
    mini_goal_id: str,
    config_value: str,
) -> None:
    runtime = _load_runtime(
        _resolve_config_path(config_value), log_level=ctx.obj.get("log_level")
    )
    roadmap = runtime.store.get(roadmap_id)
    if roadmap is None:
        raise click.ClickException(f"Roadmap not found: {roadmap_id}")
    phase_index = next(
        (
            index
            for index, phase in enumerate(roadmap.phases)
            if phase.phase_number == phase_number
        ),
        None,
    )
    if phase_index is None:
        raise click.ClickException(f"Roadmap {roadmap_id} has no phase {phase_number}")
    try:
        goal = roadmap.toggle_mini_goal(phase_index, mini_goal_id)
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    try:
        runtime.store.save(roadmap)
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    state = "done" if goal.completed else "open"
    click.echo(
        f"{goal.id} marked {state}; phase {phase_number} at "
        f"{roadmap.phases[phase_index].progress_percentage}%"
    )


@cli.command("models")
@click.argument("models", nargs=-1)
@click.option("--config", "config_value", default="roadmapper.toml", show_default=True)
def models_command(models: tuple[str, ...], config_value: str) -> None:
    config_path = _resolve_config_path(config_value)
    config = _load_checked_config(config_path)
    if models:
        config.provider.models = list(models)
        save_config(config_path, config)
        click.echo(f"Fallback models set to: {', '.join(models)}")
        return
    for position, model in enumerate(config.provider.models, start=1):
        click.echo(f"{position}. {model}")
