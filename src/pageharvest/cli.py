"""Command-line interface for PageHarvest."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Set

import click
import structlog
import uvicorn

from pageharvest import __version__
from pageharvest.budget import Budget
from pageharvest.config import Config, MonitoringConfig
from pageharvest.container import DependencyContainer
from pageharvest.errors import ConfigurationError
from pageharvest.observability import configure_logging
from pageharvest.protocols import HarvestJob, JobResult, JobStatus
from pageharvest.storage.checkpoint import CheckpointStore

logger = structlog.get_logger(__name__)


class ShutdownManager:
    """Cancels registered tasks on SIGINT/SIGTERM so they can checkpoint and exit."""

    def __init__(self) -> None:
        self.is_shutting_down = False
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._signals = (signal.SIGINT, signal.SIGTERM)

    def add_task(self, task: asyncio.Task[Any]) -> None:
        if not self.is_shutting_down:
            self._tasks.add(task)

    def _handle(self, signum: int) -> None:
        if self.is_shutting_down:
            return
        self.is_shutting_down = True
        click.echo(f"Received signal {signum}, saving progress and shutting down...", err=True)
        for task in self._tasks:
            task.cancel()

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._signals:
            try:
                loop.add_signal_handler(sig, self._handle, sig)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                pass


def _load_config(config_path: Optional[Path]) -> Config:
    try:
        return Config.from_yaml(config_path) if config_path else Config()
    except Exception as e:
        raise click.ClickException(f"Could not load configuration: {e}") from e


def _echo_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides configuration)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """PageHarvest - resumable, rate-adaptive search result harvester."""
    ctx.ensure_object(dict)
    config_path = Path(config) if config else None
    cfg = _load_config(config_path)
    if log_level:
        cfg.monitoring = MonitoringConfig(**{**cfg.monitoring.model_dump(), "log_level": log_level})
    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = cfg
    configure_logging(cfg.monitoring)


@cli.command()
@click.option("--category", required=True, help="Category to harvest")
@click.option("--query", default="", help="Search query within the category")
@click.option("--max-pages", type=int, default=None, help="Cap on pages for a new job")
@click.option("--start-page", type=int, default=None, help="First page for a new job")
@click.option("--max-runtime", type=float, default=None, help="Wall-clock budget in minutes")
@click.pass_context
def run(
    ctx: click.Context,
    category: str,
    query: str,
    max_pages: Optional[int],
    start_page: Optional[int],
    max_runtime: Optional[float],
) -> None:
    """Run (or resume) a harvest job in the foreground."""
    try:
        job = HarvestJob(category=category, query=query, max_pages=max_pages, start_page=start_page)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    budget_seconds = max_runtime * 60 if max_runtime is not None else None
    result = asyncio.run(run_job(ctx.obj["config"], job, budget_seconds))
    _echo_json(result.summary())
    if result.status is JobStatus.FAILED:
        sys.exit(1)


async def run_job(config: Config, job: HarvestJob, budget_seconds: Optional[float]) -> JobResult:
    """Run one job to completion, pause or failure, honouring SIGINT/SIGTERM."""
    container = DependencyContainer(config=config)
    shutdown = ShutdownManager()
    shutdown.install(asyncio.get_running_loop())

    async with container.lifecycle():
        manager = await container.create_manager(job)
        try:
            task = asyncio.create_task(manager.run(job, Budget(budget_seconds)))
            shutdown.add_task(task)
            try:
                return await task
            except asyncio.CancelledError:
                state = manager.state
                logger.info("Run interrupted, progress checkpointed")
                return JobResult(
                    status=JobStatus.PAUSED,
                    category=job.category,
                    query=job.query,
                    total_pages=state.total_pages if state else 0,
                    current_page=state.current_page if state else 1,
                    completed_pages=sorted(state.completed_pages) if state else [],
                    failed_pages=sorted(state.failed_pages) if state else [],
                    checkpoint_key=CheckpointStore.key(job.category, job.query),
                    stop_reason="interrupted",
                )
        finally:
            await manager.fetcher.close()


@cli.command()
@click.option("--category", required=True)
@click.option("--query", default="")
@click.pass_context
def status(ctx: click.Context, category: str, query: str) -> None:
    """Show the stored checkpoint of a job."""

    async def read_status() -> Optional[Dict[str, Any]]:
        container = DependencyContainer(config=ctx.obj["config"])
        async with container.lifecycle():
            store = CheckpointStore(await container.get_storage())
            state = await store.load(category, query)
            if state is None:
                return None
            return {
                "category": state.category,
                "query": state.query,
                "checkpoint_key": store.key(category, query),
                "current_page": state.current_page,
                "total_pages": state.total_pages,
                "completed_pages": len(state.completed_pages),
                "failed_pages": sorted(state.failed_pages),
                "finished": state.current_page > state.total_pages,
                "stats": state.stats.to_dict(),
            }

    data = asyncio.run(read_status())
    if data is None:
        raise click.ClickException(f"No checkpoint found for {category!r}/{query!r}")
    _echo_json(data)


@cli.command("validate-config")
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate the configuration and print the effective settings."""
    config: Config = ctx.obj["config"]
    _echo_json(config.model_dump(mode="json"))


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Serve the job API and Prometheus metrics."""
    from pageharvest.web.main import create_app

    config: Config = ctx.obj["config"]
    try:
        app = create_app(DependencyContainer(config_path=ctx.obj["config_path"], config=config))
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    uvicorn.run(app, host=host or config.web.host, port=port or config.web.port, log_config=None)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
