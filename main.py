#!/usr/bin/env python3
"""
Scheduled entry point for PageHarvest.

Runs one job, described by environment variables, within a wall-clock budget
so that a cron or container scheduler can call it repeatedly; every run resumes
from the previous checkpoint.

    HARVEST_CATEGORY      category to harvest (required)
    HARVEST_QUERY         query within the category
    HARVEST_MAX_RUNTIME   budget in seconds
    HARVEST_CONFIG        optional YAML configuration file

``python main.py health`` prints a health report instead.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import structlog

from pageharvest.budget import Budget
from pageharvest.container import DependencyContainer
from pageharvest.errors import ConfigurationError
from pageharvest.observability import configure_logging, start_metrics_server
from pageharvest.protocols import HarvestJob, JobResult, JobStatus

logger = structlog.get_logger(__name__)

# Task cancelled by SIGTERM/SIGINT; cancellation writes a final checkpoint
current_task: Optional[asyncio.Task] = None


def signal_handler(signum: int) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Received signal, checkpointing and shutting down", signal=signum)
    if current_task is not None and not current_task.done():
        current_task.cancel()


async def health_check() -> dict:
    """Perform health check for container orchestration."""
    container = DependencyContainer(config_path=_config_path())
    try:
        async with container.lifecycle():
            storage = await container.get_storage()
            await storage.exists("health")
            return {"status": "healthy", **container.get_health_status()}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def _config_path() -> Optional[Path]:
    config_path = os.getenv("HARVEST_CONFIG")
    return Path(config_path) if config_path else None


def _job_from_env() -> tuple[HarvestJob, Optional[float]]:
    category = os.getenv("HARVEST_CATEGORY", "")
    if not category:
        raise ConfigurationError("HARVEST_CATEGORY is not set")
    max_runtime = os.getenv("HARVEST_MAX_RUNTIME")
    return HarvestJob(category=category, query=os.getenv("HARVEST_QUERY", "")), (
        float(max_runtime) if max_runtime else None
    )


async def run_scheduled_job() -> JobResult:
    """Run (or resume) the configured job once."""
    global current_task

    job, max_runtime = _job_from_env()
    container = DependencyContainer(config_path=_config_path())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler, sig)

    async with container.lifecycle():
        assert container.config is not None
        configure_logging(container.config.monitoring)
        if container.config.monitoring.prometheus_port:
            start_metrics_server(container.config.monitoring.prometheus_port)

        manager = await container.create_manager(job)
        try:
            current_task = asyncio.create_task(manager.run(job, Budget(max_runtime)))
            try:
                return await current_task
            except asyncio.CancelledError:
                state = manager.state
                return JobResult(
                    status=JobStatus.PAUSED,
                    category=job.category,
                    query=job.query,
                    total_pages=state.total_pages if state else 0,
                    current_page=state.current_page if state else 1,
                    stop_reason="interrupted",
                )
        finally:
            await manager.fetcher.close()


async def main() -> None:
    """Main entry point."""
    if len(sys.argv) > 1 and sys.argv[1] == "health":
        health = await health_check()
        print(json.dumps(health, indent=2))
        sys.exit(0 if health["status"] == "healthy" else 1)

    try:
        result = await run_scheduled_job()
    except (ConfigurationError, ValueError) as e:
        logger.error("Invalid job configuration", error=str(e))
        sys.exit(2)
    except Exception as e:
        logger.error("Unhandled exception in main", error=str(e))
        sys.exit(1)

    print(json.dumps(result.summary(), indent=2, default=str))
    # Paused runs are expected; the next scheduled run resumes them
    sys.exit(1 if result.status is JobStatus.FAILED else 0)


if __name__ == "__main__":
    asyncio.run(main())
