"""
Job submission and status tracking.

Every job runs as its own asyncio task with its own ``PaginationManager`` (and
therefore its own HTTP session). Jobs share nothing but the storage backend.
Only one job per ``(category, query)`` may run at a time, since both would
write the same checkpoint.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

import structlog

from pageharvest.budget import Budget
from pageharvest.errors import HarvestError
from pageharvest.observability import bind_job_context, increment
from pageharvest.pagination import PaginationManager
from pageharvest.protocols import HarvestJob, JobStatus

logger = structlog.get_logger(__name__)

ManagerFactory = Callable[[HarvestJob], Awaitable[PaginationManager]]
DEFAULT_MAX_HISTORY = 100


class JobConflictError(HarvestError):
    """A job for the same category and query is already running."""


@dataclass
class JobRecord:
    job_id: str
    job: HarvestJob
    max_runtime: Optional[float] = None
    status: JobStatus = JobStatus.PENDING
    submitted_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    summary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    manager: Optional[PaginationManager] = None
    task: Optional[asyncio.Task] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.job.category, self.job.query

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.RUNNING)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly status, live while the job is running."""
        data: Dict[str, Any] = {
            "job_id": self.job_id,
            "status": self.status.value,
            "category": self.job.category,
            "query": self.job.query,
            "max_pages": self.job.max_pages,
            "start_page": self.job.start_page,
            "max_runtime": self.max_runtime,
            "submitted_at": self.submitted_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }
        if self.summary is not None:
            data.update(self.summary)
            data["status"] = self.status.value
            data["error"] = self.error
        elif self.manager is not None and self.manager.state is not None:
            state = self.manager.state
            data.update(
                total_pages=state.total_pages,
                current_page=state.current_page,
                completed_pages=len(state.completed_pages),
                failed_pages=sorted(state.failed_pages),
                stats=state.stats.to_dict(),
            )
        return data


class JobRegistry:
    """Runs harvest jobs concurrently and keeps their status for polling.

    Finished jobs keep only their summary, and at most ``max_history`` of them
    are retained; the oldest are forgotten first.
    """

    def __init__(self, manager_factory: ManagerFactory, max_history: int = DEFAULT_MAX_HISTORY):
        if max_history < 1:
            raise ValueError("max_history must be >= 1")
        self._factory = manager_factory
        self.max_history = max_history
        self._jobs: Dict[str, JobRecord] = {}
        self.logger = structlog.get_logger(self.__class__.__name__)

    def _active_for(self, job: HarvestJob) -> Optional[JobRecord]:
        for record in self._jobs.values():
            if record.is_active and record.key == (job.category, job.query):
                return record
        return None

    async def submit(self, job: HarvestJob, max_runtime: Optional[float] = None) -> str:
        """Start ``job`` in the background and return its id."""
        active = self._active_for(job)
        if active is not None:
            raise JobConflictError(f"Job {active.job_id} is already running for {job.category!r}/{job.query!r}")

        self._prune_history()
        record = JobRecord(job_id=uuid4().hex, job=job, max_runtime=max_runtime)
        self._jobs[record.job_id] = record
        record.task = asyncio.create_task(self._run(record), name=f"harvest-{record.job_id}")
        self.logger.info("Job submitted", job_id=record.job_id, category=job.category, query=job.query)
        return record.job_id

    async def _run(self, record: JobRecord) -> None:
        bind_job_context(job_id=record.job_id)
        record.status = JobStatus.RUNNING
        record.started_at = time.time()
        increment("jobs_active")
        manager: Optional[PaginationManager] = None
        try:
            manager = await self._factory(record.job)
            record.manager = manager
            budget = Budget(record.max_runtime) if record.max_runtime is not None else None
            result = await manager.run(record.job, budget)
            record.summary = result.summary()
            record.status = result.status
            record.error = result.error
        except asyncio.CancelledError:
            record.status = JobStatus.PAUSED
            record.error = "cancelled"
            raise
        except Exception as e:
            self.logger.exception("Job crashed", job_id=record.job_id, error=str(e))
            record.status = JobStatus.FAILED
            record.error = str(e)
        finally:
            record.finished_at = time.time()
            increment("jobs_active", -1)
            if manager is not None:
                await _close_quietly(manager.fetcher)
            # Results live in storage; drop the in-memory state
            record.manager = None
            self.logger.info("Job ended", job_id=record.job_id, status=record.status.value)

    def _prune_history(self) -> None:
        finished = [r for r in self.list() if not r.is_active]
        for record in finished[: max(0, len(finished) - self.max_history)]:
            del self._jobs[record.job_id]

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def list(self) -> List[JobRecord]:
        return sorted(self._jobs.values(), key=lambda r: r.submitted_at)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> JobRecord:
        record = self._jobs[job_id]
        if record.task is not None and not record.task.done():
            await asyncio.wait({record.task}, timeout=timeout)
        return record

    async def shutdown(self) -> None:
        """Cancel running jobs; each still writes its final checkpoint."""
        tasks = [r.task for r in self._jobs.values() if r.task is not None and not r.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("Job registry shut down", cancelled=len(tasks))


async def _close_quietly(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is None or not callable(close):
        return
    try:
        result = close()
        if asyncio.iscoroutine(result):
            await result
    except Exception as e:
        logger.warning("Error closing resource", resource=type(resource).__name__, error=str(e))
