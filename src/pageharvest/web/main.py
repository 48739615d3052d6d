"""
FastAPI application exposing the job registry and Prometheus metrics.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional
from uuid import uuid4

import structlog
from fastapi import FastAPI, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from pageharvest import __version__
from pageharvest.container import DependencyContainer
from pageharvest.jobs import JobConflictError, JobRegistry
from pageharvest.protocols import HarvestJob

logger = structlog.get_logger(__name__)


class JobRequest(BaseModel):
    category: str = Field(min_length=1)
    query: str = ""
    max_pages: Optional[int] = Field(default=None, ge=1)
    start_page: Optional[int] = Field(default=None, ge=1)
    max_runtime_seconds: Optional[float] = Field(default=None, gt=0)


class JobAccepted(BaseModel):
    job_id: str
    status: str


def create_app(container: Optional[DependencyContainer] = None) -> FastAPI:
    """Build the API around ``container``; its lifecycle follows the app's."""
    container = container or DependencyContainer()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        async with container.lifecycle():
            app.state.start_time = time.time()
            logger.info("PageHarvest API started", version=__version__)
            yield
        logger.info("PageHarvest API stopped")

    app = FastAPI(title="PageHarvest", version=__version__, lifespan=lifespan)
    app.state.container = container

    async def registry() -> JobRegistry:
        return await container.get_job_registry()

    @app.post("/jobs", status_code=status.HTTP_202_ACCEPTED, response_model=JobAccepted)
    async def submit_job(request: JobRequest) -> JobAccepted:
        """Start a harvest job in the background."""
        try:
            job = HarvestJob(
                category=request.category,
                query=request.query,
                max_pages=request.max_pages,
                start_page=request.start_page,
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

        jobs = await registry()
        try:
            job_id = await jobs.submit(job, max_runtime=request.max_runtime_seconds)
        except JobConflictError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
        return JobAccepted(job_id=job_id, status="accepted")

    @app.get("/jobs")
    async def list_jobs() -> List[Dict[str, Any]]:
        jobs = await registry()
        return [record.snapshot() for record in jobs.list()]

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str) -> Dict[str, Any]:
        jobs = await registry()
        record = jobs.get(job_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job {job_id}")
        return record.snapshot()

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint for container orchestration."""
        jobs = await registry()
        return {
            "status": "healthy" if container.is_running else "starting",
            "timestamp": time.time(),
            "version": __version__,
            "uptime": time.time() - getattr(app.state, "start_time", time.time()),
            "active_jobs": sum(1 for record in jobs.list() if record.is_active),
            "components": container.get_health_status(),
        }

    @app.get("/metrics")
    async def get_prometheus_metrics() -> Response:
        """Endpoint for Prometheus to scrape."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next: Callable) -> Any:
        start_time = time.time()
        request_id = uuid4()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-ID"] = str(request_id)
        logger.debug(
            "API request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            response_time_ms=round(process_time * 1000, 2),
        )
        return response

    return app
