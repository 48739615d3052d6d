"""
Dependency injection container for PageHarvest.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

import structlog
from pydantic import ValidationError

from pageharvest.config import Config
from pageharvest.crawler.http_client import SearchApiFetcher
from pageharvest.errors import ConfigurationError
from pageharvest.jobs import JobRegistry
from pageharvest.pagination import HarvestSettings, PaginationManager
from pageharvest.protocols import HarvestJob, PageCompletedHandler, StorageBackend
from pageharvest.storage.archive import PageArchiveHandler
from pageharvest.storage.backends import create_storage

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """Lazy-loaded instance with lifecycle management."""

    def __init__(self, factory: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None

    async def get(self) -> T:
        if self._instance is None:
            instance = self._factory(*self._args, **self._kwargs)
            initialize = getattr(instance, "initialize", None)
            if callable(initialize):
                await initialize()
            self._instance = instance
        return self._instance

    async def cleanup(self) -> None:
        instance, self._instance = self._instance, None
        if instance is None:
            return
        for name in ("shutdown", "close"):
            method = getattr(instance, name, None)
            if callable(method):
                await method()
                return


class DependencyContainer:
    """
    Builds the shared pieces (config, storage, job registry) once and a fresh
    fetcher and pagination manager for every job.
    """

    def __init__(self, config_path: Optional[Path] = None, config: Optional[Config] = None) -> None:
        self.config_path = config_path
        self.config: Optional[Config] = config
        self.logger = structlog.get_logger(self.__class__.__name__)

        self._instances: Dict[str, LazyInstance[Any]] = {}
        self._instances_lock = asyncio.Lock()
        self._shutdown_handlers: List[Callable[[], Any]] = []

        self.container_id = str(uuid4())
        self.is_running = False

    async def initialize(self) -> None:
        if self.config is None:
            self.load_config()
        self._create_instances()
        self.is_running = True
        self.logger.info(
            "Dependency container initialized",
            container_id=self.container_id,
            config_path=str(self.config_path) if self.config_path else "default",
        )

    def load_config(self) -> Config:
        try:
            if self.config_path is not None:
                self.config = Config.from_yaml(self.config_path)
            else:
                self.config = Config()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        return self.config

    def _create_instances(self) -> None:
        assert self.config is not None
        self._instances = {
            "storage": LazyInstance(create_storage, self.config.storage.backend, self.config.storage.root_dir),
            "jobs": LazyInstance(JobRegistry, self.create_manager),
        }

    async def get_storage(self) -> StorageBackend:
        async with self._instances_lock:
            return await self._instances["storage"].get()

    async def get_job_registry(self) -> JobRegistry:
        async with self._instances_lock:
            return await self._instances["jobs"].get()

    def page_handlers(self, storage: StorageBackend) -> List[PageCompletedHandler]:
        assert self.config is not None
        handlers: List[PageCompletedHandler] = []
        if self.config.storage.archive_pages:
            handlers.append(PageArchiveHandler(storage))
        return handlers

    async def create_manager(self, job: HarvestJob) -> PaginationManager:
        """Fresh fetcher and manager for one job. The caller closes ``manager.fetcher``."""
        assert self.config is not None
        storage = await self.get_storage()
        fetcher = SearchApiFetcher(self.config.fetcher, query=job.query)
        await fetcher.initialize()
        return PaginationManager(
            fetcher,
            fetcher,
            storage,
            HarvestSettings.from_config(self.config),
            handlers=self.page_handlers(storage),
        )

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator[DependencyContainer]:
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if not self.is_running:
            return
        self.logger.info("Shutting down dependency container", container_id=self.container_id)

        for handler in self._shutdown_handlers:
            try:
                result = handler()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error("Error in shutdown handler", error=str(e))

        # Jobs first, so their final checkpoints reach storage
        for name in ("jobs", "storage"):
            instance = self._instances.get(name)
            if instance is None:
                continue
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error("Error cleaning up instance", instance=name, error=str(e))

        self.is_running = False
        self.logger.info("Dependency container shutdown complete")

    def add_shutdown_handler(self, handler: Callable[[], Any]) -> None:
        self._shutdown_handlers.append(handler)

    def get_health_status(self) -> Dict[str, Any]:
        return {
            "container_id": self.container_id,
            "is_running": self.is_running,
            "config_loaded": self.config is not None,
            "storage_backend": self.config.storage.backend if self.config else None,
            "config_path": str(self.config_path) if self.config_path else None,
        }
