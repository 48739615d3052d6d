"""
Checkpoint persistence.

A checkpoint is a full snapshot of ``JobState``. Page sets are written as sorted
lists so files stay diffable and deterministic; they are rehydrated into sets on
load. Last complete write wins.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from pageharvest.crawler.rate_limiter import RateControllerState
from pageharvest.protocols import NavigationState, StorageBackend
from pageharvest.state import JobState, JobStats
from pageharvest.storage.keys import checkpoint_key

CHECKPOINT_VERSION = 1


class Checkpoint(BaseModel):
    """Serialized form of a job's progress."""

    version: int = Field(default=CHECKPOINT_VERSION)
    category: str
    query: str = ""
    current_page: int = Field(ge=1)
    total_pages: int = Field(ge=0)
    completed_pages: List[int] = Field(default_factory=list)
    failed_pages: List[int] = Field(default_factory=list)
    navigation: Dict[str, Any] = Field(default_factory=dict)
    rate: Dict[str, Any] = Field(default_factory=dict)
    stats: JobStats = Field(default_factory=JobStats)
    last_updated: float = Field(default_factory=time.time)

    @classmethod
    def from_job_state(cls, state: JobState) -> Checkpoint:
        return cls(
            category=state.category,
            query=state.query,
            current_page=state.current_page,
            total_pages=state.total_pages,
            completed_pages=sorted(state.completed_pages),
            failed_pages=sorted(state.failed_pages),
            navigation=state.navigation.to_dict(),
            rate=state.rate.to_dict(),
            stats=state.stats,
            last_updated=state.last_updated,
        )

    def to_job_state(self) -> JobState:
        return JobState(
            category=self.category,
            query=self.query,
            navigation=NavigationState.from_dict(self.navigation),
            rate=RateControllerState.from_dict(self.rate),
            current_page=self.current_page,
            total_pages=self.total_pages,
            completed_pages=set(self.completed_pages),
            failed_pages=set(self.failed_pages),
            stats=self.stats.model_copy(deep=True),
            last_updated=self.last_updated,
        )


class CheckpointStore:
    """Reads and writes checkpoints through a storage backend."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self.logger = structlog.get_logger(self.__class__.__name__)

    @staticmethod
    def key(category: str, query: str = "") -> str:
        return checkpoint_key(category, query)

    async def save(self, state: JobState) -> str:
        """Persist ``state``. Storage failures propagate as ``StorageError``."""
        state.last_updated = time.time()
        key = self.key(state.category, state.query)
        checkpoint = Checkpoint.from_job_state(state)
        await self.storage.write_json(key, checkpoint.model_dump(mode="json"))
        self.logger.debug(
            "Checkpoint saved",
            key=key,
            current_page=state.current_page,
            completed=len(state.completed_pages),
            failed=len(state.failed_pages),
        )
        return key

    async def load(self, category: str, query: str = "") -> Optional[JobState]:
        key = self.key(category, query)
        if not await self.storage.exists(key):
            return None

        data = await self.storage.read_json(key)
        if data is None:
            return None
        try:
            checkpoint = Checkpoint.model_validate(data)
            state = checkpoint.to_job_state()
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            self.logger.warning("Ignoring invalid checkpoint", key=key, error=str(e))
            return None

        if checkpoint.version != CHECKPOINT_VERSION:
            self.logger.warning("Ignoring checkpoint with unknown version", key=key, version=checkpoint.version)
            return None

        self.logger.info(
            "Checkpoint loaded",
            key=key,
            current_page=checkpoint.current_page,
            completed=len(checkpoint.completed_pages),
        )
        return state
