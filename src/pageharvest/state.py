"""
Resumable job state and cumulative statistics.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from pageharvest.crawler.rate_limiter import RateControllerState
from pageharvest.protocols import NavigationState


class RunRecord(BaseModel):
    """One invocation of ``PaginationManager.run`` for a job."""

    started_at: float
    ended_at: Optional[float] = None
    status: str = "running"
    pages_attempted: int = 0
    new_records: int = 0


class JobStats(BaseModel):
    """Counters and timings accumulated across every run of a job."""

    total_requests: int = Field(default=0, ge=0)
    successful_requests: int = Field(default=0, ge=0)
    failed_requests: int = Field(default=0, ge=0)
    retries: int = Field(default=0, ge=0)
    rate_limit_events: int = Field(default=0, ge=0)
    cooldowns: int = Field(default=0, ge=0)
    total_delay: float = Field(default=0.0, ge=0, description="Seconds spent waiting between requests")
    total_response_time: float = Field(default=0.0, ge=0)
    total_items: int = Field(default=0, ge=0, description="Unique records harvested so far")
    duplicates: int = Field(default=0, ge=0)
    stalled_pages: int = Field(default=0, ge=0)
    navigation_lost: int = Field(default=0, ge=0)
    items_per_page: Optional[int] = None
    batches_saved: int = Field(default=0, ge=0)
    checkpoints_saved: int = Field(default=0, ge=0)
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    runs: List[RunRecord] = Field(default_factory=list)

    @property
    def avg_response_time(self) -> float:
        return self.total_response_time / self.total_requests if self.total_requests else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_requests / self.total_requests if self.total_requests else 0.0

    @property
    def items_per_minute(self) -> float:
        if self.start_time is None:
            return 0.0
        elapsed = (self.end_time or time.time()) - self.start_time
        return self.total_items / (elapsed / 60) if elapsed > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data.update(
            avg_response_time=round(self.avg_response_time, 4),
            success_rate=round(self.success_rate, 4),
            items_per_minute=round(self.items_per_minute, 2),
        )
        return data


@dataclass
class JobState:
    """Mutable progress of one ``(category, query)`` job. Owned by the orchestrator."""

    category: str
    query: str
    navigation: NavigationState
    rate: RateControllerState
    current_page: int = 1
    total_pages: int = 0
    completed_pages: Set[int] = field(default_factory=set)
    failed_pages: Set[int] = field(default_factory=set)
    stats: JobStats = field(default_factory=JobStats)
    last_updated: float = field(default_factory=time.time)

    def mark_completed(self, page_number: int) -> None:
        self.completed_pages.add(page_number)
        self.failed_pages.discard(page_number)

    def mark_failed(self, page_number: int) -> None:
        if page_number not in self.completed_pages:
            self.failed_pages.add(page_number)

    @property
    def remaining_pages(self) -> List[int]:
        start = max(2, self.current_page)
        return [p for p in range(start, self.total_pages + 1) if p not in self.completed_pages]

    @property
    def is_finished(self) -> bool:
        return self.total_pages > 0 and not self.remaining_pages
