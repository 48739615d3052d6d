"""
Batch assembly.

Pages are grouped into fixed windows of ``batch_size`` pages: window ``n`` covers
pages ``(n - 1) * batch_size + 1`` through ``n * batch_size`` (capped at the job's
total). A window always maps to the same storage key, so writing a batch again,
for example after resuming into a half-written window, overwrites it instead of
producing a duplicate.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from pageharvest.protocols import Record, StorageBackend
from pageharvest.storage.keys import batch_key

logger = structlog.get_logger(__name__)


@dataclass
class Batch:
    """Records collected for one page window since it was opened."""

    start_page: int
    end_page: int
    pages: List[int] = field(default_factory=list)
    records: List[Record] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def covers(self, page_number: int) -> bool:
        return self.start_page <= page_number <= self.end_page


class BatchAssembler:
    """Groups completed pages into windows and writes them to storage."""

    def __init__(
        self,
        storage: StorageBackend,
        category: str,
        query: str,
        batch_size: int,
        total_pages: int,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.storage = storage
        self.category = category
        self.query = query
        self.batch_size = batch_size
        self.total_pages = max(total_pages, 1)
        self.flushed_keys: List[str] = []

    def window_for(self, page_number: int) -> Tuple[int, int]:
        start = (page_number - 1) // self.batch_size * self.batch_size + 1
        end = min(start + self.batch_size - 1, self.total_pages)
        return start, max(end, start)

    def windows(self) -> List[Tuple[int, int]]:
        return [self.window_for(page) for page in range(1, self.total_pages + 1, self.batch_size)]

    def key_for(self, batch: Batch) -> str:
        return batch_key(self.category, self.query, batch.start_page, batch.end_page)

    async def open(self, page_number: int) -> Batch:
        """Start the batch for ``page_number``'s window, seeded from storage if it was written before."""
        start, end = self.window_for(page_number)
        batch = Batch(start_page=start, end_page=end)
        existing = await self.load_window(start, end)
        if existing is not None:
            pages, records = existing
            batch.pages = pages
            batch.records = records
            logger.debug("Reopened stored batch", start_page=start, end_page=end, pages=len(pages))
        return batch

    def append(self, batch: Batch, page_number: int, records: Iterable[Record]) -> None:
        if not batch.covers(page_number):
            raise ValueError(f"page {page_number} is outside batch {batch.start_page}-{batch.end_page}")
        if page_number not in batch.pages:
            batch.pages.append(page_number)
            batch.pages.sort()
        batch.records.extend(records)

    def is_full(self, batch: Batch) -> bool:
        return batch.page_count >= self.batch_size

    def _serialize(self, batch: Batch) -> Dict[str, Any]:
        return {
            "category": self.category,
            "query": self.query,
            "startPage": batch.start_page,
            "endPage": batch.end_page,
            "pages": sorted(batch.pages),
            "recordCount": len(batch.records),
            "records": [record.to_dict() for record in batch.records],
            "savedAt": time.time(),
        }

    async def persist(self, batch: Batch) -> str:
        """Write a snapshot of an open batch; the batch stays open."""
        key = self.key_for(batch)
        await self.storage.write_json(key, self._serialize(batch))
        return key

    async def flush(self, batch: Batch) -> str:
        """Write the batch for the last time and return its storage key."""
        key = await self.persist(batch)
        if key not in self.flushed_keys:
            self.flushed_keys.append(key)
        logger.info(
            "Batch flushed",
            key=key,
            pages=batch.page_count,
            records=len(batch.records),
        )
        return key

    async def load_window(self, start: int, end: int) -> Optional[Tuple[List[int], List[Record]]]:
        key = batch_key(self.category, self.query, start, end)
        if not await self.storage.exists(key):
            return None
        data = await self.storage.read_json(key)
        if not isinstance(data, dict):
            return None
        # Distinct queries can slugify to the same key
        if data.get("category") != self.category or (data.get("query") or "") != self.query:
            logger.warning(
                "Ignoring batch written by another job",
                key=key,
                stored_category=data.get("category"),
                stored_query=data.get("query"),
            )
            return None
        pages = sorted(int(p) for p in data.get("pages", []))
        records = [Record.from_dict(item) for item in data.get("records", [])]
        return pages, records
