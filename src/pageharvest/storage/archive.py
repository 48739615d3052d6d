"""Per-page side effects, plugged into the pagination manager as handlers."""

from __future__ import annotations

import time

import structlog

from pageharvest.dedup.accumulator import MergeResult
from pageharvest.protocols import HarvestJob, PageResult, StorageBackend
from pageharvest.storage.keys import page_archive_key


class PageArchiveHandler:
    """Stores every completed page's raw response next to the batches."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def on_page_completed(self, job: HarvestJob, page: PageResult, merge: MergeResult) -> None:
        key = page_archive_key(job.category, job.query, page.page_number)
        await self.storage.write_json(
            key,
            {
                "category": job.category,
                "query": job.query,
                "page": page.page_number,
                "totalCount": page.total_count,
                "hitsPerPage": page.hits_per_page,
                "newRecords": merge.count,
                "duplicates": merge.duplicates,
                "savedAt": time.time(),
                "response": page.raw if page.raw is not None else [r.payload for r in page.records],
            },
        )
        self.logger.debug("Page archived", key=key, page=page.page_number)
