"""
Accumulates records across pages while dropping duplicates.

Ordering is insertion order: page order first, then position within the page.
The first-seen copy of a record always wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

import structlog

from pageharvest.dedup.identity import record_identity
from pageharvest.protocols import PageResult, Record

logger = structlog.get_logger(__name__)


def build_records(payloads: Iterable[Mapping[str, Any]]) -> List[Record]:
    """Wrap raw payloads as records keyed by their identity."""
    return [Record(id=record_identity(payload), payload=dict(payload)) for payload in payloads]


@dataclass
class MergeResult:
    """Outcome of merging one page into the result set."""

    page_number: int
    merged: List[Record] = field(default_factory=list)
    duplicates: int = 0

    @property
    def count(self) -> int:
        """Number of genuinely new records."""
        return len(self.merged)

    @property
    def stalled(self) -> bool:
        """Non-empty page that contributed nothing new."""
        return self.count == 0 and self.duplicates > 0


class RecordAccumulator:
    """Running, deduplicated result set of a job."""

    def __init__(self) -> None:
        self._index: Dict[str, int] = {}
        self._records: List[Record] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._index

    @property
    def records(self) -> List[Record]:
        return list(self._records)

    def _add(self, records: Iterable[Record]) -> List[Record]:
        added: List[Record] = []
        for record in records:
            if record.id in self._index:
                continue
            self._index[record.id] = len(self._records)
            self._records.append(record)
            added.append(record)
        return added

    def merge(self, page: PageResult) -> MergeResult:
        """Merge a page and report what was new."""
        merged = self._add(page.records)
        result = MergeResult(
            page_number=page.page_number,
            merged=merged,
            duplicates=len(page.records) - len(merged),
        )
        if result.duplicates:
            logger.debug(
                "Dropped duplicate records",
                page=page.page_number,
                duplicates=result.duplicates,
                new_records=result.count,
            )
        return result

    def hydrate(self, records: Iterable[Record]) -> int:
        """Seed the result set from previously persisted records. Returns the count added."""
        return len(self._add(records))
