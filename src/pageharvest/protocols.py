"""
Core contracts and data structures for PageHarvest.

The pagination engine only depends on the shapes defined here: pages of records,
navigation (continuation) state, and the collaborator protocols for fetching pages,
seeding the first page and persisting JSON blobs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

if TYPE_CHECKING:
    from pageharvest.dedup.accumulator import MergeResult

# ============================================================================
# Enums
# ============================================================================


class PageOutcome(Enum):
    """Classification of a single page fetch attempt."""

    SUCCESS = "success"
    EMPTY = "empty"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"

    @property
    def is_failure(self) -> bool:
        return self is not PageOutcome.SUCCESS


class JobStatus(Enum):
    """Lifecycle status of a harvest job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


# ============================================================================
# Records and pages
# ============================================================================


@dataclass(frozen=True)
class Record:
    """One harvested item. The payload is stored exactly as received."""

    id: str
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Record:
        return cls(id=str(data["id"]), payload=data.get("payload") or {})


@dataclass(frozen=True)
class PageResult:
    """One fetched page of results."""

    page_number: int
    records: Tuple[Record, ...] = ()
    total_count: Optional[int] = None
    hits_per_page: Optional[int] = None

    # Transport details, handed to the navigation extractor
    raw: Optional[Dict[str, Any]] = None
    cookies: Dict[str, str] = field(default_factory=dict)
    response_time: float = 0.0

    def __post_init__(self) -> None:
        if self.page_number < 1:
            raise ValueError("page_number is 1-indexed")

    @property
    def is_empty(self) -> bool:
        return not self.records


# ============================================================================
# Navigation state
# ============================================================================


@dataclass
class NavigationUpdate:
    """Partial navigation state. ``None`` means keep the prior value."""

    ref_id: Optional[str] = None
    search_context: Optional[Any] = None
    searcher: Optional[Any] = None
    user_token: Optional[str] = None
    cookies: Dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.cookies and all(
            getattr(self, f.name) is None for f in fields(self) if f.name != "cookies"
        )

    @property
    def has_token(self) -> bool:
        return self.ref_id is not None


@dataclass
class NavigationState:
    """Session continuation context shared by every request of a job."""

    ref_id: Optional[str] = None
    search_context: Optional[Any] = None
    searcher: Optional[Any] = None
    user_token: Optional[str] = None
    cookies: Dict[str, str] = field(default_factory=dict)

    def apply(self, update: NavigationUpdate) -> bool:
        """Merge fresher values into this state. Returns True when anything changed."""
        changed = False
        for name in ("ref_id", "search_context", "searcher", "user_token"):
            value = getattr(update, name)
            if value is not None and value != getattr(self, name):
                setattr(self, name, value)
                changed = True
        for key, value in update.cookies.items():
            if self.cookies.get(key) != value:
                self.cookies[key] = value
                changed = True
        return changed

    def copy(self) -> NavigationState:
        return replace(self, cookies=dict(self.cookies))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref_id": self.ref_id,
            "search_context": self.search_context,
            "searcher": self.searcher,
            "user_token": self.user_token,
            "cookies": dict(sorted(self.cookies.items())),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> NavigationState:
        data = data or {}
        return cls(
            ref_id=data.get("ref_id"),
            search_context=data.get("search_context"),
            searcher=data.get("searcher"),
            user_token=data.get("user_token"),
            cookies=dict(data.get("cookies") or {}),
        )


# ============================================================================
# Jobs
# ============================================================================


@dataclass
class HarvestJob:
    """A unit of work: every page of one query within one category."""

    category: str
    query: str = ""
    max_pages: Optional[int] = None
    start_page: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.category or not self.category.strip():
            raise ValueError("category must not be empty")
        if self.max_pages is not None and self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.start_page is not None and self.start_page < 1:
            raise ValueError("start_page must be >= 1")


@dataclass
class JobResult:
    """What a caller gets back from a run, whatever its outcome."""

    status: JobStatus
    category: str
    query: str
    records: List[Record] = field(default_factory=list)
    completed_pages: List[int] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)
    total_pages: int = 0
    current_page: int = 1
    stats: Dict[str, Any] = field(default_factory=dict)
    checkpoint_key: Optional[str] = None
    batch_keys: List[str] = field(default_factory=list)
    stop_reason: Optional[str] = None
    error: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly view without the records themselves."""
        return {
            "status": self.status.value,
            "category": self.category,
            "query": self.query,
            "total_pages": self.total_pages,
            "current_page": self.current_page,
            "completed_pages": len(self.completed_pages),
            "failed_pages": list(self.failed_pages),
            "records": len(self.records),
            "checkpoint_key": self.checkpoint_key,
            "batch_keys": list(self.batch_keys),
            "stop_reason": self.stop_reason,
            "error": self.error,
            "stats": self.stats,
        }


# ============================================================================
# Collaborator protocols
# ============================================================================


@runtime_checkable
class PageFetcher(Protocol):
    """One network round-trip for one page.

    Implementations raise ``TransportError``, ``RateLimitedError`` or
    ``InvalidResponseError`` instead of returning a page.
    """

    async def fetch_page(self, page_number: int, navigation: NavigationState) -> PageResult: ...


@runtime_checkable
class InitialStateLoader(Protocol):
    """Seeds a job with its first page and initial navigation state."""

    async def load_first_page(self, query: str) -> Tuple[PageResult, NavigationState]: ...


@runtime_checkable
class StorageBackend(Protocol):
    """Key/value JSON store shared by every job."""

    async def exists(self, key: str) -> bool: ...

    async def write_json(self, key: str, value: Any) -> None: ...

    async def read_json(self, key: str) -> Optional[Any]: ...


@runtime_checkable
class PageCompletedHandler(Protocol):
    """Hook invoked after a page has been merged successfully."""

    async def on_page_completed(self, job: HarvestJob, page: PageResult, merge: "MergeResult") -> None: ...
