"""
Exception hierarchy for PageHarvest.

Fetch errors are per-page and retryable; they never abort a job on their own.
Storage and initial-state errors are unrecoverable and end a job as ``failed``.
"""

from __future__ import annotations

from typing import Optional

from pageharvest.protocols import NavigationUpdate, PageOutcome


class HarvestError(Exception):
    """Base class for all PageHarvest errors."""


class ConfigurationError(HarvestError):
    """Invalid or inconsistent configuration."""


class FetchError(HarvestError):
    """A single page fetch failed."""

    outcome: PageOutcome = PageOutcome.TRANSPORT_ERROR

    def __init__(self, message: str, *, page_number: Optional[int] = None, status: Optional[int] = None):
        super().__init__(message)
        self.page_number = page_number
        self.status = status

    @property
    def kind(self) -> str:
        return self.outcome.value


class TransportError(FetchError):
    """Network failure, timeout or unexpected HTTP status."""

    outcome = PageOutcome.TRANSPORT_ERROR


class RateLimitedError(FetchError):
    """Explicit throttling signal from upstream (429/503 or a throttle message)."""

    outcome = PageOutcome.RATE_LIMITED


class InvalidResponseError(FetchError):
    """Parseable response without the expected record list."""

    outcome = PageOutcome.EMPTY


class NavigationLost(HarvestError):
    """No continuation token could be found anywhere in a response.

    Degraded, not fatal: pagination falls back to page-number addressing.
    Whatever else was found travels along as ``partial``.
    """

    def __init__(self, message: str, *, partial: Optional[NavigationUpdate] = None):
        super().__init__(message)
        self.partial = partial if partial is not None else NavigationUpdate()


class InitialStateError(HarvestError):
    """The first page could not be loaded after all retries."""


class StorageError(HarvestError):
    """A checkpoint or batch write failed."""

    def __init__(self, message: str, *, key: Optional[str] = None):
        super().__init__(message)
        self.key = key
