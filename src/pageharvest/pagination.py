"""
Resumable, rate-adaptive pagination engine.

``PaginationManager.run`` walks every result page of a ``(category, query)`` job
one page at a time:

    decide next page -> rate-limit wait -> fetch (with retries) -> classify
    -> accumulate -> batch -> checkpoint -> repeat

until all pages are processed, the wall-clock budget runs out, or an
unrecoverable error occurs. A final checkpoint is always attempted, so any run
can be resumed without re-fetching completed pages.
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from pageharvest.budget import Budget
from pageharvest.config import Config, PaginationConfig, RateLimitConfig
from pageharvest.crawler.navigation import NavigationExtractor, sanitize_cookies
from pageharvest.crawler.rate_limiter import RateController
from pageharvest.dedup.accumulator import RecordAccumulator
from pageharvest.errors import FetchError, InitialStateError, NavigationLost, StorageError
from pageharvest.observability import bind_job_context, increment, observe
from pageharvest.protocols import (
    HarvestJob,
    InitialStateLoader,
    JobResult,
    JobStatus,
    NavigationState,
    NavigationUpdate,
    PageCompletedHandler,
    PageFetcher,
    PageOutcome,
    PageResult,
    StorageBackend,
)
from pageharvest.state import JobState, RunRecord
from pageharvest.storage.batch import Batch, BatchAssembler
from pageharvest.storage.checkpoint import CheckpointStore
from pageharvest.storage.keys import metadata_key

SleepFunc = Callable[[float], Awaitable[None]]


class HarvestSettings(BaseModel):
    """The slice of configuration the pagination engine needs."""

    rate: RateLimitConfig = Field(default_factory=RateLimitConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)

    @classmethod
    def from_config(cls, config: Config) -> HarvestSettings:
        return cls(rate=config.rate_limit, pagination=config.pagination)


@dataclass
class _RunContext:
    """Per-run working set. Only the orchestrator touches it."""

    job: HarvestJob
    state: JobState
    accumulator: RecordAccumulator
    assembler: BatchAssembler
    run: RunRecord
    batch: Optional[Batch] = None
    pages_attempted: int = 0
    consecutive_failures: int = 0
    consecutive_stalls: int = 0
    resumed: bool = False
    checkpoint_key: Optional[str] = None


def compute_total_pages(total_count: Optional[int], hits_per_page: Optional[int], max_pages: int) -> int:
    """``min(ceil(total_count / hits_per_page), max_pages)``, never below one page."""
    if not total_count or not hits_per_page or hits_per_page <= 0:
        return 1
    return max(1, min(math.ceil(total_count / hits_per_page), max_pages))


class PaginationManager:
    """
    Orchestrates a single job's page loop.

    Pages are fetched strictly sequentially: each response may refresh the
    navigation state that the next request is built from. One manager instance
    runs one job at a time; concurrent jobs use separate managers.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        loader: InitialStateLoader,
        storage: StorageBackend,
        settings: Optional[HarvestSettings] = None,
        *,
        handlers: Sequence[PageCompletedHandler] = (),
        extractor: Optional[NavigationExtractor] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.fetcher = fetcher
        self.loader = loader
        self.storage = storage
        self.settings = settings or HarvestSettings()
        self.handlers = list(handlers)
        self.extractor = extractor or NavigationExtractor()
        self.rate_controller = RateController(self.settings.rate)
        self.checkpoints = CheckpointStore(storage)

        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

        self.state: Optional[JobState] = None
        self.logger = structlog.get_logger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, job: HarvestJob, budget: Optional[Budget] = None) -> JobResult:
        """Run ``job`` until completion, budget exhaustion or an unrecoverable error."""
        budget = budget or Budget.unlimited(self._clock)
        bind_job_context(category=job.category, query=job.query)

        ctx: Optional[_RunContext] = None
        status = JobStatus.FAILED
        stop_reason: Optional[str] = None
        error: Optional[str] = None

        try:
            ctx = await self._start(job)
            status, stop_reason = await self._paginate(ctx, budget)
        except asyncio.CancelledError:
            if ctx is not None:
                await self._finish_quietly(ctx, JobStatus.PAUSED)
            raise
        except (InitialStateError, StorageError) as e:
            status, error = JobStatus.FAILED, str(e)
            self.logger.error("Job failed", error=error, error_type=type(e).__name__)
        except Exception as e:
            self.logger.exception("Unexpected error in pagination loop", error=str(e))
            if ctx is not None:
                await self._finish_quietly(ctx, JobStatus.FAILED)
            raise

        if ctx is not None:
            try:
                await self._finish(ctx, status)
            except StorageError as e:
                status = JobStatus.FAILED
                error = error or str(e)
                self.logger.error("Final checkpoint failed", error=str(e))

        return self._result(job, ctx, status, stop_reason, error)

    # ------------------------------------------------------------------
    # Start / resume
    # ------------------------------------------------------------------

    async def _start(self, job: HarvestJob) -> _RunContext:
        state = await self.checkpoints.load(job.category, job.query)
        run_record = RunRecord(started_at=time.time())

        if state is not None:
            state.rate = self.rate_controller.restore(state.rate)
            self.state = state
            ctx = self._context(job, state, run_record, resumed=True)
            restored = await self._hydrate(ctx)
            self.logger.info(
                "Resuming from checkpoint",
                current_page=state.current_page,
                total_pages=state.total_pages,
                completed=len(state.completed_pages),
                failed=len(state.failed_pages),
                restored_records=restored,
            )
            if job.start_page is not None or job.max_pages is not None:
                self.logger.info("Checkpoint takes precedence over start_page/max_pages overrides")
            state.stats.runs.append(run_record)
            return ctx

        page, navigation = await self._load_first_page(job)
        max_pages = job.max_pages or self.settings.pagination.max_pages
        start_page = job.start_page or self.settings.pagination.start_page

        state = JobState(
            category=job.category,
            query=job.query,
            navigation=navigation,
            rate=self.rate_controller.initial_state(),
            current_page=max(2, start_page),
            total_pages=compute_total_pages(page.total_count, page.hits_per_page, max_pages),
        )
        state.stats.start_time = time.time()
        state.stats.items_per_page = page.hits_per_page
        state.stats.total_requests += 1
        state.stats.successful_requests += 1
        state.stats.total_response_time += page.response_time
        state.stats.runs.append(run_record)
        self.state = state

        ctx = self._context(job, state, run_record, resumed=False)
        self.logger.info(
            "Starting new job",
            total_count=page.total_count,
            hits_per_page=page.hits_per_page,
            total_pages=state.total_pages,
            max_pages=max_pages,
        )
        await self._complete_page(ctx, page)
        return ctx

    def _context(self, job: HarvestJob, state: JobState, run_record: RunRecord, resumed: bool) -> _RunContext:
        assembler = BatchAssembler(
            self.storage,
            category=job.category,
            query=job.query,
            batch_size=self.settings.pagination.batch_size,
            total_pages=state.total_pages,
        )
        return _RunContext(
            job=job,
            state=state,
            accumulator=RecordAccumulator(),
            assembler=assembler,
            run=run_record,
            resumed=resumed,
            checkpoint_key=self.checkpoints.key(job.category, job.query),
        )

    async def _hydrate(self, ctx: _RunContext) -> int:
        """Rebuild the result set from stored batches; stored pages count as completed."""
        restored = 0
        for start, end in ctx.assembler.windows():
            stored = await ctx.assembler.load_window(start, end)
            if stored is None:
                continue
            pages, records = stored
            restored += ctx.accumulator.hydrate(records)
            for page_number in pages:
                ctx.state.mark_completed(page_number)
        ctx.state.stats.total_items = len(ctx.accumulator)
        return restored

    async def _load_first_page(self, job: HarvestJob) -> Tuple[PageResult, NavigationState]:
        cfg = self.settings
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(cfg.pagination.max_retries + 1),
                wait=wait_exponential(multiplier=cfg.rate.base_delay, max=cfg.rate.max_delay),
                retry=retry_if_exception_type((FetchError, TimeoutError)),
                before_sleep=self._log_first_page_retry,
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    async with asyncio.timeout(cfg.pagination.page_timeout):
                        return await self.loader.load_first_page(job.query)
        except (FetchError, TimeoutError) as e:
            raise InitialStateError(f"Could not load first page for {job.category!r}/{job.query!r}: {e}") from e
        raise InitialStateError("First page loader returned no result")

    def _log_first_page_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            "First page load failed, retrying",
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    # ------------------------------------------------------------------
    # Page loop
    # ------------------------------------------------------------------

    async def _paginate(self, ctx: _RunContext, budget: Budget) -> Tuple[JobStatus, Optional[str]]:
        state = ctx.state
        cfg = self.settings

        if state.total_pages <= 1:
            state.current_page = state.total_pages + 1
            return JobStatus.COMPLETED, None

        for page_number in range(max(2, state.current_page), state.total_pages + 1):
            if page_number in state.completed_pages:
                continue

            state.current_page = page_number
            if budget.expired:
                self.logger.info("Budget exhausted, pausing", next_page=page_number)
                return JobStatus.PAUSED, "budget"

            if ctx.consecutive_failures >= cfg.rate.block_threshold:
                if not await self._cooldown(ctx, budget):
                    return JobStatus.PAUSED, "budget"

            outcome, page = await self._fetch_with_retries(ctx, page_number, budget)
            if outcome is None:
                self.logger.info("Budget exhausted while waiting, pausing", next_page=page_number)
                return JobStatus.PAUSED, "budget"

            ctx.pages_attempted += 1
            ctx.run.pages_attempted += 1
            increment("pages_total", labels={"outcome": outcome.value})

            if page is not None:
                await self._complete_page(ctx, page)
                ctx.consecutive_failures = 0
            else:
                state.mark_failed(page_number)
                ctx.consecutive_failures += 1
                self.logger.warning(
                    "Page failed after retries",
                    page=page_number,
                    outcome=outcome.value,
                    consecutive_failures=ctx.consecutive_failures,
                )

            state.current_page = page_number + 1
            await self._maybe_flush(ctx, page_number)
            if ctx.pages_attempted % cfg.pagination.checkpoint_interval == 0:
                await self._checkpoint(ctx)

            if cfg.pagination.stall_page_limit and ctx.consecutive_stalls >= cfg.pagination.stall_page_limit:
                self.logger.warning(
                    "Pagination stalled, no new records", page=page_number, stalled_pages=ctx.consecutive_stalls
                )
                return JobStatus.COMPLETED, "stalled"

        state.current_page = state.total_pages + 1
        return JobStatus.COMPLETED, None

    async def _fetch_with_retries(
        self, ctx: _RunContext, page_number: int, budget: Budget
    ) -> Tuple[Optional[PageOutcome], Optional[PageResult]]:
        """Fetch one page. Returns ``(None, None)`` when the budget ran out before an attempt."""
        state = ctx.state
        max_attempts = self.settings.pagination.max_retries + 1
        outcome: Optional[PageOutcome] = None

        for attempt in range(max_attempts):
            delay, state.rate = self.rate_controller.next_delay(state.rate, self._rng)
            if attempt:
                delay = max(delay, self.rate_controller.retry_backoff(attempt))
                state.stats.retries += 1

            if not await self._wait(ctx, delay, budget):
                return None, None

            outcome, page = await self._attempt(ctx, page_number)
            state.rate = self.rate_controller.record_outcome(state.rate, outcome)
            if page is not None:
                return outcome, page

            self.logger.debug(
                "Page attempt failed",
                page=page_number,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                outcome=outcome.value,
                next_delay=state.rate.current_delay,
            )

        return outcome, None

    async def _attempt(self, ctx: _RunContext, page_number: int) -> Tuple[PageOutcome, Optional[PageResult]]:
        """One bounded fetch, classified into a ``PageOutcome``."""
        stats = ctx.state.stats
        stats.total_requests += 1
        started = time.perf_counter()
        page: Optional[PageResult] = None

        try:
            async with asyncio.timeout(self.settings.pagination.page_timeout):
                page = await self.fetcher.fetch_page(page_number, ctx.state.navigation)
            outcome = PageOutcome.EMPTY if page.is_empty else PageOutcome.SUCCESS
        except FetchError as e:
            outcome = e.outcome
            self.logger.info("Fetch error", page=page_number, kind=e.kind, status=e.status, error=str(e))
        except TimeoutError:
            outcome = PageOutcome.TRANSPORT_ERROR
            self.logger.info("Fetch timed out", page=page_number, timeout=self.settings.pagination.page_timeout)
        except Exception as e:
            outcome = PageOutcome.TRANSPORT_ERROR
            self.logger.warning("Unexpected fetch failure", page=page_number, error=str(e), error_type=type(e).__name__)

        elapsed = time.perf_counter() - started
        stats.total_response_time += page.response_time if page is not None and page.response_time else elapsed
        observe("fetch_latency_seconds", elapsed)

        if outcome is PageOutcome.SUCCESS:
            stats.successful_requests += 1
            return outcome, page

        stats.failed_requests += 1
        if outcome is PageOutcome.RATE_LIMITED:
            stats.rate_limit_events += 1
            increment("rate_limit_events_total")
            self.logger.warning("Rate limited by upstream", page=page_number, current_delay=ctx.state.rate.current_delay)
        return outcome, None

    async def _complete_page(self, ctx: _RunContext, page: PageResult) -> None:
        state = ctx.state
        merge = ctx.accumulator.merge(page)

        if ctx.batch is not None and not ctx.batch.covers(page.page_number):
            await self._flush_batch(ctx)
        if ctx.batch is None:
            ctx.batch = await ctx.assembler.open(page.page_number)
        ctx.assembler.append(ctx.batch, page.page_number, merge.merged)

        state.mark_completed(page.page_number)
        self._refresh_navigation(ctx, page)

        state.stats.total_items = len(ctx.accumulator)
        state.stats.duplicates += merge.duplicates
        ctx.run.new_records += merge.count
        increment("records_total", merge.count)
        if merge.duplicates:
            increment("duplicates_total", merge.duplicates)

        if merge.stalled:
            state.stats.stalled_pages += 1
            ctx.consecutive_stalls += 1
        else:
            ctx.consecutive_stalls = 0

        for handler in self.handlers:
            await handler.on_page_completed(ctx.job, page, merge)

        self.logger.info(
            "Page completed",
            page=page.page_number,
            total_pages=state.total_pages,
            records=len(page.records),
            new_records=merge.count,
            total_items=state.stats.total_items,
        )

    def _refresh_navigation(self, ctx: _RunContext, page: PageResult) -> None:
        navigation = ctx.state.navigation
        try:
            update = self.extractor.extract_token(page.raw)
        except NavigationLost as e:
            update = e.partial
            if page.raw is not None and navigation.ref_id is None:
                ctx.state.stats.navigation_lost += 1
                self.logger.warning(
                    "No continuation token available, continuing with page numbers", page=page.page_number
                )

        update = NavigationUpdate(
            ref_id=update.ref_id,
            search_context=update.search_context,
            searcher=update.searcher,
            user_token=update.user_token,
            cookies=sanitize_cookies(page.cookies),
        )
        if navigation.apply(update):
            self.logger.debug("Navigation state refreshed", page=page.page_number, ref_id=navigation.ref_id)

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def _wait(self, ctx: _RunContext, delay: float, budget: Budget) -> bool:
        """Sleep for ``delay`` but never past the budget. Returns False once the budget is spent."""
        wait = min(delay, budget.remaining())
        if wait > 0:
            await self._sleep(wait)
            ctx.state.stats.total_delay += wait
            observe("request_delay_seconds", wait)
        return not budget.expired

    async def _cooldown(self, ctx: _RunContext, budget: Budget) -> bool:
        cooldown = self.settings.rate.block_cooldown
        self.logger.warning(
            "Consecutive failed pages, probable block; cooling down",
            consecutive_failures=ctx.consecutive_failures,
            cooldown=cooldown,
        )
        ctx.state.stats.cooldowns += 1
        increment("cooldowns_total")
        ctx.consecutive_failures = 0
        return await self._wait(ctx, cooldown, budget)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _maybe_flush(self, ctx: _RunContext, page_number: int) -> None:
        batch = ctx.batch
        if batch is None:
            return
        last_page = page_number >= ctx.state.total_pages
        if ctx.assembler.is_full(batch) or not batch.covers(page_number + 1) or last_page:
            await self._flush_batch(ctx)

    async def _flush_batch(self, ctx: _RunContext) -> None:
        batch, ctx.batch = ctx.batch, None
        if batch is None or batch.page_count == 0:
            return
        await ctx.assembler.flush(batch)
        ctx.state.stats.batches_saved += 1
        increment("batches_flushed_total")
        await self._save_metadata(ctx)

    async def _save_metadata(self, ctx: _RunContext) -> None:
        state = ctx.state
        await self.storage.write_json(
            metadata_key(state.category, state.query),
            {
                "category": state.category,
                "query": state.query,
                "totalPages": state.total_pages,
                "completedPages": len(state.completed_pages),
                "failedPages": sorted(state.failed_pages),
                "totalItems": state.stats.total_items,
                "batches": list(ctx.assembler.flushed_keys),
                "stats": state.stats.to_dict(),
                "lastUpdated": time.time(),
            },
        )

    async def _checkpoint(self, ctx: _RunContext) -> None:
        if ctx.batch is not None and ctx.batch.page_count:
            await ctx.assembler.persist(ctx.batch)
        ctx.state.stats.checkpoints_saved += 1
        ctx.checkpoint_key = await self.checkpoints.save(ctx.state)
        increment("checkpoints_total")
        self.logger.info(
            "Checkpoint saved",
            key=ctx.checkpoint_key,
            current_page=ctx.state.current_page,
            completed=len(ctx.state.completed_pages),
        )

    async def _finish(self, ctx: _RunContext, status: JobStatus) -> None:
        """Flush the open batch and write the final checkpoint."""
        state = ctx.state
        end = time.time()
        state.stats.end_time = end
        ctx.run.ended_at = end
        ctx.run.status = status.value

        try:
            await self._flush_batch(ctx)
        finally:
            await self._checkpoint(ctx)
        self.logger.info(
            "Job finished",
            status=status.value,
            completed=len(state.completed_pages),
            failed=len(state.failed_pages),
            total_items=state.stats.total_items,
        )

    async def _finish_quietly(self, ctx: _RunContext, status: JobStatus) -> None:
        try:
            await self._finish(ctx, status)
        except StorageError as e:
            self.logger.error("Best-effort checkpoint failed", error=str(e))

    def _result(
        self,
        job: HarvestJob,
        ctx: Optional[_RunContext],
        status: JobStatus,
        stop_reason: Optional[str],
        error: Optional[str],
    ) -> JobResult:
        if ctx is None:
            return JobResult(status=status, category=job.category, query=job.query, error=error)

        state = ctx.state
        return JobResult(
            status=status,
            category=job.category,
            query=job.query,
            records=ctx.accumulator.records,
            completed_pages=sorted(state.completed_pages),
            failed_pages=sorted(state.failed_pages),
            total_pages=state.total_pages,
            current_page=state.current_page,
            stats=state.stats.to_dict(),
            checkpoint_key=ctx.checkpoint_key,
            batch_keys=list(ctx.assembler.flushed_keys),
            stop_reason=stop_reason,
            error=error,
        )
