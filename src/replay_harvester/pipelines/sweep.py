"""Steady-state sweep over every rank, one replay per rank per cycle."""

from typing import List, Optional, Sequence

from ..config import AppSettings
from ..cursor import CursorResolver
from ..fetcher import ItemFetcher
from ..harvest_logging import bind_step, clear_step, get_logger
from ..models.outcomes import (
    FetchStatus,
    ResolveStatus,
    StepOutcome,
    StepResult,
)
from ..raw_io.client import UpstreamClient
from ..raw_io.persist import PageStore
from ..rate_limit import RateLimiter

logger = get_logger(__name__)


class SweepController:
    """Drives the per-rank state machine: Ready, Resolving, Fetching.

    Each step handles one rank. Transient failures skip the rank for the
    current cycle only; fatal state errors propagate to the caller.
    """

    def __init__(
        self,
        ranks: Sequence[str],
        page_size: int,
        store: PageStore,
        resolver: CursorResolver,
        fetcher: ItemFetcher,
        limiter: RateLimiter,
    ) -> None:
        if not ranks:
            raise ValueError("At least one rank is required")
        self.ranks = list(ranks)
        self.page_size = page_size
        self.store = store
        self.resolver = resolver
        self.fetcher = fetcher
        self.limiter = limiter
        self.cycles_completed = 0

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        store: PageStore,
        client: UpstreamClient,
        limiter: RateLimiter,
    ) -> "SweepController":
        """Wire a controller from settings and shared collaborators."""
        return cls(
            ranks=settings.RANKS,
            page_size=settings.PAGE_SIZE,
            store=store,
            resolver=CursorResolver(store, client, limiter, settings.PAGE_SIZE),
            fetcher=ItemFetcher(store, client, limiter),
            limiter=limiter,
        )

    async def step(self, rank: str, skip_wait: bool = False) -> StepResult:
        """Run one Ready -> Resolving -> Fetching pass for ``rank``."""
        if not skip_wait:
            await self.limiter.acquire()

        counter = self.store.load_counter(rank)
        logger.debug("Requests made since last cooldown",
                     calls_since_cooldown=self.limiter.calls_since_cooldown,
                     processed=counter)

        resolved = await self.resolver.resolve(rank, counter)
        if resolved.status is ResolveStatus.NO_MORE_PAGES:
            return StepResult(rank, StepOutcome.NO_MORE_PAGES, counter, counter, resolved.detail)
        if resolved.status is ResolveStatus.TRANSIENT_FAILURE:
            return StepResult(rank, StepOutcome.PAGE_FAILED, counter, counter, resolved.detail)

        fetched = await self.fetcher.fetch(rank, resolved.page, resolved.offset, counter)
        if fetched.status is FetchStatus.CAUGHT_UP:
            return StepResult(rank, StepOutcome.CAUGHT_UP, counter, counter)
        if fetched.status is FetchStatus.TRANSIENT_FAILURE:
            return StepResult(rank, StepOutcome.DOWNLOAD_FAILED, counter, counter, fetched.detail)

        # Replay (or the decision to skip its slot) is durable; advance
        self.store.save_counter(rank, counter + 1)
        if fetched.status is FetchStatus.UNRESOLVABLE:
            return StepResult(rank, StepOutcome.SKIPPED_ITEM, counter, counter + 1, fetched.detail)
        return StepResult(rank, StepOutcome.DOWNLOADED, counter, counter + 1)

    async def run_cycle(self) -> List[StepResult]:
        """Visit every rank once, in configured order."""
        cycle = self.cycles_completed + 1
        results = []
        skip_wait = False

        for rank in self.ranks:
            bind_step(rank, cycle)
            try:
                result = await self.step(rank, skip_wait=skip_wait)
            finally:
                clear_step()
            skip_wait = result.outcome is StepOutcome.CAUGHT_UP
            results.append(result)

        self.cycles_completed = cycle
        downloaded = sum(1 for r in results if r.outcome is StepOutcome.DOWNLOADED)
        caught_up = sum(1 for r in results if r.outcome is StepOutcome.CAUGHT_UP)
        logger.info("Sweep cycle finished",
                    cycle=cycle,
                    downloaded=downloaded,
                    caught_up=caught_up,
                    failed=sum(1 for r in results
                               if r.outcome in (StepOutcome.PAGE_FAILED, StepOutcome.DOWNLOAD_FAILED)),
                    total_calls=self.limiter.total_calls,
                    calls_in_window=self.limiter.calls_in_window())
        return results

    async def run(self, max_cycles: Optional[int] = None) -> int:
        """Sweep until ``max_cycles`` cycles have run, or forever when None.

        Returns:
            Number of cycles completed by this call
        """
        logger.info("Starting replay auto-download", ranks=len(self.ranks), max_cycles=max_cycles)
        completed = 0
        while max_cycles is None or completed < max_cycles:
            await self.run_cycle()
            completed += 1
        return completed
