"""Pagination cursor resolution for one rank's index."""

from typing import Tuple

from .errors import MissingPageError, TransientUpstreamError
from .harvest_logging import get_logger
from .models.outcomes import ResolveResult, ResolveStatus
from .raw_io.client import UpstreamClient, pin_max_rank
from .raw_io.persist import PageStore
from .rate_limit import RateLimiter

logger = get_logger(__name__)


def locate(counter: int, page_size: int) -> Tuple[int, int]:
    """Map a progress counter to ``(page_index, offset)``."""
    if counter < 0:
        raise ValueError(f"Progress counter cannot be negative: {counter}")
    return divmod(counter, page_size)


class CursorResolver:
    """Finds the stored page covering a counter, fetching the next page lazily."""

    def __init__(
        self,
        store: PageStore,
        client: UpstreamClient,
        limiter: RateLimiter,
        page_size: int,
    ) -> None:
        self.store = store
        self.client = client
        self.limiter = limiter
        self.page_size = page_size

    async def resolve(self, rank: str, counter: int) -> ResolveResult:
        """Return the page holding item ``counter`` of ``rank``.

        Pages already on disk are returned without any request. Otherwise the
        previous page's ``next`` link is followed, with ``max-rank`` pinned to
        ``rank``, and the result is stored before being returned. A counter
        that has reached the upstream count on a page boundary resolves to the
        last stored page, one past its final offset.

        Raises:
            MissingPageError: If the predecessor page is not stored
        """
        page_index, offset = locate(counter, self.page_size)

        if offset == 0 and page_index > 0:
            # Caught up exactly at a page boundary; the next page may never exist
            previous = self.store.load_page(rank, page_index - 1)
            if previous is not None and previous.count == counter:
                return ResolveResult(ResolveStatus.READY, page_index - 1, self.page_size, page=previous)

        page = self.store.load_page(rank, page_index)
        if page is not None:
            return ResolveResult(ResolveStatus.READY, page_index, offset, page=page)

        if page_index == 0:
            raise MissingPageError(rank, 0)

        previous = self.store.load_page(rank, page_index - 1)
        if previous is None:
            raise MissingPageError(rank, page_index - 1)

        if not previous.next:
            logger.info("No next index page available yet",
                        rank=rank, page_index=page_index)
            return ResolveResult(
                ResolveStatus.NO_MORE_PAGES, page_index, offset,
                detail=f"page {page_index - 1} has no next link"
            )

        url = pin_max_rank(previous.next, rank)
        logger.info("Downloading next index page", rank=rank, page_index=page_index, url=url)

        try:
            raw, page = await self.client.fetch_page(url)
        except TransientUpstreamError as e:
            logger.warning("Failed to retrieve next index page",
                           rank=rank,
                           page_index=page_index,
                           error=str(e),
                           calls_since_cooldown=self.limiter.calls_since_cooldown)
            if e.throttling:
                self.limiter.penalize()
            return ResolveResult(
                ResolveStatus.TRANSIENT_FAILURE, page_index, offset, detail=str(e)
            )

        self.store.save_page(rank, page_index, raw)
        return ResolveResult(ResolveStatus.READY, page_index, offset, page=page, fetched=True)
