"""Replay download for the item under a rank's cursor."""

from .errors import TransientUpstreamError
from .harvest_logging import get_logger
from .models.outcomes import FetchResult, FetchStatus
from .models.pages import Page
from .raw_io.client import UpstreamClient
from .raw_io.persist import PageStore
from .rate_limit import RateLimiter

logger = get_logger(__name__)


class ItemFetcher:
    """Downloads the replay at a page offset and stores it by counter value."""

    def __init__(self, store: PageStore, client: UpstreamClient, limiter: RateLimiter) -> None:
        self.store = store
        self.client = client
        self.limiter = limiter

    async def fetch(self, rank: str, page: Page, offset: int, counter: int) -> FetchResult:
        """Process item ``counter`` of ``rank``, found at ``offset`` of ``page``.

        The progress counter itself is left to the caller; on success the
        replay is already durable when this returns.
        """
        if page.count == counter:
            logger.info("All replays have been processed", rank=rank, processed=counter)
            return FetchResult(FetchStatus.CAUGHT_UP)

        item = page.item_at(offset)
        url = item.download_url if item is not None else None
        if url is None:
            logger.warning("Failed to get replay link, skipping slot",
                           rank=rank, counter=counter, offset=offset)
            return FetchResult(FetchStatus.UNRESOLVABLE, detail=f"no usable link at offset {offset}")

        logger.info("Downloading replay file", rank=rank, counter=counter, url=url)
        try:
            payload = await self.client.download(url)
        except TransientUpstreamError as e:
            logger.warning("Failed to retrieve replay file",
                           rank=rank,
                           counter=counter,
                           error=str(e),
                           error_type=type(e).__name__,
                           calls_since_cooldown=self.limiter.calls_since_cooldown)
            self.limiter.penalize()
            return FetchResult(FetchStatus.TRANSIENT_FAILURE, url=url, detail=str(e))

        size = self.store.save_artifact(rank, counter, payload)
        return FetchResult(FetchStatus.SUCCESS, url=url, size=size)
