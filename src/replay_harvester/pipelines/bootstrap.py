"""Initial index creation: page 0 and a zero counter for every rank."""

from typing import Any, Dict, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from ..config import AppSettings
from ..errors import TransientUpstreamError
from ..harvest_logging import bind_step, clear_step, get_logger
from ..raw_io.client import UpstreamClient, initial_query_params
from ..raw_io.persist import PageStore, ensure_dir
from ..rate_limit import RateLimiter

logger = get_logger(__name__)


async def bootstrap_index(
    settings: AppSettings,
    store: PageStore,
    client: UpstreamClient,
    limiter: RateLimiter,
    ranks: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Fetch and store the first index page of every rank.

    Ranks that are already initialized are left untouched, so an interrupted
    bootstrap can simply be run again. Transient failures are retried up to
    ``BOOTSTRAP_ATTEMPTS`` times, with the limiter cooldown between attempts
    and after a rank that gave up on a throttling error.

    Returns:
        Summary dictionary:
        {
            "initialized": List[str],
            "skipped": List[str],
            "failed": List[Dict[str, str]]
        }
    """
    ranks = list(ranks if ranks is not None else settings.RANKS)
    ensure_dir(store.root)

    summary: Dict[str, Any] = {'initialized': [], 'skipped': [], 'failed': []}

    def _before_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("Initial index request failed, retrying after cooldown",
                       attempt=retry_state.attempt_number,
                       error=str(error))
        limiter.penalize()

    for rank in ranks:
        if store.is_initialized(rank):
            logger.info("Rank index already initialized, skipping", rank=rank)
            summary['skipped'].append(rank)
            continue

        bind_step(rank, 0)
        try:
            logger.info("Downloading initial replay index", rank=rank)
            params = initial_query_params(settings, rank)

            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(settings.BOOTSTRAP_ATTEMPTS),
                retry=retry_if_exception_type(TransientUpstreamError),
                before_sleep=_before_retry,
                reraise=True,
            ):
                with attempt:
                    raw, page = await client.fetch_page(client.api_url, params=params)

            store.initialize_rank(rank, raw)
            summary['initialized'].append(rank)
            logger.info("Stored initial replay index", rank=rank, upstream_count=page.count,
                        items=len(page.items), has_next=bool(page.next))

        except TransientUpstreamError as e:
            logger.error("Failed to download initial replay index", rank=rank, error=str(e))
            summary['failed'].append({'rank': rank, 'error': str(e)})
            if e.throttling:
                limiter.penalize()
        finally:
            clear_step()

    return summary
