"""Upstream replay API client with auth, timeouts and disguised-error detection."""

import json
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
from pydantic import ValidationError

from ..config import AppSettings
from ..errors import (
    RateLimitedError,
    TransportError,
    UpstreamPayloadError,
    UpstreamStatusError,
)
from ..harvest_logging import get_logger
from ..models.pages import Page
from ..rate_limit import RateLimiter

logger = get_logger(__name__)

RATE_LIMIT_MESSAGE = "too many requests"


def check_error_payload(body: str) -> Any:
    """Parse a 200 response body and reject the ones that encode an error.

    Returns:
        The decoded JSON document

    Raises:
        RateLimitedError: Body is ``{"error": "Too many requests"}``
        UpstreamPayloadError: Body carries another error or is not JSON
    """
    try:
        document = json.loads(body)
    except ValueError as e:
        raise UpstreamPayloadError(f"Response body is not valid JSON: {e}") from e

    if isinstance(document, dict) and "error" in document:
        message = str(document.get("error"))
        if message.strip().lower() == RATE_LIMIT_MESSAGE:
            raise RateLimitedError(f"Upstream rate limit: {message}")
        raise UpstreamPayloadError(f"Upstream error payload: {message}")

    return document


def pin_max_rank(url: str, rank: str) -> str:
    """Pin the ``max-rank`` query parameter of ``url`` to ``rank``.

    Upstream ``next`` links come back with an empty ``max-rank=``, which widens
    the query to every rank above ``min-rank``. Only that parameter is touched;
    every other query segment is kept byte-for-byte.
    """
    parts = urlsplit(url)
    segments = parts.query.split('&') if parts.query else []
    pinned = f"max-rank={quote(rank, safe='')}"

    rewritten = []
    replaced = False
    for segment in segments:
        key = segment.split('=', 1)[0]
        if key == 'max-rank':
            if not replaced:
                rewritten.append(pinned)
                replaced = True
            continue
        rewritten.append(segment)

    if not replaced:
        rewritten.append(pinned)

    return urlunsplit(parts._replace(query='&'.join(rewritten)))


def initial_query_params(settings: AppSettings, rank: str) -> Dict[str, str]:
    """Query params for the first index page of ``rank``."""
    return {
        'playlist': settings.PLAYLIST,
        'season': settings.SEASON,
        'min-rank': rank,
        'max-rank': rank,
        'count': str(settings.PAGE_SIZE),
    }


class UpstreamClient:
    """Async client for the replay listing and download endpoints."""

    def __init__(
        self,
        token: str,
        limiter: RateLimiter,
        api_url: str = "https://ballchasing.com/api/replays",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize upstream client.

        Args:
            token: API token sent verbatim in the Authorization header
            limiter: Rate limiter every request waits on
            api_url: Replay listing endpoint
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client (owned by the caller)
        """
        self.api_url = api_url
        self.timeout = timeout
        self._limiter = limiter
        self._headers = {'Authorization': token, 'Accept': 'application/json'}
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        token: str,
        limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "UpstreamClient":
        return cls(
            token=token,
            limiter=limiter,
            api_url=settings.API_URL,
            timeout=settings.TIMEOUT_S,
            client=client
        )

    async def get_text(self, url: str, params: Optional[Dict[str, str]] = None) -> str:
        """GET ``url`` and return a body that passed the error-payload check.

        Raises:
            TransportError: Network failure or timeout
            UpstreamStatusError: Non-200 status
            RateLimitedError: 200 with a rate-limit error body
            UpstreamPayloadError: 200 with another error body or non-JSON body
        """
        await self._limiter.acquire_call()
        logger.debug("Making upstream request", url=url, params=params)

        try:
            response = await self.client.get(url, params=params, headers=self._headers, timeout=self.timeout)
            body = response.text
        except httpx.HTTPError as e:
            logger.warning("Upstream request error", url=url, error=str(e))
            raise TransportError(f"Request to {url} failed: {e}") from e

        if response.status_code != 200:
            logger.warning("Upstream error response",
                           url=url,
                           status_code=response.status_code,
                           response_text=body[:500])
            raise UpstreamStatusError(response.status_code, url)

        check_error_payload(body)
        return body

    async def fetch_page(self, url: str, params: Optional[Dict[str, str]] = None) -> Tuple[str, Page]:
        """Fetch an index page and validate its shape.

        Returns:
            The raw body (persisted verbatim) and the parsed page
        """
        body = await self.get_text(url, params=params)
        try:
            page = Page.model_validate_json(body)
        except ValidationError as e:
            raise UpstreamPayloadError(f"Malformed index page from {url}: {e.error_count()} errors") from e
        return body, page

    async def download(self, url: str) -> str:
        """Download one replay document."""
        return await self.get_text(url)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()
            logger.debug("Upstream client closed")

    async def __aenter__(self) -> "UpstreamClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
