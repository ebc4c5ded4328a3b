"""Exception hierarchy for the replay harvester.

Fatal errors stop the process. Transient errors are turned into per-step
results by the cursor resolver and item fetcher and retried on the next sweep
cycle.
"""

from typing import Optional


class HarvestError(Exception):
    """Base class for harvester errors."""


class CredentialError(HarvestError):
    """The API token could not be loaded."""


class CorruptStateError(HarvestError):
    """Persisted index state is missing or unparsable after bootstrap."""

    def __init__(self, message: str, rank: Optional[str] = None):
        super().__init__(message)
        self.rank = rank


class MissingPageError(CorruptStateError):
    """A predecessor page is absent where a successor page is expected."""

    def __init__(self, rank: str, page_index: int):
        super().__init__(f"Index page {page_index} for {rank} is missing", rank=rank)
        self.page_index = page_index


class TransientUpstreamError(HarvestError):
    """Upstream call failed in a way that should be retried later."""

    #: Whether the failure is a sign of throttling or outage.
    throttling = False


class TransportError(TransientUpstreamError):
    """Network level failure (connect, timeout, read)."""

    throttling = True


class UpstreamStatusError(TransientUpstreamError):
    """Upstream answered with a non-200 status."""

    throttling = True

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} for {url}")
        self.status_code = status_code
        self.url = url


class RateLimitedError(TransientUpstreamError):
    """Upstream answered 200 with a rate-limit error body."""

    throttling = True


class UpstreamPayloadError(TransientUpstreamError):
    """Upstream answered 200 with an error body or an unusable payload."""
