"""Result types exchanged between the sweep sub-steps and the controller."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .pages import Page


class ResolveStatus(str, Enum):
    """Outcome of locating the page for a progress counter."""
    READY = "ready"
    NO_MORE_PAGES = "no_more_pages"
    TRANSIENT_FAILURE = "transient_failure"


class FetchStatus(str, Enum):
    """Outcome of downloading the item under the cursor."""
    SUCCESS = "success"
    CAUGHT_UP = "caught_up"
    UNRESOLVABLE = "unresolvable"
    TRANSIENT_FAILURE = "transient_failure"


class StepOutcome(str, Enum):
    """What one sweep step did for one rank."""
    DOWNLOADED = "downloaded"
    SKIPPED_ITEM = "skipped_item"
    CAUGHT_UP = "caught_up"
    NO_MORE_PAGES = "no_more_pages"
    PAGE_FAILED = "page_failed"
    DOWNLOAD_FAILED = "download_failed"

    @property
    def advances(self) -> bool:
        """Whether the progress counter moves on this outcome."""
        return self in (StepOutcome.DOWNLOADED, StepOutcome.SKIPPED_ITEM)


@dataclass(frozen=True)
class ResolveResult:
    status: ResolveStatus
    page_index: int
    offset: int
    page: Optional[Page] = None
    fetched: bool = False
    detail: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    status: FetchStatus
    url: Optional[str] = None
    size: int = 0
    detail: Optional[str] = None


@dataclass(frozen=True)
class StepResult:
    rank: str
    outcome: StepOutcome
    counter_before: int
    counter_after: int
    detail: Optional[str] = None
