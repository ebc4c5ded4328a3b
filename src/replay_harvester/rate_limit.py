"""Interval rate limiter with an hourly budget and a failure cooldown."""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

from .config import AppSettings
from .harvest_logging import get_logger

logger = get_logger(__name__)

HOUR_S = 3600.0


class RateLimiter:
    """Paces upstream calls for a single sequential worker.

    ``acquire()`` waits for the next interval tick, for any pending cooldown
    and for room in the rolling hourly call window, then grants one call.
    ``acquire_call()`` runs before every request actually sent: it uses the
    outstanding grant if there is one and acquires a fresh tick otherwise, so
    two requests are never closer than one interval. Ticks missed by a slow
    consumer are dropped rather than replayed, so there is never a burst of
    catch-up calls.
    """

    def __init__(
        self,
        interval: float = 0.6,
        hourly_budget: int = 500,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize rate limiter.

        Args:
            interval: Minimum seconds between two ticks
            hourly_budget: Maximum calls recorded in any rolling hour
            cooldown: Seconds to wait after ``penalize()``
            clock: Monotonic time source
            sleep: Coroutine used to wait
        """
        if hourly_budget < 1:
            raise ValueError("hourly_budget must allow at least one call")

        self.interval = interval
        self.hourly_budget = hourly_budget
        self.cooldown = cooldown
        self._clock = clock
        self._sleep = sleep

        self._next_tick: Optional[float] = None
        self._penalized = False
        self._granted = False
        self._window: Deque[float] = deque()

        self.calls_since_cooldown = 0
        self.total_calls = 0

    @classmethod
    def from_settings(cls, settings: AppSettings, **kwargs) -> "RateLimiter":
        """Create limiter from application settings."""
        return cls(
            interval=settings.MIN_INTERVAL_S,
            hourly_budget=settings.HOURLY_CALL_BUDGET,
            cooldown=settings.COOLDOWN_S,
            **kwargs
        )

    @property
    def penalized(self) -> bool:
        """Whether the next acquire will cool down first."""
        return self._penalized

    def calls_in_window(self) -> int:
        """Number of calls recorded in the last hour."""
        self._expire(self._clock())
        return len(self._window)

    async def acquire(self) -> None:
        """Wait for the next tick and grant one upstream call."""
        if self._penalized:
            logger.warning("Got an error, waiting before continuing",
                           cooldown_s=self.cooldown,
                           calls_since_cooldown=self.calls_since_cooldown)
            await self._sleep(self.cooldown)
            self._penalized = False
            self.calls_since_cooldown = 0

        now = self._clock()
        if self._next_tick is not None and now < self._next_tick:
            await self._sleep(self._next_tick - now)
            now = max(self._clock(), self._next_tick)

        self._expire(now)
        if len(self._window) >= self.hourly_budget:
            # Wait for the oldest calls to age out of the window
            release_at = self._window[len(self._window) - self.hourly_budget] + HOUR_S
            wait_time = release_at - now
            logger.info("Hourly call budget reached, waiting",
                        wait_s=round(wait_time, 1),
                        calls_in_window=len(self._window))
            await self._sleep(wait_time)
            now = max(self._clock(), release_at)
            self._expire(now)

        # Schedule from the actual acquisition time so missed ticks coalesce
        self._next_tick = now + self.interval
        self._granted = True

    async def acquire_call(self) -> None:
        """Wait until one request may be sent, then record it."""
        if not self._granted or self._penalized:
            await self.acquire()
        self._granted = False

        now = self._clock()
        if self._next_tick is None or self._next_tick < now + self.interval:
            self._next_tick = now + self.interval
        self.note_call()

    def note_call(self) -> None:
        """Record one upstream request."""
        now = self._clock()
        self._expire(now)
        self._window.append(now)
        self.calls_since_cooldown += 1
        self.total_calls += 1

    def penalize(self) -> None:
        """Force the next ``acquire()`` to wait out the cooldown first."""
        if not self._penalized:
            logger.debug("Rate limiter penalized", cooldown_s=self.cooldown)
        self._penalized = True

    def _expire(self, now: float) -> None:
        while self._window and self._window[0] <= now - HOUR_S:
            self._window.popleft()
