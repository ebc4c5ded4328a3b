"""Test configuration and fixtures for the replay harvester test suite."""

import json
import os
import sys
import pathlib
from typing import Callable, Dict, List, Optional, Union

# Keep a developer's .env or shell settings out of the tests
os.environ.setdefault('LOG_LEVEL', 'WARNING')

# Ensure tests can import from src/
ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import httpx
import pytest

from replay_harvester.config import AppSettings, get_settings
from replay_harvester.raw_io.client import UpstreamClient
from replay_harvester.raw_io.persist import PageStore
from replay_harvester.rate_limit import RateLimiter

API_URL = "https://api.test/replays"

ResponseSpec = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


def make_page(count: int, links: List[Optional[str]], next_url: Optional[str] = None) -> str:
    """Serialize an index page the way the upstream API returns it."""
    items = []
    for i, link in enumerate(links):
        item = {"id": f"replay-{i}", "title": f"Replay {i}"}
        if link is not None:
            item["link"] = link
        items.append(item)
    page = {"count": count, "list": items}
    if next_url is not None:
        page["next"] = next_url
    return json.dumps(page)


def replay_links(prefix: str, n: int, start: int = 0) -> List[str]:
    return [f"https://api.test/replays/{prefix}-{i}" for i in range(start, start + n)]


class FakeClock:
    """Deterministic monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)


class FakeUpstream:
    """Routes mocked upstream requests by exact URL.

    Each route holds a queue of responses; the last one repeats once the
    queue is drained. Exceptions in the queue are raised from the transport.
    """

    def __init__(self):
        self.routes: Dict[str, List[ResponseSpec]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, url: Union[str, httpx.URL], *responses: ResponseSpec) -> None:
        self.routes[str(httpx.URL(url))] = list(responses)

    def add_json(self, url: Union[str, httpx.URL], body: str, status_code: int = 200) -> None:
        self.add(url, httpx.Response(status_code, text=body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(str(request.url))
        if not queue:
            return httpx.Response(404, text='{"error": "not found"}')

        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, httpx.Response):
            # Fresh copy, a response object cannot be sent twice
            return httpx.Response(entry.status_code, headers=entry.headers, content=entry.content)
        return entry(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]

    def calls_to(self, url: str) -> int:
        target = str(httpx.URL(url))
        return sum(1 for r in self.requests if str(r.url) == target)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Every test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(fake_clock) -> RateLimiter:
    return RateLimiter(interval=0.6, hourly_budget=500, cooldown=60.0,
                       clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def store(tmp_path) -> PageStore:
    return PageStore(tmp_path / "replays")


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        INDEX_DIR=tmp_path / "replays",
        TOKEN_FILE=tmp_path / "token",
        API_URL=API_URL,
        PLAYLIST="ranked-standard",
        SEASON="f13",
        PAGE_SIZE=5,
        RANKS=["gold-2"],
    )


@pytest.fixture
def client(upstream, limiter):
    """UpstreamClient wired to the fake upstream."""
    return UpstreamClient(
        token="secret-token",
        limiter=limiter,
        api_url=API_URL,
        timeout=10.0,
        client=upstream.client(),
    )
