"""Unit tests for the upstream client, error-body detection and next-link rewriting."""

from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from replay_harvester.errors import (
    RateLimitedError,
    TransportError,
    UpstreamPayloadError,
    UpstreamStatusError,
)
from replay_harvester.raw_io.client import (
    check_error_payload,
    initial_query_params,
    pin_max_rank,
)

from conftest import make_page


class TestPinMaxRank:
    """Rewriting upstream next links that lose the max-rank filter."""

    NEXT = ("https://ballchasing.com/api/replays?after=c2VhcmNoLWFmdGVy&count=200"
            "&max-rank=&min-rank=gold-2&playlist=ranked-standard&season=f13")

    def test_empty_max_rank_is_pinned(self):
        fixed = pin_max_rank(self.NEXT, "gold-2")

        params = dict(parse_qsl(urlsplit(fixed).query, keep_blank_values=True))
        assert params["max-rank"] == "gold-2"
        assert fixed == self.NEXT.replace("max-rank=&", "max-rank=gold-2&")

    def test_other_parameters_unchanged(self):
        fixed = pin_max_rank(self.NEXT, "gold-2")

        before = [p for p in parse_qsl(urlsplit(self.NEXT).query, keep_blank_values=True) if p[0] != "max-rank"]
        after = [p for p in parse_qsl(urlsplit(fixed).query, keep_blank_values=True) if p[0] != "max-rank"]
        assert before == after
        assert urlsplit(fixed)[:3] == urlsplit(self.NEXT)[:3]

    def test_missing_max_rank_is_appended(self):
        fixed = pin_max_rank("https://api.test/replays?min-rank=silver-1&count=5", "silver-1")
        assert fixed == "https://api.test/replays?min-rank=silver-1&count=5&max-rank=silver-1"

    def test_wrong_or_duplicate_max_rank_collapses_to_rank(self):
        fixed = pin_max_rank("https://api.test/replays?max-rank=gold-3&count=5&max-rank=", "gold-1")
        assert fixed == "https://api.test/replays?max-rank=gold-1&count=5"

    def test_encoded_values_left_alone(self):
        url = "https://api.test/replays?created-after=2024-01-01T00%3A00%3A00Z&max-rank=&count=5"
        fixed = pin_max_rank(url, "diamond-1")
        assert "created-after=2024-01-01T00%3A00%3A00Z" in fixed
        assert "max-rank=diamond-1" in fixed


class TestCheckErrorPayload:
    """Detection of 200 responses that carry an error."""

    def test_rate_limit_body(self):
        with pytest.raises(RateLimitedError):
            check_error_payload('{"error":"Too many requests"}')

    def test_rate_limit_body_with_whitespace(self):
        with pytest.raises(RateLimitedError):
            check_error_payload('{ "error" : "Too many requests" }')

    def test_other_error_body(self):
        with pytest.raises(UpstreamPayloadError) as exc_info:
            check_error_payload('{"error":"replay not found"}')
        assert not isinstance(exc_info.value, RateLimitedError)

    def test_non_json_body(self):
        with pytest.raises(UpstreamPayloadError):
            check_error_payload('<html>Bad gateway</html>')

    def test_valid_document_is_returned(self):
        assert check_error_payload('{"id": "abc", "blue": {}}') == {"id": "abc", "blue": {}}


def test_initial_query_params(settings):
    params = initial_query_params(settings, "gold-2")
    assert params == {
        "playlist": "ranked-standard",
        "season": "f13",
        "min-rank": "gold-2",
        "max-rank": "gold-2",
        "count": "5",
    }


class TestUpstreamClient:
    """Request handling against a mocked transport."""

    URL = "https://api.test/replays/abc"

    @pytest.mark.asyncio
    async def test_sends_auth_header_and_reports_call(self, client, upstream, limiter):
        upstream.add_json(self.URL, '{"id": "abc"}')

        body = await client.download(self.URL)

        assert body == '{"id": "abc"}'
        assert upstream.requests[0].headers["Authorization"] == "secret-token"
        assert limiter.total_calls == 1
        assert limiter.calls_since_cooldown == 1

    @pytest.mark.asyncio
    async def test_non_200_raises_status_error(self, client, upstream):
        upstream.add_json(self.URL, '{"error": "unauthorized"}', status_code=401)

        with pytest.raises(UpstreamStatusError) as exc_info:
            await client.download(self.URL)
        assert exc_info.value.status_code == 401
        assert exc_info.value.throttling is True

    @pytest.mark.asyncio
    async def test_network_failure_raises_transport_error(self, client, upstream, limiter):
        upstream.add(self.URL, httpx.ConnectError("connection refused"))

        with pytest.raises(TransportError):
            await client.download(self.URL)
        # Attempted calls still count against the budget
        assert limiter.total_calls == 1

    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error(self, client, upstream):
        upstream.add(self.URL, httpx.ReadTimeout("timed out"))

        with pytest.raises(TransportError):
            await client.download(self.URL)

    @pytest.mark.asyncio
    async def test_disguised_rate_limit_raises(self, client, upstream):
        upstream.add_json(self.URL, '{"error":"Too many requests"}')

        with pytest.raises(RateLimitedError):
            await client.download(self.URL)

    @pytest.mark.asyncio
    async def test_fetch_page_parses_listing(self, client, upstream):
        upstream.add_json("https://api.test/replays?page=2", make_page(3, ["https://api.test/replays/a"]))

        raw, page = await client.fetch_page("https://api.test/replays?page=2")

        assert raw == make_page(3, ["https://api.test/replays/a"])
        assert page.count == 3
        assert page.next is None
        assert len(page.items) == 1

    @pytest.mark.asyncio
    async def test_fetch_page_rejects_malformed_listing(self, client, upstream):
        upstream.add_json("https://api.test/replays?page=2", '{"list": []}')

        with pytest.raises(UpstreamPayloadError):
            await client.fetch_page("https://api.test/replays?page=2")

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, client):
        await client.close()
        assert client.client.is_closed is False
        await client.client.aclose()
