"""
Tests for the TETR.IO API client.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from uc_helper.core.enums import RankTier
from uc_helper.core.tetrio.client import (
    TetrioAPIClient,
    looks_like_account_id,
    normalize_username,
)
from uc_helper.core.tetrio.errors import (
    BadRequestError,
    InvalidResponseError,
    NotFoundError,
    RateLimitError,
    TransientError,
)

FETCHED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
ACCOUNT_ID = "5e4979d4fad3ca55f6512458"


def user_payload(**league_overrides):
    league = {
        "gamesplayed": 412,
        "gameswon": 233,
        "rating": 15234.51,
        "rank": "s",
        "glicko": 2103.7,
        "rd": 61.3,
        "apm": 61.2,
        "pps": 1.84,
        "vs": 128.9,
    }
    league.update(league_overrides)
    return {
        "success": True,
        "cache": {"status": "hit", "cached_at": 1, "cached_until": 2},
        "data": {"user": {"_id": ACCOUNT_ID, "username": "foo", "league": league}},
    }


class Recorder:
    """MockTransport handler replaying queued responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(handler, max_retries=2) -> TetrioAPIClient:
    return TetrioAPIClient(
        base_url="https://ch.tetr.io/api",
        session_id="test-session",
        timeout_seconds=2.0,
        max_retries=max_retries,
        backoff_base_seconds=0.0,
        max_retry_wait_seconds=30.0,
        transport=httpx.MockTransport(handler),
        clock=lambda: FETCHED_AT,
    )


@pytest.fixture
def sleeps(monkeypatch):
    """Record backoff delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(TetrioAPIClient, "_sleep", staticmethod(fake_sleep))
    return delays


class TestHelpers:
    def test_normalize_username(self):
        assert normalize_username("  FooBar ") == "foobar"

    def test_looks_like_account_id(self):
        assert looks_like_account_id(ACCOUNT_ID)
        assert looks_like_account_id(ACCOUNT_ID.upper())
        assert not looks_like_account_id("foo")
        assert not looks_like_account_id(ACCOUNT_ID + "0")


class TestTetrioAPIClient:
    """Test cases for TetrioAPIClient."""

    @pytest.mark.asyncio
    async def test_fetch_by_username_success(self, sleeps):
        """A 200 response becomes a typed snapshot."""
        recorder = Recorder(httpx.Response(200, json=user_payload()))

        async with make_client(recorder) as client:
            snapshot = await client.fetch_by_username("  Foo ")

        assert snapshot.account_id == ACCOUNT_ID
        assert snapshot.username == "foo"
        assert snapshot.stats.rating == 15234.51
        assert snapshot.stats.rating_deviation == 61.3
        assert snapshot.stats.rank_tier == RankTier.S
        assert snapshot.stats.fetched_at == FETCHED_AT

        request = recorder.requests[0]
        assert request.url.path == "/api/users/foo"
        assert request.headers["X-Session-ID"] == "test-session"
        assert "uc-helper" in request.headers["User-Agent"]
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_fetch_by_account_id(self, sleeps):
        recorder = Recorder(httpx.Response(200, json=user_payload()))

        async with make_client(recorder) as client:
            snapshot = await client.fetch_by_account_id(ACCOUNT_ID.upper())

        assert snapshot.account_id == ACCOUNT_ID
        assert recorder.requests[0].url.path == f"/api/users/{ACCOUNT_ID}"

    @pytest.mark.asyncio
    async def test_malformed_account_id_makes_no_request(self):
        recorder = Recorder()

        async with make_client(recorder) as client:
            with pytest.raises(BadRequestError):
                await client.fetch_by_account_id("not-an-id")

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_invalid_username_makes_no_request(self):
        recorder = Recorder()

        async with make_client(recorder) as client:
            with pytest.raises(BadRequestError):
                await client.fetch_by_username("../admin")

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_404_is_not_found_and_not_retried(self, sleeps):
        recorder = Recorder(httpx.Response(404, json={"success": False}))

        async with make_client(recorder) as client:
            with pytest.raises(NotFoundError):
                await client.fetch_by_username("ghost")

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_is_not_found(self, sleeps):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "success": False,
                    "error": "No such user! | Either you mistyped something, or the account no longer exists.",
                },
            )
        )

        async with make_client(recorder) as client:
            with pytest.raises(NotFoundError):
                await client.fetch_by_username("ghost")

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_server_errors_retried_then_succeed(self, sleeps):
        recorder = Recorder(
            httpx.Response(502),
            httpx.Response(503),
            httpx.Response(200, json=user_payload()),
        )

        async with make_client(recorder, max_retries=2) as client:
            snapshot = await client.fetch_by_username("foo")

        assert snapshot.username == "foo"
        assert len(recorder.requests) == 3
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self, sleeps):
        recorder = Recorder(*[httpx.Response(500) for _ in range(3)])

        async with make_client(recorder, max_retries=2) as client:
            with pytest.raises(TransientError) as exc_info:
                await client.fetch_by_username("foo")

        assert exc_info.value.status_code == 500
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, sleeps):
        recorder = Recorder(*[httpx.Response(500) for _ in range(4)])
        client = make_client(recorder, max_retries=3)
        client.backoff_base_seconds = 0.5

        async with client:
            with pytest.raises(TransientError):
                await client.fetch_by_username("foo")

        assert sleeps == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, sleeps):
        recorder = Recorder(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(200, json=user_payload()),
        )

        async with make_client(recorder) as client:
            await client.fetch_by_username("foo")

        assert sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_retry_after_beyond_limit_fails_at_once(self, sleeps):
        recorder = Recorder(
            httpx.Response(429, headers={"Retry-After": "86400"}),
            httpx.Response(200, json=user_payload()),
        )

        async with make_client(recorder) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.fetch_by_username("foo")

        assert exc_info.value.retry_after == 86400.0
        assert sleeps == []
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_backoff_capped_at_retry_wait_limit(self, sleeps):
        recorder = Recorder(*[httpx.Response(503) for _ in range(4)])
        client = make_client(recorder, max_retries=3)
        client.backoff_base_seconds = 20.0

        async with client:
            with pytest.raises(TransientError):
                await client.fetch_by_username("foo")

        assert sleeps == [20.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, sleeps):
        recorder = Recorder(
            *[httpx.Response(429, headers={"Retry-After": "1"}) for _ in range(3)]
        )

        async with make_client(recorder, max_retries=2) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.fetch_by_username("foo")

        assert isinstance(exc_info.value, TransientError)
        assert exc_info.value.retry_after == 1.0

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self, sleeps):
        recorder = Recorder(
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("timed out"),
            httpx.Response(200, json=user_payload()),
        )

        async with make_client(recorder) as client:
            snapshot = await client.fetch_by_username("foo")

        assert snapshot.account_id == ACCOUNT_ID
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self, sleeps):
        recorder = Recorder(*[httpx.ConnectError("down") for _ in range(3)])

        async with make_client(recorder, max_retries=2) as client:
            with pytest.raises(TransientError):
                await client.fetch_by_username("foo")

        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_forbidden_is_transient_without_retry(self, sleeps):
        recorder = Recorder(httpx.Response(403))

        async with make_client(recorder) as client:
            with pytest.raises(TransientError) as exc_info:
                await client.fetch_by_username("foo")

        assert exc_info.value.status_code == 403
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "override",
        [
            {"apm": -1.0},
            {"rating": 25000.5},
            {"rd": -3},
            {"gamesplayed": 2**63},
        ],
    )
    async def test_out_of_range_values_rejected(self, sleeps, override):
        recorder = Recorder(httpx.Response(200, json=user_payload(**override)))

        async with make_client(recorder) as client:
            with pytest.raises(InvalidResponseError) as exc_info:
                await client.fetch_by_username("foo")

        assert exc_info.value.message.startswith("Rejected user payload")
        assert exc_info.value.response_data["errors"]

    @pytest.mark.asyncio
    async def test_non_finite_values_rejected(self, sleeps):
        body = json.dumps(user_payload()).replace("61.2", "NaN")
        recorder = Recorder(
            httpx.Response(
                200, content=body, headers={"Content-Type": "application/json"}
            )
        )

        async with make_client(recorder) as client:
            with pytest.raises(InvalidResponseError):
                await client.fetch_by_username("foo")

    @pytest.mark.asyncio
    async def test_non_json_body_rejected(self, sleeps):
        recorder = Recorder(httpx.Response(200, content=b"<html>oops</html>"))

        async with make_client(recorder) as client:
            with pytest.raises(InvalidResponseError):
                await client.fetch_by_username("foo")

    @pytest.mark.asyncio
    async def test_unranked_user(self, sleeps):
        recorder = Recorder(
            httpx.Response(
                200,
                json=user_payload(
                    rating=-1, rank="z", glicko=None, rd=None, apm=None, pps=None, vs=None
                ),
            )
        )

        async with make_client(recorder) as client:
            snapshot = await client.fetch_by_username("foo")

        assert snapshot.stats.rank_tier == RankTier.UNRANKED
        assert snapshot.stats.rating == -1
        assert snapshot.stats.apm is None

    @pytest.mark.asyncio
    async def test_close_releases_session(self):
        client = make_client(Recorder())
        await client.start_session()
        assert not client.session.is_closed

        await client.close()

        assert client.session.is_closed
