"""Tests for the Mastodon and Bluesky timeline clients."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from masto_rss.errors import ProtocolMismatch, UpstreamUnauthorized, UpstreamUnavailable
from masto_rss.providers import BlueskyClient, MastodonClient, client_for
from masto_rss.providers.models import (
    BlueskyCredential,
    FeedRequest,
    MastodonCredential,
    ProviderVariant,
    RetryPolicy,
)
from masto_rss.utils.config import Settings

STATUSES = [
    {"id": "110", "created_at": "2024-03-01T12:00:00Z", "content": "<p>one</p>"},
    {"id": "109", "created_at": "2024-03-01T11:00:00Z", "content": "<p>two</p>"},
]


class Upstream:
    """Scripted upstream: pops one response factory per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def mastodon_client(upstream: Upstream, sleep=None, **kwargs) -> MastodonClient:
    return MastodonClient(
        MastodonCredential(instance="mastodon.social", token="abc123"),
        transport=upstream.transport,
        sleep=sleep or AsyncMock(),
        **kwargs,
    )


def bluesky_client(upstream: Upstream, **kwargs) -> BlueskyClient:
    return BlueskyClient(
        BlueskyCredential(identifier="me.bsky.social", password="app-pass"),
        transport=upstream.transport,
        sleep=AsyncMock(),
        **kwargs,
    )


def session_response(jwt: str = "jwt-1") -> httpx.Response:
    return httpx.Response(200, json={"accessJwt": jwt, "refreshJwt": "r", "handle": "me.bsky.social"})


class TestMastodonClient:
    """Tests for MastodonClient."""

    @pytest.mark.asyncio
    async def test_fetch_home_timeline(self):
        upstream = Upstream(
            httpx.Response(
                200,
                json=STATUSES,
                headers={
                    "Link": '<https://mastodon.social/api/v1/timelines/home?max_id=109>; rel="next", '
                    '<https://mastodon.social/api/v1/timelines/home?min_id=110>; rel="prev"'
                },
            )
        )

        async with mastodon_client(upstream) as client:
            page = await client.fetch_timeline()

        request = upstream.requests[0]
        assert request.url.path == "/api/v1/timelines/home"
        assert request.url.host == "mastodon.social"
        assert request.url.params["limit"] == "40"
        assert request.headers["Authorization"] == "Bearer abc123"
        assert [post["id"] for post in page.posts] == ["110", "109"]
        assert page.next_cursor == "109"

    @pytest.mark.asyncio
    async def test_cursor_is_sent_as_max_id(self):
        upstream = Upstream(httpx.Response(200, json=[]))

        async with mastodon_client(upstream) as client:
            page = await client.fetch_timeline(cursor="109")

        assert upstream.requests[0].url.params["max_id"] == "109"
        assert page.posts == []
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_three_429_then_success(self):
        sleep = AsyncMock()
        upstream = Upstream(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json=STATUSES),
        )

        async with mastodon_client(upstream, sleep=sleep) as client:
            page = await client.fetch_timeline()

        assert len(page.posts) == 2
        assert len(upstream.requests) == 4
        assert [call.args[0] for call in sleep.await_args_list] == [0.2, 0.4, 0.8]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        upstream = Upstream(*[httpx.Response(429) for _ in range(5)])

        async with mastodon_client(upstream) as client:
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_timeline()

        assert len(upstream.requests) == 4

    @pytest.mark.asyncio
    async def test_server_errors_and_connection_errors_are_retried(self):
        upstream = Upstream(
            httpx.Response(503),
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            httpx.Response(200, json=STATUSES),
        )

        async with mastodon_client(upstream) as client:
            page = await client.fetch_timeline()

        assert len(page.posts) == 2

    @pytest.mark.asyncio
    async def test_backoff_is_capped_and_honours_retry_after(self):
        sleep = AsyncMock()
        upstream = Upstream(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(429, headers={"Retry-After": "600"}),
            httpx.Response(200, json=[]),
        )

        async with mastodon_client(
            upstream,
            sleep=sleep,
            retry=RetryPolicy(max_retries=3, base_delay=0.2, max_delay=5.0),
        ) as client:
            await client.fetch_timeline()

        assert [call.args[0] for call in sleep.await_args_list] == [3.0, 5.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_unauthorized_is_not_retried(self, status):
        upstream = Upstream(httpx.Response(status), httpx.Response(200, json=[]))

        async with mastodon_client(upstream) as client:
            with pytest.raises(UpstreamUnauthorized) as exc_info:
                await client.fetch_timeline()

        assert len(upstream.requests) == 1
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, content=b"<html>not json</html>"),
            httpx.Response(200, json={"error": "unexpected"}),
            httpx.Response(404, json={"error": "Record not found"}),
        ],
    )
    async def test_protocol_mismatch(self, response):
        upstream = Upstream(response)

        async with mastodon_client(upstream) as client:
            with pytest.raises(ProtocolMismatch):
                await client.fetch_timeline()

    @pytest.mark.asyncio
    async def test_client_not_initialized_error(self):
        client = mastodon_client(Upstream())

        with pytest.raises(RuntimeError, match="not initialized"):
            await client.fetch_timeline()


class TestBlueskyClient:
    """Tests for BlueskyClient."""

    @pytest.mark.asyncio
    async def test_login_then_timeline(self):
        upstream = Upstream(
            session_response("jwt-1"),
            httpx.Response(200, json={"feed": [{"post": {"uri": "at://x"}}], "cursor": "c2"}),
        )

        async with bluesky_client(upstream, service_url="https://pds.example/") as client:
            page = await client.fetch_timeline()

        login, timeline = upstream.requests
        assert login.method == "POST"
        assert str(login.url) == "https://pds.example/xrpc/com.atproto.server.createSession"
        assert json.loads(login.content) == {"identifier": "me.bsky.social", "password": "app-pass"}
        assert timeline.url.path == "/xrpc/app.bsky.feed.getTimeline"
        assert timeline.headers["Authorization"] == "Bearer jwt-1"
        assert page.posts == [{"post": {"uri": "at://x"}}]
        assert page.next_cursor == "c2"

    @pytest.mark.asyncio
    async def test_session_is_reused_within_one_client_only(self):
        upstream = Upstream(
            session_response("jwt-1"),
            httpx.Response(200, json={"feed": [], "cursor": "c2"}),
            httpx.Response(200, json={"feed": []}),
        )

        async with bluesky_client(upstream) as client:
            await client.fetch_timeline()
            page = await client.fetch_timeline(cursor="c2")

        assert len(upstream.requests) == 3
        assert upstream.requests[2].url.params["cursor"] == "c2"
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        upstream = Upstream(httpx.Response(401, json={"error": "AuthenticationRequired"}))

        async with bluesky_client(upstream) as client:
            with pytest.raises(UpstreamUnauthorized):
                await client.fetch_timeline()

        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_session_without_jwt(self):
        upstream = Upstream(httpx.Response(200, json={"handle": "me.bsky.social"}))

        async with bluesky_client(upstream) as client:
            with pytest.raises(ProtocolMismatch):
                await client.fetch_timeline()

    @pytest.mark.asyncio
    async def test_timeline_without_feed(self):
        upstream = Upstream(session_response(), httpx.Response(200, json={"posts": []}))

        async with bluesky_client(upstream) as client:
            with pytest.raises(ProtocolMismatch):
                await client.fetch_timeline()


class TestClientFor:
    """Tests for provider dispatch."""

    def test_mastodon(self):
        request = FeedRequest(
            provider=ProviderVariant.MASTODON,
            credential=MastodonCredential(instance="mastodon.social", token="t"),
        )

        client = client_for(request, Settings(_env_file=None, timeline_limit=20))

        assert isinstance(client, MastodonClient)
        assert client.limit == 20

    def test_bluesky(self):
        request = FeedRequest(
            provider=ProviderVariant.BLUESKY,
            credential=BlueskyCredential(identifier="me", password="pw"),
        )

        client = client_for(
            request,
            Settings(_env_file=None, bluesky_service_url="https://pds.example", max_retries=1),
        )

        assert isinstance(client, BlueskyClient)
        assert client.service_url == "https://pds.example"
        assert client.retry.max_retries == 1
