"""Feed pipeline: fetch → normalize → render, behind the response cache."""

import asyncio
from typing import Optional

import httpx
import structlog

from .cache import ResponseCache
from .errors import UpstreamTimeout
from .feed import FeedDocument, normalize_batch, render
from .providers import client_for
from .providers.models import FeedRequest, MastodonCredential
from .routing import BlueskyConfig, CredentialResolver
from .utils.config import Settings

logger = structlog.get_logger()


def channel_for(request: FeedRequest) -> tuple[str, str]:
    """Channel title and link for a request."""
    credential = request.credential
    if isinstance(credential, MastodonCredential):
        return "Mastodon Timeline", f"{credential.base_url}/"
    return "Bluesky Timeline", "https://bsky.app/"


class FeedPipeline:
    """Build rendered RSS for one FeedRequest."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport

    async def build(self, request: FeedRequest) -> bytes:
        """Run the pipeline under the service deadline."""
        deadline = self.settings.pipeline_deadline_seconds
        try:
            return await asyncio.wait_for(self._build(request), timeout=deadline)
        except asyncio.TimeoutError as e:
            logger.warning(
                "feed_deadline_exceeded",
                provider=request.provider.value,
                deadline_seconds=deadline,
            )
            raise UpstreamTimeout(f"Feed was not ready within {deadline:g}s") from e

    async def _build(self, request: FeedRequest) -> bytes:
        raw_posts: list[dict] = []
        cursor = request.cursor

        async with client_for(request, self.settings, transport=self.transport) as client:
            for page_number in range(self.settings.max_pages):
                page = await client.fetch_timeline(cursor)
                raw_posts.extend(page.posts)
                if not page.next_cursor or not page.posts:
                    break
                cursor = page.next_cursor
                logger.debug(
                    "timeline_next_page",
                    provider=request.provider.value,
                    page=page_number + 2,
                )

        items = normalize_batch(
            request.provider,
            raw_posts,
            include_reshares=self.settings.include_reshares,
        )

        title, link = channel_for(request)
        document = FeedDocument(
            channel_title=title,
            channel_link=link,
            channel_description=title,
            items=items,
        )
        body = render(document)

        logger.info(
            "feed_rendered",
            provider=request.provider.value,
            items=len(document.items),
            bytes=len(body),
        )
        return body


class FeedService:
    """Resolve a path and serve its feed, sharing work through the cache."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.settings = settings
        self.resolver = CredentialResolver(BlueskyConfig.from_settings(settings))
        self.pipeline = FeedPipeline(settings, transport=transport)
        self.cache = cache or ResponseCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )

    async def feed_for_path(self, path: str) -> bytes:
        request = self.resolver.resolve_path(path)
        return await self.feed_for(request)

    async def feed_for(self, request: FeedRequest) -> bytes:
        return await self.cache.get_or_fetch(
            request.cache_key(),
            lambda: self.pipeline.build(request),
        )
