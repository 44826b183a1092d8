"""Pick the client for a feed request.

The provider set is closed; adding a variant means adding a branch here.
"""

from typing import Optional

import httpx

from ..utils.config import Settings
from .bluesky import BlueskyClient
from .client import TimelineClient
from .mastodon import MastodonClient
from .models import BlueskyCredential, FeedRequest, MastodonCredential, RetryPolicy


def retry_policy_from(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )


def client_for(
    request: FeedRequest,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TimelineClient:
    """Build an unopened client for ``request``'s provider."""
    common = dict(
        limit=settings.timeline_limit,
        timeout=settings.request_timeout_seconds,
        retry=retry_policy_from(settings),
        transport=transport,
    )

    credential = request.credential
    if isinstance(credential, MastodonCredential):
        return MastodonClient(credential, **common)
    if isinstance(credential, BlueskyCredential):
        return BlueskyClient(
            credential,
            service_url=settings.bluesky_service_url,
            **common,
        )
    raise TypeError(f"Unsupported credential type: {type(credential).__name__}")
