"""Timeline provider clients (Mastodon, Bluesky)."""

from .bluesky import BlueskyClient
from .client import TimelineClient
from .dispatch import client_for
from .mastodon import MastodonClient
from .models import (
    BlueskyCredential,
    FeedRequest,
    MastodonCredential,
    ProviderVariant,
    RetryPolicy,
    TimelinePage,
)

__all__ = [
    "TimelineClient",
    "MastodonClient",
    "BlueskyClient",
    "client_for",
    "ProviderVariant",
    "MastodonCredential",
    "BlueskyCredential",
    "FeedRequest",
    "RetryPolicy",
    "TimelinePage",
]
