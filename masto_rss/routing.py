"""Turn a request path into a FeedRequest.

Routes:
    /<instance>/<token>   Mastodon home timeline
    /bluesky              Bluesky timeline of the configured account
"""

import re
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from .errors import ConfigError, RoutingError
from .providers.models import (
    BlueskyCredential,
    FeedRequest,
    MastodonCredential,
    ProviderVariant,
)
from .utils.config import Settings

BLUESKY_SEGMENT = "bluesky"

_INSTANCE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?(?::\d{1,5})?$")


class BlueskyConfig(BaseModel):
    """Service-wide Bluesky account, from BLUESKY_IDENTIFIER / BLUESKY_PASSWORD."""

    identifier: str = ""
    password: str = Field(default="", repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlueskyConfig":
        return cls(identifier=settings.bluesky_identifier, password=settings.bluesky_password)


def split_path(path: str) -> list[str]:
    stripped = path.strip("/")
    return stripped.split("/") if stripped else []


class CredentialResolver:
    """Resolve path segments to a FeedRequest. Pure; no I/O."""

    def __init__(self, bluesky: Optional[BlueskyConfig] = None):
        self.bluesky = bluesky or BlueskyConfig()

    def resolve(self, segments: Sequence[str]) -> FeedRequest:
        if len(segments) == 1 and segments[0] == BLUESKY_SEGMENT:
            return self._bluesky()
        if len(segments) == 2:
            return self._mastodon(*segments)
        raise RoutingError("Unrecognized feed path. Use /<instance>/<token> or /bluesky.")

    def resolve_path(self, path: str) -> FeedRequest:
        return self.resolve(split_path(path))

    def _mastodon(self, instance: str, token: str) -> FeedRequest:
        if not _INSTANCE.match(instance):
            raise RoutingError("Malformed Mastodon instance in path.")
        if not token.strip() or any(ch.isspace() for ch in token):
            raise RoutingError("Malformed Mastodon access token in path.")

        return FeedRequest(
            provider=ProviderVariant.MASTODON,
            credential=MastodonCredential(instance=instance.lower(), token=token),
        )

    def _bluesky(self) -> FeedRequest:
        if not self.bluesky.identifier or not self.bluesky.password:
            raise ConfigError("Bluesky feed is not configured on this server.")

        return FeedRequest(
            provider=ProviderVariant.BLUESKY,
            credential=BlueskyCredential(
                identifier=self.bluesky.identifier,
                password=self.bluesky.password,
            ),
        )
