"""Data models for provider credentials and timeline pages."""

import hashlib
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class ProviderVariant(str, Enum):
    """Supported timeline providers."""

    MASTODON = "mastodon"
    BLUESKY = "bluesky"


class MastodonCredential(BaseModel):
    """Instance host plus OAuth access token."""

    provider: Literal[ProviderVariant.MASTODON] = ProviderVariant.MASTODON
    instance: str
    token: str = Field(repr=False)

    @property
    def base_url(self) -> str:
        return f"https://{self.instance}"


class BlueskyCredential(BaseModel):
    """Handle (or email) plus app password."""

    provider: Literal[ProviderVariant.BLUESKY] = ProviderVariant.BLUESKY
    identifier: str
    password: str = Field(repr=False)


ProviderCredential = Union[MastodonCredential, BlueskyCredential]


class FeedRequest(BaseModel):
    """One unit of upstream work: whose timeline, and from where."""

    provider: ProviderVariant
    credential: ProviderCredential = Field(discriminator="provider")
    cursor: Optional[str] = None

    @model_validator(mode="after")
    def _credential_matches_provider(self) -> "FeedRequest":
        if self.credential.provider != self.provider:
            raise ValueError("credential does not belong to provider")
        return self

    def cache_key(self) -> str:
        """Stable key for the rendered feed; secrets only enter hashed."""
        credential = self.credential
        if isinstance(credential, MastodonCredential):
            public, secret = credential.instance.lower(), credential.token
        else:
            public, secret = credential.identifier.lower(), credential.password

        secret_hash = hashlib.sha256(secret.encode("utf-8")).hexdigest()
        material = "\x1f".join(
            [self.provider.value, public, secret_hash, self.cursor or ""]
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()


class TimelinePage(BaseModel):
    """A page of raw provider posts and the cursor for the next one."""

    posts: list[dict[str, Any]]
    next_cursor: Optional[str] = None


class RetryPolicy(BaseModel):
    """Backoff parameters for transient upstream failures."""

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=0.2, ge=0)
    max_delay: float = Field(default=5.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
