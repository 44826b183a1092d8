"""Canonical feed models.

Provider clients return provider-shaped dicts; the normalizer converts them
into ``FeedItem`` so the renderer never has to know where a post came from.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator


class FeedItem(BaseModel):
    """One post, provider-agnostic."""

    id: str  # "<provider>:<upstream post id>"
    title: str
    content_html: str
    author_name: str
    author_handle: str
    permalink: str = ""
    published_at: datetime
    media_urls: list[str] = Field(default_factory=list)
    is_reshare: bool = False

    @field_validator("published_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class FeedDocument(BaseModel):
    """A channel and its items, newest first."""

    channel_title: str
    channel_link: str
    channel_description: str = ""
    items: list[FeedItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _newest_first(self) -> "FeedDocument":
        # sorted() is stable, so equal timestamps keep their upstream order
        self.items = sorted(self.items, key=lambda item: item.published_at, reverse=True)
        return self
