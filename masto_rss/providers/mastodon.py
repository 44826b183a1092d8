"""Mastodon home-timeline client.

API documentation:
https://docs.joinmastodon.org/methods/timelines/#home

Pagination uses the ``Link`` response header; the ``max_id`` of the
``rel="next"`` link is the cursor for the following (older) page.
"""

from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx
import structlog

from ..errors import ProtocolMismatch
from .client import TimelineClient
from .models import MastodonCredential, TimelinePage

logger = structlog.get_logger()


def _next_cursor(response: httpx.Response) -> Optional[str]:
    next_url = response.links.get("next", {}).get("url")
    if not next_url:
        return None
    max_ids = parse_qs(urlparse(next_url).query).get("max_id")
    return max_ids[0] if max_ids else None


class MastodonClient(TimelineClient):
    """Fetch the authenticated account's home timeline."""

    provider = "mastodon"

    def __init__(self, credential: MastodonCredential, **kwargs):
        super().__init__(**kwargs)
        self.credential = credential

    async def fetch_timeline(self, cursor: Optional[str] = None) -> TimelinePage:
        params: dict = {"limit": self.limit}
        if cursor:
            params["max_id"] = cursor

        response = await self._request(
            "GET",
            f"{self.credential.base_url}/api/v1/timelines/home",
            params=params,
            headers={"Authorization": f"Bearer {self.credential.token}"},
        )

        statuses = self._json(response)
        if not isinstance(statuses, list):
            raise ProtocolMismatch("mastodon home timeline is not a list of statuses")

        posts = [status for status in statuses if isinstance(status, dict)]
        if len(posts) != len(statuses):
            logger.warning(
                "mastodon_non_object_statuses",
                instance=self.credential.instance,
                dropped=len(statuses) - len(posts),
            )

        logger.info(
            "mastodon_timeline_fetched",
            instance=self.credential.instance,
            count=len(posts),
        )
        return TimelinePage(posts=posts, next_cursor=_next_cursor(response))
