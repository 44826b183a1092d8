"""Bluesky timeline client over raw XRPC.

Fetching is a two-step exchange: create a session from identifier and app
password, then read ``app.bsky.feed.getTimeline`` with the session's
access JWT. The session lives on this client instance only, so it is never
shared between feed requests.

Docs:
https://docs.bsky.app/docs/api/com-atproto-server-create-session
https://docs.bsky.app/docs/api/app-bsky-feed-get-timeline
"""

from typing import Optional

import structlog

from ..errors import ProtocolMismatch
from .client import TimelineClient
from .models import BlueskyCredential, TimelinePage

logger = structlog.get_logger()

DEFAULT_SERVICE_URL = "https://bsky.social"


class BlueskyClient(TimelineClient):
    """Fetch the authenticated account's following timeline."""

    provider = "bluesky"

    def __init__(
        self,
        credential: BlueskyCredential,
        service_url: str = DEFAULT_SERVICE_URL,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.credential = credential
        self.service_url = service_url.rstrip("/")
        self._access_jwt: Optional[str] = None

    def _xrpc(self, method: str) -> str:
        return f"{self.service_url}/xrpc/{method}"

    async def login(self) -> str:
        """Exchange identifier and password for an access JWT."""
        response = await self._request(
            "POST",
            self._xrpc("com.atproto.server.createSession"),
            json={
                "identifier": self.credential.identifier,
                "password": self.credential.password,
            },
        )
        session = self._json(response)
        access_jwt = session.get("accessJwt") if isinstance(session, dict) else None
        if not isinstance(access_jwt, str) or not access_jwt:
            raise ProtocolMismatch("bluesky createSession returned no accessJwt")

        logger.info("bluesky_session_created", handle=session.get("handle"))
        self._access_jwt = access_jwt
        return access_jwt

    async def fetch_timeline(self, cursor: Optional[str] = None) -> TimelinePage:
        # Step 1: session (once per client instance)
        access_jwt = self._access_jwt or await self.login()

        # Step 2: timeline
        params: dict = {"limit": self.limit}
        if cursor:
            params["cursor"] = cursor

        response = await self._request(
            "GET",
            self._xrpc("app.bsky.feed.getTimeline"),
            params=params,
            headers={"Authorization": f"Bearer {access_jwt}"},
        )
        data = self._json(response)
        feed = data.get("feed") if isinstance(data, dict) else None
        if not isinstance(feed, list):
            raise ProtocolMismatch("bluesky getTimeline returned no feed list")

        posts = [entry for entry in feed if isinstance(entry, dict)]
        next_cursor = data.get("cursor")

        logger.info("bluesky_timeline_fetched", count=len(posts))
        return TimelinePage(
            posts=posts,
            next_cursor=next_cursor if isinstance(next_cursor, str) else None,
        )
