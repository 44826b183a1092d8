"""HTTP surface for the feed service.

Routes:
    GET /health               liveness probe
    GET /bluesky              Bluesky feed for the configured account
    GET /<instance>/<token>   Mastodon home timeline feed
"""

from __future__ import annotations

import hashlib
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from .errors import MastoRSSError
from .pipeline import FeedService
from .utils.config import Settings, get_settings

logger = structlog.get_logger()

RSS_CONTENT_TYPE = "application/rss+xml; charset=utf-8"


def etag_for(body: bytes) -> str:
    return f'"{hashlib.sha256(body).hexdigest()[:32]}"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Weak comparison of an If-None-Match header against ``etag``."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*" or candidate.removeprefix("W/") == etag:
            return True
    return False


class FeedServer:
    """FastAPI application serving timelines as RSS."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.service = FeedService(self.settings, transport=transport)
        self.app = FastAPI(title="masto-rss", docs_url=None, redoc_url=None, openapi_url=None)
        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self):
        """Map the error taxonomy onto short plain-text responses."""

        @self.app.exception_handler(MastoRSSError)
        async def feed_error_handler(request: Request, exc: MastoRSSError):
            logger.warning(
                "feed_request_failed",
                error=type(exc).__name__,
                status_code=exc.status_code,
                message=exc.message,
            )
            return PlainTextResponse(exc.message, status_code=exc.status_code)

        @self.app.exception_handler(Exception)
        async def unexpected_error_handler(request: Request, exc: Exception):
            logger.error("feed_request_crashed", error=str(exc), exc_info=exc)
            return PlainTextResponse(
                "An internal error occurred. Please try again later.",
                status_code=500,
            )

    def _setup_routes(self):
        """Setup feed routes."""

        @self.app.get("/health")
        async def health_check():
            return {"status": "ok"}

        @self.app.get("/{path:path}")
        async def feed(path: str, request: Request):
            body = await self.service.feed_for_path(path)

            etag = etag_for(body)
            headers = {"ETag": etag}
            if self.settings.cache_ttl_seconds > 0:
                headers["Cache-Control"] = f"max-age={int(self.settings.cache_ttl_seconds)}"

            if etag_matches(request.headers.get("If-None-Match"), etag):
                return Response(status_code=304, headers=headers)

            return Response(content=body, media_type=RSS_CONTENT_TYPE, headers=headers)

    async def start(self):
        """Start the server inside a running event loop."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)

        logger.info("feed_server_starting", host=self.settings.host, port=self.settings.port)
        await server.serve()

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        logger.info("feed_server_starting", host=self.settings.host, port=self.settings.port)
        uvicorn.run(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Application factory (``uvicorn masto_rss.server:create_app --factory``)."""
    return FeedServer(settings=settings, transport=transport).app
