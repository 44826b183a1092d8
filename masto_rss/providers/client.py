"""Shared HTTP plumbing for timeline providers.

Each provider client owns one ``httpx.AsyncClient`` for the lifetime of a
single feed request. Transient failures (HTTP 429, 5xx, timeouts and
connection errors) are retried with capped exponential backoff; auth
failures are raised immediately.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from ..errors import (
    ProtocolMismatch,
    UpstreamUnauthorized,
    UpstreamUnavailable,
)
from .models import RetryPolicy, TimelinePage

logger = structlog.get_logger()

USER_AGENT = "masto-rss/0.1"


class _TransientFailure(Exception):
    """Internal marker for a retryable upstream failure."""

    def __init__(self, reason: str, retry_after: Optional[float] = None):
        self.reason = reason
        self.retry_after = retry_after
        super().__init__(reason)


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        # HTTP-date form; fall back to our own backoff
        return None


class TimelineClient:
    """Base class for provider clients.

    Usage:
        async with MastodonClient(credential) as client:
            page = await client.fetch_timeline()
    """

    provider: str = "unknown"

    def __init__(
        self,
        limit: int = 40,
        timeout: float = 10.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.limit = limit
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def open(self) -> None:
        """Initialize the underlying HTTP client if not already open."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                transport=self.transport,
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TimelineClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def fetch_timeline(self, cursor: Optional[str] = None) -> TimelinePage:
        """Fetch one page of raw posts, newest first."""
        raise NotImplementedError

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Make an API request, retrying transient failures."""
        attempts = self.retry.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(method, url, params=params, json=json, headers=headers)
            except _TransientFailure as failure:
                if attempt == attempts:
                    logger.warning(
                        "upstream_retries_exhausted",
                        provider=self.provider,
                        url=url,
                        attempts=attempts,
                        reason=failure.reason,
                    )
                    raise UpstreamUnavailable(
                        f"{self.provider} unavailable after {attempts} attempts: {failure.reason}"
                    ) from failure

                delay = self.retry.delay_for(attempt)
                if failure.retry_after is not None:
                    delay = min(max(delay, failure.retry_after), self.retry.max_delay)

                logger.debug(
                    "upstream_retry",
                    provider=self.provider,
                    url=url,
                    attempt=attempt,
                    reason=failure.reason,
                    delay_seconds=delay,
                )
                await self._sleep(delay)

        # range() above always returns or raises
        raise AssertionError("unreachable")

    async def _attempt(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise _TransientFailure(f"timeout ({type(e).__name__})") from e
        except httpx.TransportError as e:
            raise _TransientFailure(f"transport error ({type(e).__name__})") from e

        status = response.status_code
        if status in (401, 403):
            logger.warning(
                "upstream_unauthorized",
                provider=self.provider,
                url=url,
                status_code=status,
            )
            raise UpstreamUnauthorized(f"{self.provider} rejected the credential ({status})")

        if status == 429 or status >= 500:
            raise _TransientFailure(f"HTTP {status}", retry_after=_retry_after_seconds(response))

        if status >= 400:
            logger.warning(
                "upstream_unexpected_status",
                provider=self.provider,
                url=url,
                status_code=status,
                body=response.text[:200],
            )
            raise ProtocolMismatch(f"{self.provider} answered HTTP {status}")

        return response

    def _json(self, response: httpx.Response) -> Any:
        """Decode a JSON body or raise ProtocolMismatch."""
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolMismatch(f"{self.provider} returned a non-JSON body") from e
