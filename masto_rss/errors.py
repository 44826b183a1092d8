"""Error taxonomy for the feed service.

Every error carries the HTTP status it maps to, so the web layer can turn
any of them into a response without knowing where it came from.
"""

from typing import Optional


class MastoRSSError(Exception):
    """Base exception for all feed service errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class RoutingError(MastoRSSError):
    """The request path does not name a known feed."""

    status_code = 400


class ConfigError(MastoRSSError):
    """The service is missing configuration needed to serve a route."""

    status_code = 500


class UpstreamError(MastoRSSError):
    """Base exception for failures talking to a provider."""

    status_code = 502


class UpstreamUnauthorized(UpstreamError):
    """The provider rejected the credential (HTTP 401/403)."""

    status_code = 401


class UpstreamUnavailable(UpstreamError):
    """The provider kept failing after all retries."""

    pass


class UpstreamTimeout(UpstreamError):
    """The pipeline did not finish within the service deadline."""

    pass


class ProtocolMismatch(UpstreamError):
    """The provider answered with a body we do not understand."""

    pass


class NormalizeError(MastoRSSError):
    """A single raw post could not be turned into a feed item."""

    pass


class IncompletePost(NormalizeError):
    """A raw post is missing a required field (id or timestamp)."""

    pass


class RenderError(MastoRSSError):
    """The feed document could not be serialized."""

    status_code = 500
