from __future__ import annotations

from typing import Optional


class RSSRelayError(Exception):
    """Base class for errors raised by rss_relay."""


class ConfigError(RSSRelayError):
    """Raised when settings or source descriptors are invalid."""


class FetchError(RSSRelayError):
    """Raised when a feed URL cannot be fetched (network, HTTP status, timeout)."""

    def __init__(self, url: str, cause: object) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch feed: {url} ({cause})")


class ParseError(RSSRelayError):
    """Raised when fetched bytes cannot be parsed as a feed of the declared dialect."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"Invalid feed: {url} ({message})")


class ValidationError(RSSRelayError):
    """Raised when a feed item lacks the fields required to identify it."""


class PersistenceError(RSSRelayError):
    """Raised when a batch of news items cannot be written to storage."""


class DeliveryError(RSSRelayError):
    """Raised when a notification cannot be delivered."""

    def __init__(self, message: str, *, details: str = "") -> None:
        self.details = details
        super().__init__(message)


class RateLimitExhausted(DeliveryError):
    """Raised when the destination keeps rate limiting after the last retry."""


class RateLimitSignal(RSSRelayError):
    """
    Raised by a transport when the destination asks us to slow down.

    Not a delivery failure by itself: the notifier waits ``retry_after`` seconds
    and tries again.
    """

    def __init__(self, retry_after: float, message: Optional[str] = None) -> None:
        self.retry_after = max(0.0, float(retry_after))
        super().__init__(message or f"Rate limited, retry after {self.retry_after:.1f}s")
