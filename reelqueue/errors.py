from __future__ import annotations


class ReelqueueError(Exception):
    """Base exception for reelqueue errors."""


class BrokerError(ReelqueueError):
    """Failure to reach or set up the message broker."""


class BrokerUnconfigured(BrokerError):
    """No broker URL is configured for this environment."""


class BrokerTimeout(BrokerError):
    """Connecting to the broker took longer than the configured timeout."""

    def __init__(self, timeout_ms: int, url: str | None = None) -> None:
        self.timeout_ms = timeout_ms
        self.url = url
        target = f" ({url})" if url else ""
        super().__init__(f"Timed out connecting to broker{target} after {timeout_ms}ms")


class BrokerConnectionError(BrokerError):
    """Any other failure while establishing the broker connection."""


class QueueError(ReelqueueError):
    """General queue-related issues."""


class AuthError(ReelqueueError):
    """Base class for authorization gate rejections."""


class Unauthenticated(AuthError):
    """No usable bearer credential was presented."""


class InvalidCredential(AuthError):
    """The bearer credential failed verification or has expired."""


class ApplyFailure(ReelqueueError):
    """A drained message could not be applied to the store."""


class UnknownOperation(ApplyFailure):
    """A drained message carries an operation the store cannot apply."""


class StoreError(ReelqueueError):
    """Any failure during a document store write."""


class CatalogValidationError(ReelqueueError):
    """A catalog payload is missing required fields or has bad values."""
