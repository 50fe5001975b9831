"""Transport error taxonomy for Telegram clients."""

from __future__ import annotations

__all__ = ["ClientClosedError", "ClientNotInitializedError", "TransportError"]


class TransportError(Exception):
    """Raised when a request cannot be handed to, or read from, the native client."""


class ClientNotInitializedError(TransportError):
    """Raised when the native library has not been loaded."""


class ClientClosedError(TransportError):
    """Raised when the client is used after ``close()``."""
