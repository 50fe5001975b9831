"""Abstract interfaces for Telegram (TDLib JSON) clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

__all__ = ["Client", "get_client"]


class Client(ABC):
    """The contract for the native update-polling client.

    Requests and responses are TDLib JSON objects carrying an ``@type``
    discriminator. Implementations own a single TDLib instance.
    """

    @abstractmethod
    def send(self, request: dict[str, Any]) -> None:
        """Queue an asynchronous request.

        Args:
            request: TDLib request object, e.g. ``{"@type": "getMe"}``.

        Raises:
            TransportError: If the request cannot be handed to the native client.

        """
        raise NotImplementedError

    @abstractmethod
    def receive(self, timeout: float) -> str | None:
        """Wait up to ``timeout`` seconds for the next update or response.

        Args:
            timeout: Maximum wait in seconds.

        Returns:
            Raw JSON envelope, or None when nothing arrived in time.

        """
        raise NotImplementedError

    @abstractmethod
    def execute(self, request: dict[str, Any]) -> dict[str, Any] | None:
        """Run a synchronous request that TDLib can answer without the network.

        Args:
            request: TDLib request object, e.g. ``parseTextEntities``.

        Returns:
            Decoded response object, or None when TDLib returned nothing.

        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Ask TDLib to close the instance. Further sends raise ``ClientClosedError``."""
        raise NotImplementedError


def get_client() -> Client:
    """Return the default Telegram client implementation.

    Returns:
        Client implementation.

    """
    raise NotImplementedError
