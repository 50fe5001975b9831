"""Public export surface for ``tdlib_client_api``."""

from tdlib_client_api.client import Client, get_client
from tdlib_client_api.errors import ClientClosedError, ClientNotInitializedError, TransportError

__all__ = [
    "Client",
    "ClientClosedError",
    "ClientNotInitializedError",
    "TransportError",
    "get_client",
]
