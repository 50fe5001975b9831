"""TDLib JSON Client Implementation.

Concrete tdlib_client_api.Client backed by the native ``libtdjson`` shared
library, loaded through ctypes. Uses the multi-client interface
(``td_create_client_id`` / ``td_send`` / ``td_receive``) so that updates are
routed by client id.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import json
import logging
import os
from typing import Any

import tdlib_client_api
from tdlib_client_api import Client, ClientClosedError, ClientNotInitializedError, TransportError

logger = logging.getLogger("tdlib_client_impl")

DEFAULT_LOG_VERBOSITY = 2

# ---------------------------------------------------------------------------
# Library loading
# ---------------------------------------------------------------------------


def load_tdjson(library_path: str | None = None) -> ctypes.CDLL:
    """Load ``libtdjson`` and declare the function signatures used by the client.

    Args:
        library_path: Explicit path to the shared library. Falls back to
            ``TDLIB_LIBRARY_PATH`` and then to ``ctypes.util.find_library``.

    Returns:
        The loaded library handle.

    """
    path = library_path or os.environ.get("TDLIB_LIBRARY_PATH") or ctypes.util.find_library("tdjson")
    if not path:
        raise RuntimeError("libtdjson not found; set TDLIB_LIBRARY_PATH.")  # noqa: TRY003, EM101
    try:
        lib = ctypes.CDLL(path)
    except OSError as exc:
        msg = f"Failed to load libtdjson from {path}: {exc}"
        raise RuntimeError(msg) from exc

    lib.td_create_client_id.restype = ctypes.c_int
    lib.td_create_client_id.argtypes = []
    lib.td_send.restype = None
    lib.td_send.argtypes = [ctypes.c_int, ctypes.c_char_p]
    lib.td_receive.restype = ctypes.c_char_p
    lib.td_receive.argtypes = [ctypes.c_double]
    lib.td_execute.restype = ctypes.c_char_p
    lib.td_execute.argtypes = [ctypes.c_char_p]
    return lib


def _to_text(raw: bytes | str) -> str:
    if not isinstance(raw, bytes):
        return str(raw)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        msg = f"TDLib returned invalid UTF-8: {exc}"
        raise TransportError(msg) from exc


# ---------------------------------------------------------------------------
# Client implementation
# ---------------------------------------------------------------------------


class TdjsonClient(Client):
    """Concrete tdlib_client_api.Client over the TDLib JSON interface.

    Attributes:
        _lib: Loaded libtdjson handle (or a compatible stand-in).
        _client_id: Id returned by ``td_create_client_id``.
        _closed: Set once ``close()`` has been requested.

    """

    def __init__(self, lib: Any = None, *, log_verbosity: int = DEFAULT_LOG_VERBOSITY) -> None:  # noqa: ANN401
        """Create a TDLib instance on ``lib``, loading libtdjson when none is given."""
        self._lib = lib if lib is not None else load_tdjson()
        self._closed = False
        self.execute({"@type": "setLogVerbosityLevel", "new_verbosity_level": log_verbosity})
        self._client_id: int = self._lib.td_create_client_id()
        # TDLib only starts producing updates after the first request on a new id.
        self.send({"@type": "getOption", "name": "version"})

    @property
    def client_id(self) -> int:
        return self._client_id

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, request: dict[str, Any]) -> None:
        """Serialize ``request`` and hand it to ``td_send``."""
        lib = self._require_lib()
        if self._closed:
            raise ClientClosedError("TDLib client is closed.")  # noqa: TRY003, EM101
        try:
            payload = json.dumps(request).encode("utf-8")
        except (TypeError, ValueError) as exc:
            msg = f"Request is not JSON serializable: {exc}"
            raise TransportError(msg) from exc
        logger.debug("td_send %s", request.get("@type"))
        lib.td_send(self._client_id, payload)

    def receive(self, timeout: float) -> str | None:
        """Return the next envelope addressed to this client, or None on timeout."""
        lib = self._require_lib()
        raw = lib.td_receive(ctypes.c_double(timeout))
        if not raw:
            return None
        text = _to_text(raw)
        try:
            envelope = json.loads(text)
        except ValueError:
            # Leave malformed envelopes to the decoder.
            return text
        if isinstance(envelope, dict) and envelope.get("@client_id", self._client_id) != self._client_id:
            logger.debug("Dropping update for client %s", envelope.get("@client_id"))
            return None
        return text

    def execute(self, request: dict[str, Any]) -> dict[str, Any] | None:
        """Run ``request`` through ``td_execute`` and decode the answer."""
        lib = self._require_lib()
        raw = lib.td_execute(json.dumps(request).encode("utf-8"))
        if not raw:
            return None
        text = _to_text(raw)
        try:
            result = json.loads(text)
        except ValueError as exc:
            msg = f"td_execute returned invalid JSON: {exc}"
            raise TransportError(msg) from exc
        return result if isinstance(result, dict) else None

    def close(self) -> None:
        """Send TDLib's ``close`` request once; later sends are refused."""
        if self._closed:
            return
        self.send({"@type": "close"})
        self._closed = True

    def _require_lib(self) -> Any:  # noqa: ANN401
        if self._lib is None:
            raise ClientNotInitializedError("libtdjson is not loaded.")  # noqa: TRY003, EM101
        return self._lib


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_client_impl() -> TdjsonClient:
    """Return a new TdjsonClient using env defaults."""
    verbosity = int(os.environ.get("TDLIB_LOG_VERBOSITY", DEFAULT_LOG_VERBOSITY))
    return TdjsonClient(log_verbosity=verbosity)


# ---------------------------------------------------------------------------
# Factory registration
# ---------------------------------------------------------------------------


def register() -> None:
    """Bind the TDLib client factory into tdlib_client_api.get_client."""
    tdlib_client_api.get_client = get_client_impl
