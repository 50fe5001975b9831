"""Authorization state machine for the TDLib login handshake.

The flow records the most recent authorization state and, for each state,
sends exactly one request to the native client. Interactive states read a
line through an injectable ``prompt`` so the handshake can run headless in
tests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from bridge.models import (
    AuthState,
    AuthUpdate,
    Closed,
    Closing,
    LoggingOut,
    Ready,
    UnknownAuthState,
    WaitCode,
    WaitEncryptionKey,
    WaitParameters,
    WaitPassword,
    WaitPhoneNumber,
)
from tdlib_client_api import TransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from tdlib_client_api import Client

logger = logging.getLogger("bridge.auth")


class AuthActionError(Exception):
    """Raised when the action for an authorization state cannot be completed."""


class TdlibParameters(BaseModel):
    """Values sent with ``setTdlibParameters``."""

    api_id: int
    api_hash: str
    database_directory: str = "tdlib"
    files_directory: str = "attachments"
    use_test_dc: bool = False
    use_file_database: bool = True
    use_chat_info_database: bool = True
    use_message_database: bool = True
    use_secret_chats: bool = False
    system_language_code: str = "en"
    device_model: str = "Desktop"
    system_version: str = "Linux"
    application_version: str = "1.0"
    enable_storage_optimizer: bool = True
    ignore_file_names: bool = False

    def to_request(self) -> dict[str, Any]:
        return {
            "@type": "setTdlibParameters",
            "database_encryption_key": "",
            **self.model_dump(),
        }


class AuthorizationFlow:
    """Drive TDLib through its authorization states.

    Attributes:
        state: Latest authorization state, ``WaitParameters`` until the first update.
        is_ready: True while the state is ``Ready``.
        is_closed: True once TDLib reported ``Closed``.

    """

    def __init__(
        self,
        client: Client,
        parameters: TdlibParameters,
        *,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ) -> None:
        self._client = client
        self._parameters = parameters
        self._prompt = prompt
        self._output = output
        self.state: AuthState = WaitParameters()

    @property
    def is_ready(self) -> bool:
        return isinstance(self.state, Ready)

    @property
    def is_closed(self) -> bool:
        return isinstance(self.state, Closed)

    def handle(self, event: AuthUpdate) -> dict[str, Any] | None:
        """Record ``event.state`` and perform its single outbound action.

        Args:
            event: Authorization update decoded from TDLib.

        Returns:
            The request that was sent, or None when the state needs no request
            or the action failed.

        """
        self.state = event.state
        try:
            request = self._request_for(event.state)
            if request is not None:
                self._client.send(request)
        except AuthActionError as exc:
            logger.error("Authorization step %s failed: %s", event.state.state, exc)  # noqa: TRY400
            return None
        except TransportError as exc:
            logger.error("Failed to send authorization request for %s: %s", event.state.state, exc)  # noqa: TRY400
            return None
        return request

    # -----------------------------------------------------------------------
    # Per-state actions
    # -----------------------------------------------------------------------

    def _request_for(self, state: AuthState) -> dict[str, Any] | None:  # noqa: PLR0911
        if isinstance(state, WaitParameters):
            logger.info("Sending TDLib parameters")
            return self._parameters.to_request()
        if isinstance(state, WaitEncryptionKey):
            logger.info("TDLib is waiting for encryption key. Sending empty key.")
            return {"@type": "checkDatabaseEncryptionKey", "encryption_key": ""}
        if isinstance(state, WaitPhoneNumber):
            phone = self._ask("Enter your phone number: ")
            return {"@type": "setAuthenticationPhoneNumber", "phone_number": phone}
        if isinstance(state, WaitCode):
            info = state.code_info
            if info is not None:
                if info.type:
                    self._output(f"Code type: {info.type}")
                if info.length is not None:
                    self._output(f"Code length: {info.length}")
                if info.next_type:
                    self._output(f"Next code type: {info.next_type}")
            code = self._ask("Enter the code you received: ")
            return {"@type": "checkAuthenticationCode", "code": code}
        if isinstance(state, WaitPassword):
            if state.password_hint:
                self._output(f"Password hint: {state.password_hint}")
            if state.has_recovery_email is not None:
                self._output(f"Has recovery email: {state.has_recovery_email}")
            if state.recovery_pattern:
                self._output(f"Recovery email pattern: {state.recovery_pattern}")
            password = self._ask("Enter your 2FA password: ")
            return {"@type": "checkAuthenticationPassword", "password": password}
        if isinstance(state, Ready):
            logger.info("Telegram client authorized!")
        elif isinstance(state, LoggingOut):
            logger.info("Telegram client logging out...")
        elif isinstance(state, Closing):
            logger.info("Telegram client closing...")
        elif isinstance(state, Closed):
            logger.info("Telegram client closed.")
        elif isinstance(state, UnknownAuthState):
            logger.warning("Unknown authorization state: %s", state.raw_tag)
        return None

    def _ask(self, message: str) -> str:
        try:
            return self._prompt(message).strip()
        except (EOFError, OSError) as exc:
            msg = f"failed to read input: {exc!r}"
            raise AuthActionError(msg) from exc
