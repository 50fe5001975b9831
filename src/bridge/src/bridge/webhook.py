"""Discord webhook client used for identity-spoofed delivery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import requests

if TYPE_CHECKING:
    from bridge.models import SpoofedDeliveryRequest

logger = logging.getLogger("bridge.webhook")

DEFAULT_TIMEOUT_SECONDS = 15.0
USER_AGENT = "DiscordBot (https://github.com/telegram-discord-bridge, 1.0)"


class DeliveryError(Exception):
    """Webhook execution failed.

    Attributes:
        status_code: HTTP status returned by Discord, or None for transport errors.
        body: Response body or transport error description.

    """

    def __init__(self, status_code: int | None, body: str) -> None:
        super().__init__(f"Webhook delivery failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class WebhookClient:
    """Execute a Discord webhook with a per-message username and avatar."""

    def __init__(self, url: str, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        if not url:
            raise RuntimeError("DISCORD_WEBHOOK_URL is required.")  # noqa: TRY003, EM101
        self._url = url
        self._timeout_seconds = timeout_seconds

    def deliver(self, request: SpoofedDeliveryRequest) -> None:
        """Post ``request`` to the webhook once.

        Args:
            request: Webhook body; unset fields are omitted.

        Raises:
            DeliveryError: On any non-2xx response or transport failure.

        """
        payload = request.to_payload()
        try:
            response = requests.post(
                self._url,
                json=payload,
                headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise DeliveryError(None, str(exc)) from exc
        if not 200 <= response.status_code < 300:  # noqa: PLR2004
            raise DeliveryError(response.status_code, response.text)
        logger.debug("Webhook delivered as %s", payload.get("username"))
