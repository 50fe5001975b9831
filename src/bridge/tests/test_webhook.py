"""Tests for the Discord webhook delivery client."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import requests
from bridge import webhook as webhook_module
from bridge.models import SpoofedDeliveryRequest
from bridge.webhook import USER_AGENT, DeliveryError, WebhookClient

URL = "https://discord.com/api/webhooks/1/token"


def _response(status: int, text: str = "") -> Mock:
    response = Mock()
    response.status_code = status
    response.text = text
    return response


class TestWebhookClient:
    """WebhookClient.deliver."""

    def test_posts_payload_without_nulls(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset fields are omitted and the bot user agent is sent."""
        mock_post = Mock(return_value=_response(204))
        monkeypatch.setattr(webhook_module.requests, "post", mock_post)

        WebhookClient(URL, timeout_seconds=2.5).deliver(SpoofedDeliveryRequest(content="hi", username="Ada"))

        mock_post.assert_called_once_with(
            URL,
            json={"content": "hi", "username": "Ada"},
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
            timeout=2.5,
        )

    def test_non_2xx_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Any non-2xx status is a DeliveryError carrying the status and body."""
        monkeypatch.setattr(webhook_module.requests, "post", Mock(return_value=_response(500, "boom")))
        with pytest.raises(DeliveryError) as excinfo:
            WebhookClient(URL).deliver(SpoofedDeliveryRequest(content="hi"))
        assert excinfo.value.status_code == 500
        assert excinfo.value.body == "boom"

    def test_transport_error_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Connection failures surface as DeliveryError without a status."""
        monkeypatch.setattr(
            webhook_module.requests,
            "post",
            Mock(side_effect=requests.ConnectionError("refused")),
        )
        with pytest.raises(DeliveryError) as excinfo:
            WebhookClient(URL).deliver(SpoofedDeliveryRequest(content="hi"))
        assert excinfo.value.status_code is None

    def test_requires_url(self) -> None:
        """An empty webhook URL is a configuration error."""
        with pytest.raises(RuntimeError, match="DISCORD_WEBHOOK_URL is required"):
            WebhookClient("")
