"""Tests for the bridge orchestrator."""

from __future__ import annotations

import json
import threading
from typing import Any
from unittest.mock import Mock

import pytest
from bridge.config import BridgeConfig
from bridge.main import Bridge
from bridge.models import AuthUpdate, Ready, UserInfo
from bridge.webhook import DeliveryError
from discord_listener import DiscordMessage, DiscordSendError

from tdlib_client_api import Client, ClientClosedError

CHAT_ID = -1001
CHANNEL_ID = 222


class _FakeTdClient(Client):
    """In-memory TDLib client fed with canned envelopes."""

    def __init__(self, envelopes: list[str] | None = None) -> None:
        self.incoming = list(envelopes or [])
        self.sent: list[dict[str, Any]] = []
        self.executed: list[dict[str, Any]] = []
        self.execute_result: dict[str, Any] | None = None
        self.closed = False

    def send(self, request: dict[str, Any]) -> None:
        if self.closed:
            raise ClientClosedError("closed")
        self.sent.append(request)

    def receive(self, timeout: float) -> str | None:
        return self.incoming.pop(0) if self.incoming else None

    def execute(self, request: dict[str, Any]) -> dict[str, Any] | None:
        self.executed.append(request)
        return self.execute_result

    def close(self) -> None:
        self.closed = True

    def sent_types(self) -> list[str]:
        return [request["@type"] for request in self.sent]


def _auth(tag: str) -> str:
    return json.dumps({"@type": "updateAuthorizationState", "authorization_state": {"@type": tag}})


def _text_message(text: str, *, sender: int = 42, chat_id: int = CHAT_ID, outgoing: bool = False) -> str:
    return json.dumps(
        {
            "@type": "updateNewMessage",
            "message": {
                "id": 1,
                "chat_id": chat_id,
                "sender_id": {"@type": "messageSenderUser", "user_id": sender},
                "date": 1700000000,
                "is_outgoing": outgoing,
                "content": {"@type": "messageText", "text": {"text": text}},
            },
        }
    )


def _photo_message(file_id: int) -> str:
    return json.dumps(
        {
            "@type": "updateNewMessage",
            "message": {
                "id": 2,
                "chat_id": CHAT_ID,
                "sender_id": {"user_id": 42},
                "date": 1700000000,
                "content": {
                    "@type": "messagePhoto",
                    "photo": {"sizes": [{"width": 10, "height": 10, "photo": {"id": file_id, "size": 4, "local": {}}}]},
                },
            },
        }
    )


def _user(user_id: int, first_name: str) -> str:
    return json.dumps({"@type": "updateUser", "user": {"id": user_id, "first_name": first_name}})


@pytest.fixture
def config(tmp_path: Any) -> BridgeConfig:  # noqa: ANN401
    return BridgeConfig(
        telegram_api_id=1,
        telegram_api_hash="hash",
        telegram_chat_id=CHAT_ID,
        discord_token="token",
        discord_server_id=111,
        discord_channel_id=CHANNEL_ID,
        discord_webhook_url="https://discord.com/api/webhooks/1/x",
        files_directory=str(tmp_path),
        attachments_base_url="http://files.test",
        file_server_enabled=False,
    )


@pytest.fixture
def listener() -> Mock:
    listener = Mock()
    listener.channel_id = CHANNEL_ID
    return listener


@pytest.fixture
def webhook() -> Mock:
    return Mock()


def _bridge(client: _FakeTdClient, listener: Mock, webhook: Mock, config: BridgeConfig) -> Bridge:
    bridge = Bridge(client, listener, webhook, config, sleep=lambda _s: None)
    bridge.dispatch(AuthUpdate(state=Ready()))
    return bridge


class TestAuthorizePhase:
    """Interactive login before the steady-state loop."""

    def test_authorize_until_ready(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """Reaching Ready opens the bridged chat."""
        client = _FakeTdClient([_auth("authorizationStateWaitEncryptionKey"), None, _auth("authorizationStateReady")])  # type: ignore[list-item]
        bridge = Bridge(client, listener, webhook, config)

        assert bridge.authorize() is True
        assert client.sent_types() == ["checkDatabaseEncryptionKey", "getMe", "openChat"]
        assert client.sent[-1] == {"@type": "openChat", "chat_id": CHAT_ID}

    def test_authorize_closed(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A client that closes during login ends the phase."""
        client = _FakeTdClient([_auth("authorizationStateClosed")])
        bridge = Bridge(client, listener, webhook, config)
        assert bridge.authorize() is False

    def test_messages_ignored_before_ready(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """Message traffic during login is not delivered, though users are cached."""
        client = _FakeTdClient([_user(42, "Ada"), _text_message("early"), _auth("authorizationStateReady")])
        bridge = Bridge(client, listener, webhook, config)

        bridge.authorize()

        webhook.deliver.assert_not_called()
        assert 42 in bridge.users


class TestTelegramToDiscord:
    """Relaying Telegram messages."""

    def test_text_is_delivered(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A message from a cached user is delivered under their name."""
        client = _FakeTdClient([_user(42, "Ada"), _text_message("hello")])
        bridge = _bridge(client, listener, webhook, config)

        assert bridge.tick() is True
        assert bridge.tick() is True

        webhook.deliver.assert_called_once()
        request = webhook.deliver.call_args.args[0]
        assert request.to_payload() == {"content": "hello", "username": "Ada"}
        listener.send_plain.assert_not_called()

    def test_webhook_failure_falls_back_once(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A 500 from the webhook produces exactly one plain bot message."""
        webhook.deliver.side_effect = DeliveryError(500, "Internal Server Error")
        client = _FakeTdClient([_text_message("hello")])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        bridge.tick()

        assert webhook.deliver.call_count == 1
        listener.send_plain.assert_called_once_with("**Ada**: hello")

    def test_fallback_failure_is_dropped(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """When both paths fail the message is dropped without raising."""
        webhook.deliver.side_effect = DeliveryError(None, "timeout")
        listener.send_plain.side_effect = DiscordSendError("not ready")
        client = _FakeTdClient([_text_message("hello")])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        assert bridge.tick() is True
        assert listener.send_plain.call_count == 1

    def test_unknown_sender_is_fetched(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """Messages from uncached users wait for getUser and then deliver."""
        client = _FakeTdClient([_text_message("one"), _text_message("two")])
        bridge = _bridge(client, listener, webhook, config)

        bridge.tick()
        bridge.tick()
        assert client.sent_types().count("getUser") == 1
        webhook.deliver.assert_not_called()

        client.incoming.append(json.dumps({"@type": "user", "id": 42, "first_name": "Ada", "last_name": "Lovelace"}))
        bridge.tick()

        contents = [c.args[0].content for c in webhook.deliver.call_args_list]
        usernames = {c.args[0].username for c in webhook.deliver.call_args_list}
        assert contents == ["one", "two"]
        assert usernames == {"Ada Lovelace"}

    def test_deferred_attachment_then_download(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """An attachment without a URL is not delivered until its download completes."""
        client = _FakeTdClient([_photo_message(9)])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        bridge.tick()

        assert webhook.deliver.call_count == 0
        assert client.sent[-1] == {
            "@type": "downloadFile",
            "file_id": 9,
            "priority": 32,
            "offset": 0,
            "limit": 0,
            "synchronous": True,
            "@extra": "file:9",
        }

        local = f"{config.files_directory}/photos/p.jpg"
        client.incoming.append(
            json.dumps(
                {
                    "@type": "updateFile",
                    "file": {"id": 9, "size": 4, "local": {"path": local, "is_downloading_completed": True}},
                }
            )
        )
        bridge.tick()

        webhook.deliver.assert_called_once()
        request = webhook.deliver.call_args.args[0]
        assert request.embeds == [{"image": {"url": "http://files.test/files/photos/p.jpg"}}]

    @pytest.mark.parametrize(
        "envelope",
        [_text_message("x", chat_id=999), _text_message("x", outgoing=True), _text_message("   ")],
    )
    def test_ignored_messages(self, listener: Mock, webhook: Mock, config: BridgeConfig, envelope: str) -> None:
        """Other chats, our own messages and blank text are not relayed."""
        client = _FakeTdClient([envelope])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        bridge.tick()

        webhook.deliver.assert_not_called()


class TestFailedLookups:
    """TDLib errors for user lookups and downloads release parked messages."""

    def test_user_lookup_error_drops_and_retries(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A failed getUser drops the parked messages and the next message asks again."""
        client = _FakeTdClient([_text_message("one"), json.dumps({"@type": "error", "code": 400, "@extra": "user:42"})])
        bridge = _bridge(client, listener, webhook, config)

        bridge.tick()
        bridge.tick()
        client.incoming.extend([_text_message("two"), _user(42, "Ada")])
        bridge.tick()
        bridge.tick()

        assert client.sent_types().count("getUser") == 2
        contents = [c.args[0].content for c in webhook.deliver.call_args_list]
        assert contents == ["two"]

    def test_non_user_sender_is_dropped(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """Posts sent on behalf of a chat have no user to look up."""
        client = _FakeTdClient([_text_message("from a channel", sender=0)])
        bridge = _bridge(client, listener, webhook, config)

        bridge.tick()

        assert "getUser" not in client.sent_types()
        webhook.deliver.assert_not_called()

    def test_download_error_drops_and_retries(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A failed downloadFile drops the parked messages and the file is requested again later."""
        client = _FakeTdClient([_photo_message(9), json.dumps({"@type": "error", "code": 404, "@extra": "file:9"})])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        bridge.tick()
        bridge.tick()
        client.incoming.append(_photo_message(9))
        bridge.tick()

        assert client.sent_types().count("downloadFile") == 2
        webhook.deliver.assert_not_called()

    def test_cached_file_reused_while_present(
        self, listener: Mock, webhook: Mock, config: BridgeConfig, tmp_path: Any  # noqa: ANN401
    ) -> None:
        """A file that is still on disk is linked without downloading it again."""
        local = tmp_path / "stickers" / "s.webp"
        local.parent.mkdir()
        local.write_bytes(b"webp")
        completed = json.dumps(
            {"@type": "updateFile", "file": {"id": 9, "size": 4, "local": {"path": str(local), "is_downloading_completed": True}}}
        )
        client = _FakeTdClient([_photo_message(9), completed, _photo_message(9)])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        for _ in range(3):
            bridge.tick()

        assert client.sent_types().count("downloadFile") == 1
        assert webhook.deliver.call_count == 2

    def test_cached_file_removed_is_downloaded_again(
        self, listener: Mock, webhook: Mock, config: BridgeConfig, tmp_path: Any  # noqa: ANN401
    ) -> None:
        """A cached link whose file was deleted from disk triggers a new download."""
        local = tmp_path / "photos" / "gone.jpg"
        completed = json.dumps(
            {"@type": "updateFile", "file": {"id": 9, "size": 4, "local": {"path": str(local), "is_downloading_completed": True}}}
        )
        client = _FakeTdClient([_photo_message(9), completed, _photo_message(9)])
        bridge = _bridge(client, listener, webhook, config)
        bridge.users.put(UserInfo(user_id=42, first_name="Ada"))

        for _ in range(3):
            bridge.tick()

        assert client.sent_types().count("downloadFile") == 2
        assert webhook.deliver.call_count == 1


class TestDiscordToTelegram:
    """Relaying Discord messages back into the Telegram chat."""

    def test_handler_registered(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """The bridge subscribes to the listener on construction."""
        bridge = Bridge(_FakeTdClient(), listener, webhook, config)
        listener.set_handler.assert_called_once_with(bridge.on_discord_message)

    def test_message_from_other_thread_sent_on_tick(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """Messages queued on the gateway thread are sent by the Telegram loop."""
        client = _FakeTdClient()
        formatted = {"@type": "formattedText", "text": "Bob: hi", "entities": [{"@type": "textEntity"}]}
        client.execute_result = formatted
        bridge = _bridge(client, listener, webhook, config)

        worker = threading.Thread(
            target=bridge.on_discord_message,
            args=(DiscordMessage(channel_id=CHANNEL_ID, sender_id=5, display_name="Bob", text="hi!"),),
        )
        worker.start()
        worker.join()
        assert client.sent == []

        bridge.tick()

        assert client.executed[0]["text"] == "*Bob*: hi\\!"
        assert client.sent == [
            {
                "@type": "sendMessage",
                "chat_id": CHAT_ID,
                "input_message_content": {"@type": "inputMessageText", "text": formatted},
            }
        ]

    def test_plain_text_when_parsing_fails(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A TDLib parse error falls back to unformatted text with attachment URLs."""
        client = _FakeTdClient()
        client.execute_result = {"@type": "error", "code": 400, "message": "bad"}
        bridge = _bridge(client, listener, webhook, config)

        bridge.on_discord_message(
            DiscordMessage(
                channel_id=CHANNEL_ID,
                sender_id=5,
                display_name="Bob",
                text="look",
                attachments=["https://cdn.discordapp.com/a.png"],
            )
        )
        bridge.tick()

        text = client.sent[0]["input_message_content"]["text"]
        assert text == {"@type": "formattedText", "text": "**Bob**: look\nhttps://cdn.discordapp.com/a.png"}


class TestRun:
    """Full run loop."""

    def test_run_until_closed(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """run() starts the gateway and returns once TDLib closes."""
        client = _FakeTdClient(
            [_auth("authorizationStateReady"), _user(42, "Ada"), _text_message("hi"), _auth("authorizationStateClosed")]
        )
        bridge = Bridge(client, listener, webhook, config, sleep=lambda _s: None)

        bridge.run()

        listener.start.assert_called_once()
        webhook.deliver.assert_called_once()
        assert bridge.flow.is_closed

    def test_run_reenters_login(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """Losing authorization returns to the interactive phase."""
        client = _FakeTdClient(
            [
                _auth("authorizationStateReady"),
                _auth("authorizationStateWaitEncryptionKey"),
                _auth("authorizationStateReady"),
                _auth("authorizationStateClosed"),
            ]
        )
        bridge = Bridge(client, listener, webhook, config, sleep=lambda _s: None)

        bridge.run()

        assert client.sent_types().count("openChat") == 2

    def test_tick_stops_when_client_closed(self, listener: Mock, webhook: Mock, config: BridgeConfig) -> None:
        """A closed transport ends the loop."""
        client = _FakeTdClient()
        bridge = _bridge(client, listener, webhook, config)
        client.closed = True
        bridge.on_discord_message(DiscordMessage(channel_id=CHANNEL_ID, sender_id=5, display_name="Bob", text="hi"))

        assert bridge.tick() is False
