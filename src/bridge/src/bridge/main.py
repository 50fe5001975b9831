"""Bridge orchestrator: relays a Telegram chat into a Discord channel.

TDLib is polled on the main thread, which owns every TDLib call. The Discord
gateway runs on its own thread and hands inbound messages over through a
queue that the Telegram loop drains on each tick.
"""

from __future__ import annotations

import logging
import queue
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tdlib_client_api
import tdlib_client_impl  # noqa: F401  # ensure TDLib implementation registers itself
from bridge.auth import AuthorizationFlow
from bridge.config import BridgeConfig, load_config
from bridge.decoder import decode
from bridge.file_server import AttachmentLinker, create_app, serve_in_thread
from bridge.markdown import escape_telegram_markdown
from bridge.models import (
    AuthUpdate,
    DownloadState,
    Event,
    FileUpdate,
    NewMessage,
    UnknownEvent,
    UserInfo,
    UserUpdate,
    attachment_of,
    with_attachment,
)
from bridge.translator import MessageTranslator
from bridge.users import UserCache
from bridge.webhook import DeliveryError, WebhookClient
from discord_listener import DiscordListener, DiscordMessage, DiscordSendError
from tdlib_client_api import ClientClosedError, TransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from bridge.models import Delivery
    from tdlib_client_api import Client

logger = logging.getLogger("bridge")

DOWNLOAD_PRIORITY = 32


class Bridge:
    """Wire a TDLib client, a Discord listener and a webhook into one relay."""

    def __init__(  # noqa: PLR0913
        self,
        client: Client,
        listener: DiscordListener,
        webhook: WebhookClient,
        config: BridgeConfig,
        *,
        flow: AuthorizationFlow | None = None,
        translator: MessageTranslator | None = None,
        users: UserCache | None = None,
        linker: AttachmentLinker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._listener = listener
        self._webhook = webhook
        self._config = config
        self._flow = flow or AuthorizationFlow(client, config.tdlib_parameters())
        self._translator = translator or MessageTranslator()
        self._users = users or UserCache()
        self._linker = linker or AttachmentLinker(config.files_directory, config.attachments_base_url)
        self._sleep = sleep
        self._outbox: queue.Queue[DiscordMessage] = queue.Queue()
        self._pending_users: dict[int, list[NewMessage]] = {}
        self._pending_files: dict[int, list[tuple[NewMessage, UserInfo]]] = {}
        # file_id -> (local path, public URL)
        self._file_urls: dict[int, tuple[str, str]] = {}
        self._closed = False
        listener.set_handler(self.on_discord_message)

    @property
    def flow(self) -> AuthorizationFlow:
        return self._flow

    @property
    def users(self) -> UserCache:
        return self._users

    # -----------------------------------------------------------------------
    # Run loop
    # -----------------------------------------------------------------------

    def authorize(self) -> bool:
        """Run the interactive login phase until TDLib is ready or closed.

        Returns:
            True once authorized, False if the client closed first.

        """
        while not self._flow.is_ready:
            if self._flow.is_closed or self._closed:
                return False
            self._poll_once()
        self.on_ready()
        return True

    def on_ready(self) -> None:
        """Load our own profile and open the bridged chat."""
        logger.info(
            "Bridging Telegram chat %s to Discord channel %s (server %s)",
            self._config.telegram_chat_id,
            self._listener.channel_id,
            self._config.discord_server_id,
        )
        self._send({"@type": "getMe"})
        self._send({"@type": "openChat", "chat_id": self._config.telegram_chat_id})

    def tick(self) -> bool:
        """Run one steady-state iteration.

        Returns:
            False once the client is closed.

        """
        self._drain_outbox()
        self._poll_once()
        return not (self._closed or self._flow.is_closed)

    def run(self) -> None:
        """Start the Discord and file server threads, then relay until TDLib closes."""
        self._listener.start()
        if self._config.file_server_enabled:
            Path(self._config.files_directory).mkdir(parents=True, exist_ok=True)
            serve_in_thread(
                create_app(self._config.files_directory),
                self._config.file_server_host,
                self._config.file_server_port,
            )
        while self.authorize():
            while self._flow.is_ready:
                if not self.tick():
                    return
                self._sleep(self._config.poll_interval_seconds)
            logger.warning("Telegram authorization lost; re-entering login")

    def _poll_once(self) -> None:
        try:
            raw = self._client.receive(self._config.receive_timeout_seconds)
        except ClientClosedError:
            self._closed = True
            return
        except TransportError as exc:
            logger.error("Failed to receive from TDLib: %s", exc)  # noqa: TRY400
            return
        if raw is None:
            return
        self.dispatch(decode(raw))

    # -----------------------------------------------------------------------
    # Telegram events
    # -----------------------------------------------------------------------

    def dispatch(self, event: Event) -> None:
        """Route one decoded event to its handler."""
        if isinstance(event, AuthUpdate):
            self._flow.handle(event)
        elif isinstance(event, NewMessage):
            self._on_new_message(event)
        elif isinstance(event, UserUpdate):
            self._on_user(event.to_user())
        elif isinstance(event, FileUpdate):
            self._on_file(event)
        elif isinstance(event, UnknownEvent) and event.type_tag == "error":
            self._on_error(event.raw_envelope)
        else:
            logger.debug("Ignoring %s", event.kind)

    def _on_new_message(self, message: NewMessage) -> None:
        if not self._flow.is_ready:
            return
        if message.chat_id != self._config.telegram_chat_id or message.is_outgoing:
            return
        if message.sender_id == 0:
            logger.info("Dropping message %s: sender is not a user", message.message_id)
            return
        user = self._users.get(message.sender_id)
        if user is None:
            parked = self._pending_users.setdefault(message.sender_id, [])
            parked.append(message)
            if len(parked) == 1:
                self._send({"@type": "getUser", "user_id": message.sender_id, "@extra": f"user:{message.sender_id}"})
            return
        self._relay(message, user)

    def _on_user(self, user: UserInfo) -> None:
        self._users.put(user)
        for message in self._pending_users.pop(user.user_id, []):
            self._relay(message, user)

    def _on_file(self, event: FileUpdate) -> None:
        if event.download_state is not DownloadState.COMPLETED or not event.local_path:
            return
        url = self._linker.url_for(event.local_path)
        if url is None:
            logger.warning("Downloaded file %s is outside %s", event.local_path, self._config.files_directory)
            self._pending_files.pop(event.file_id, None)
            return
        self._file_urls[event.file_id] = (event.local_path, url)
        for message, user in self._pending_files.pop(event.file_id, []):
            self._relay(message, user, url)

    def _on_error(self, envelope: object) -> None:
        extra = envelope.get("@extra") if isinstance(envelope, dict) else None
        logger.warning("TDLib error: %s", envelope)
        if not isinstance(extra, str):
            return
        kind, _, raw_id = extra.partition(":")
        try:
            key = int(raw_id)
        except ValueError:
            return
        if kind == "user":
            dropped = len(self._pending_users.pop(key, []))
            logger.warning("User lookup for %s failed; dropping %d message(s)", key, dropped)
        elif kind == "file":
            dropped = len(self._pending_files.pop(key, []))
            logger.warning("Download of file %s failed; dropping %d message(s)", key, dropped)

    def _cached_url(self, file_id: int) -> str | None:
        cached = self._file_urls.get(file_id)
        if cached is None:
            return None
        local_path, url = cached
        if not Path(local_path).is_file():
            # Removed by the TDLib storage optimizer; download again.
            del self._file_urls[file_id]
            return None
        return url

    def _relay(self, message: NewMessage, user: UserInfo, url: str | None = None) -> None:
        info = attachment_of(message.content)
        if info is not None and not info.remote_url:
            url = url or self._cached_url(info.file_id)
            if url is None and info.local_path:
                url = self._linker.url_for(info.local_path)
            if url is None:
                self._defer(message, user, info.file_id)
                return
            content = with_attachment(message.content, info.model_copy(update={"remote_url": url}))
            message = message.model_copy(update={"content": content})

        delivery = self._translator.translate(message, user)
        if delivery is None:
            return
        self._deliver(delivery)

    def _defer(self, message: NewMessage, user: UserInfo, file_id: int) -> None:
        parked = self._pending_files.setdefault(file_id, [])
        parked.append((message, user))
        if len(parked) == 1:
            self._send(
                {
                    "@type": "downloadFile",
                    "file_id": file_id,
                    "priority": DOWNLOAD_PRIORITY,
                    "offset": 0,
                    "limit": 0,
                    "synchronous": True,
                    "@extra": f"file:{file_id}",
                }
            )

    def _deliver(self, delivery: Delivery) -> None:
        try:
            self._webhook.deliver(delivery.request)
        except DeliveryError as exc:
            logger.warning("Spoofed delivery failed, falling back to bot message: %s", exc)
        else:
            return
        try:
            self._listener.send_plain(delivery.fallback_message)
        except DiscordSendError as exc:
            logger.error("Fallback delivery failed; dropping message from %s: %s", delivery.display_name, exc)  # noqa: TRY400

    # -----------------------------------------------------------------------
    # Discord -> Telegram
    # -----------------------------------------------------------------------

    def on_discord_message(self, message: DiscordMessage) -> None:
        """Queue a Discord message for the Telegram loop; runs on the gateway thread."""
        self._outbox.put(message)

    def _drain_outbox(self) -> None:
        while True:
            try:
                message = self._outbox.get_nowait()
            except queue.Empty:
                return
            self._send_to_telegram(message)

    def _send_to_telegram(self, message: DiscordMessage) -> None:
        text = "\n".join(part for part in (message.text, *message.attachments) if part)
        if not text:
            return
        self._send(
            {
                "@type": "sendMessage",
                "chat_id": self._config.telegram_chat_id,
                "input_message_content": {
                    "@type": "inputMessageText",
                    "text": self._format_for_telegram(message.display_name, text),
                },
            }
        )

    def _format_for_telegram(self, display_name: str, text: str) -> dict[str, Any]:
        markdown = f"*{escape_telegram_markdown(display_name)}*: {escape_telegram_markdown(text)}"
        try:
            parsed = self._client.execute(
                {
                    "@type": "parseTextEntities",
                    "text": markdown,
                    "parse_mode": {"@type": "textParseModeMarkdown", "version": 2},
                }
            )
        except TransportError as exc:
            logger.debug("parseTextEntities failed: %s", exc)
            parsed = None
        if parsed is not None and parsed.get("@type") == "formattedText":
            return parsed
        return {"@type": "formattedText", "text": f"**{display_name}**: {text}"}

    def _send(self, request: dict[str, Any]) -> None:
        try:
            self._client.send(request)
        except ClientClosedError:
            self._closed = True
        except TransportError as exc:
            logger.error("Failed to send %s: %s", request.get("@type"), exc)  # noqa: TRY400


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Load configuration and run the bridge until TDLib closes."""
    config = load_config()
    logging.basicConfig(level=logging.DEBUG if config.debug else logging.INFO)
    client = tdlib_client_api.get_client()
    listener = DiscordListener(config.discord_token, config.discord_channel_id)
    webhook = WebhookClient(config.discord_webhook_url, timeout_seconds=config.webhook_timeout_seconds)
    bridge = Bridge(client, listener, webhook, config)
    try:
        bridge.run()
    except KeyboardInterrupt:
        logger.info("Interrupted; closing TDLib client")
    finally:
        client.close()


if __name__ == "__main__":
    main()
