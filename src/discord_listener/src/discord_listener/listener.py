"""Discord gateway listener that forwards channel messages to a handler.

The gateway runs its own asyncio loop, normally on a dedicated thread.
``send_plain`` is the only entry point meant to be called from other threads;
it schedules the send on the gateway loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

import discord

from discord_listener.models import DiscordMessage

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("discord_listener")

DISCORD_MAX_LEN = 2000
DEFAULT_SEND_TIMEOUT_SECONDS = 10.0


class DiscordSendError(Exception):
    """Raised when a plain bot message could not be posted."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chunk_text(text: str, max_len: int = DISCORD_MAX_LEN) -> list[str]:
    if not text:
        return []
    chunks = []
    while text:
        if len(text) <= max_len:
            chunks.append(text)
            break
        split_at = text.rfind("\n", 0, max_len)
        if split_at == -1:
            split_at = text.rfind(" ", 0, max_len)
        if split_at == -1:
            split_at = max_len
        chunks.append(text[:split_at].rstrip())
        text = text[split_at:].lstrip()
    return chunks


def _build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.message_content = True
    return intents


def to_discord_message(message: discord.Message) -> DiscordMessage:
    """Normalize a gateway message payload."""
    author = message.author
    display_name = getattr(author, "display_name", None) or author.name
    return DiscordMessage(
        channel_id=message.channel.id,
        sender_id=author.id,
        display_name=display_name,
        text=(message.content or "").strip(),
        attachments=[attachment.url for attachment in message.attachments],
    )


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


class DiscordListener:
    """Gateway session bound to a single channel.

    Attributes:
        channel_id: Discord channel whose messages are forwarded.

    """

    def __init__(
        self,
        token: str,
        channel_id: int,
        *,
        client: discord.Client | None = None,
        send_timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
    ) -> None:
        if not token:
            raise RuntimeError("DISCORD_TOKEN is required.")  # noqa: TRY003, EM101
        self._token = token
        self.channel_id = channel_id
        self._client = client or discord.Client(intents=_build_intents())
        self._send_timeout_seconds = send_timeout_seconds
        self._handler: Callable[[DiscordMessage], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client.event(self.on_ready)
        self._client.event(self.on_message)

    def set_handler(self, handler: Callable[[DiscordMessage], None]) -> None:
        """Register the callback invoked, on the gateway loop, for each forwarded message."""
        self._handler = handler

    @property
    def is_ready(self) -> bool:
        return self._loop is not None

    # -----------------------------------------------------------------------
    # Event Handlers
    # -----------------------------------------------------------------------

    async def on_ready(self) -> None:
        """Log the bot identity and remember the gateway loop."""
        self._loop = asyncio.get_running_loop()
        logger.info("Logged in as %s", self._client.user)

    async def on_message(self, message: discord.Message) -> None:
        """Forward messages from the bridged channel to the handler.

        Args:
            message: Incoming Discord message event payload.

        Returns:
            None.

        """
        if message.author.bot or message.webhook_id is not None:
            return
        if message.channel.id != self.channel_id:
            return

        incoming = to_discord_message(message)
        if not incoming.text and not incoming.attachments:
            return
        if self._handler is None:
            logger.debug("No handler registered; dropping message from %s", incoming.display_name)
            return

        try:
            self._handler(incoming)
        except Exception:
            logger.exception("Message handler failed")

    # -----------------------------------------------------------------------
    # Sending
    # -----------------------------------------------------------------------

    async def _send_chunks(self, text: str) -> None:
        channel = self._client.get_channel(self.channel_id)
        if channel is None:
            msg = f"Channel {self.channel_id} is not available."
            raise DiscordSendError(msg)
        for part in _chunk_text(text):
            await channel.send(part)

    def send_plain(self, text: str) -> None:
        """Post ``text`` as the bot user; safe to call from any thread except the gateway's.

        Raises:
            DiscordSendError: If the gateway is not ready or the send fails.

        """
        loop = self._loop
        if loop is None:
            raise DiscordSendError("Discord gateway is not ready.")  # noqa: TRY003, EM101
        future = asyncio.run_coroutine_threadsafe(self._send_chunks(text), loop)
        try:
            future.result(timeout=self._send_timeout_seconds)
        except DiscordSendError:
            raise
        except (discord.DiscordException, TimeoutError) as exc:
            future.cancel()
            msg = f"Failed to send plain message: {exc!r}"
            raise DiscordSendError(msg) from exc

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def run(self) -> None:
        """Run the gateway client; blocks until the connection is closed."""
        self._client.run(self._token, log_handler=None)

    def start(self) -> threading.Thread:
        """Run the gateway on a daemon thread and return the thread."""
        thread = threading.Thread(target=self.run, name="discord-gateway", daemon=True)
        thread.start()
        return thread
