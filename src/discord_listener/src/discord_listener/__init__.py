"""Discord gateway listener for the bridged channel."""

from discord_listener.listener import DiscordListener, DiscordSendError
from discord_listener.models import DiscordMessage

__all__ = ["DiscordListener", "DiscordMessage", "DiscordSendError"]
