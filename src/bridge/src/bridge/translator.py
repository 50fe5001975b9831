"""Translate Telegram messages into Discord webhook deliveries."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bridge.markdown import escape_discord_markdown
from bridge.models import AttachmentKind, Delivery, SpoofedDeliveryRequest, TextContent, attachment_of

if TYPE_CHECKING:
    from bridge.models import AttachmentInfo, NewMessage, UserInfo

_WHITESPACE = " \t\n"
_INLINE_KINDS = frozenset({AttachmentKind.STICKER, AttachmentKind.ANIMATION})


def _attachment_shape(info: AttachmentInfo, url: str) -> tuple[str | None, list[dict[str, object]] | None]:
    """Return ``(content line, embeds)`` for an attachment with a public URL."""
    if info.kind is AttachmentKind.PHOTO:
        return None, [{"image": {"url": url}}]
    if info.kind in _INLINE_KINDS:
        return url, None
    label = escape_discord_markdown(info.file_name or info.kind.value)
    return f"[{label}]({url})", None


class MessageTranslator:
    """Build webhook deliveries for new Telegram messages."""

    def translate(self, message: NewMessage, user: UserInfo) -> Delivery | None:
        """Translate ``message`` sent by ``user``.

        Args:
            message: Decoded Telegram message.
            user: Cached profile of the sender.

        Returns:
            The delivery to attempt, or None when there is nothing to send yet:
            empty text, or an attachment without a public URL.

        """
        display_name = user.display_name
        content = message.content
        info = attachment_of(content)

        if info is None:
            body = content.body.strip(_WHITESPACE) if isinstance(content, TextContent) else ""
            if not body:
                return None
            escaped = escape_discord_markdown(body)
            return Delivery(
                request=SpoofedDeliveryRequest(content=escaped, username=display_name, avatar_url=user.avatar_url),
                display_name=display_name,
                fallback_text=escaped,
            )

        if not info.remote_url:
            return None
        url = info.remote_url
        caption = (info.caption or getattr(content, "body", "") or "").strip(_WHITESPACE)
        escaped_caption = escape_discord_markdown(caption) if caption else None

        line, embeds = _attachment_shape(info, url)
        parts = [part for part in (escaped_caption, line) if part]
        return Delivery(
            request=SpoofedDeliveryRequest(
                content="\n".join(parts) if parts else None,
                username=display_name,
                avatar_url=user.avatar_url,
                embeds=embeds,
            ),
            display_name=display_name,
            fallback_text=f"{escaped_caption}\n{url}" if escaped_caption else url,
        )
