"""Markup escaping for text crossing between Telegram and Discord.

Neither function is idempotent: escaping already-escaped text escapes the
backslashes again.
"""

from __future__ import annotations

_DISCORD_ALWAYS = frozenset("*_`~\\[]()")
_DISCORD_LINE_START = frozenset("#>-")
_TELEGRAM_SPECIAL = frozenset("_*[]()~`>#+-=|{}.!\\")


def _at_line_start(text: str, index: int) -> bool:
    return index == 0 or text[index - 1] == "\n"


def escape_discord_markdown(text: str) -> str:
    """Escape Discord markdown so ``text`` renders literally.

    Emphasis, code, strike, backslash and link brackets are always escaped.
    Spoiler pairs (``||``) are escaped while a lone ``|`` is kept. Header,
    quote and list markers, and the dot of a numbered-list prefix, are only
    escaped at the start of a line.
    """
    out: list[str] = []
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        if char in _DISCORD_ALWAYS:
            out.append("\\" + char)
        elif char == "|":
            if i + 1 < length and text[i + 1] == "|":
                out.append("\\|\\|")
                i += 1
            else:
                out.append(char)
        elif char in _DISCORD_LINE_START:
            if _at_line_start(text, i):
                out.append("\\")
            out.append(char)
        elif char.isascii() and char.isdigit():
            j = i + 1
            while j < length and text[j].isascii() and text[j].isdigit():
                j += 1
            if j < length and text[j] == "." and _at_line_start(text, i):
                out.append(text[i:j])
                out.append("\\.")
                i = j
            else:
                out.append(char)
        else:
            out.append(char)
        i += 1
    return "".join(out)


def escape_telegram_markdown(text: str) -> str:
    """Escape every Telegram MarkdownV2 reserved character in ``text``."""
    return "".join("\\" + char if char in _TELEGRAM_SPECIAL else char for char in text)
