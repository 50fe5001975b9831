"""Pydantic schemas for messages received from Discord."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DiscordMessage(BaseModel):
    """Normalized message posted in the bridged channel."""

    channel_id: int
    sender_id: int
    display_name: str
    text: str = ""
    attachments: list[str] = Field(default_factory=list)
