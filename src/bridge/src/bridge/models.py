"""Pydantic schemas for bridge events, content and outbound deliveries."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


class AttachmentKind(str, Enum):
    """Media kinds carried by Telegram messages."""

    PHOTO = "photo"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"
    VOICE = "voice"
    VIDEO_NOTE = "video_note"
    STICKER = "sticker"
    ANIMATION = "animation"


class AttachmentInfo(BaseModel):
    """Immutable description of one media attachment."""

    model_config = ConfigDict(frozen=True)

    file_id: int
    kind: AttachmentKind
    width: int | None = None
    height: int | None = None
    duration_seconds: int | None = None
    byte_size: int | None = None
    file_name: str | None = None
    mime_type: str | None = None
    caption: str | None = None
    local_path: str | None = None
    remote_url: str | None = None


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    body: str = ""


class AttachmentContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["attachment"] = "attachment"
    info: AttachmentInfo


class TextWithAttachmentContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text_with_attachment"] = "text_with_attachment"
    body: str
    info: AttachmentInfo


MessageContent = Union[TextContent, AttachmentContent, TextWithAttachmentContent]


def attachment_of(content: MessageContent) -> AttachmentInfo | None:
    """Return the attachment carried by ``content``, if any."""
    if isinstance(content, (AttachmentContent, TextWithAttachmentContent)):
        return content.info
    return None


def with_attachment(content: MessageContent, info: AttachmentInfo) -> MessageContent:
    """Return a copy of ``content`` carrying ``info`` in place of its attachment."""
    if isinstance(content, (AttachmentContent, TextWithAttachmentContent)):
        return content.model_copy(update={"info": info})
    return content


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    """Cached Telegram user profile."""

    user_id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        """First name, followed by the last name when one is set."""
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name


# ---------------------------------------------------------------------------
# Authorization states
# ---------------------------------------------------------------------------


class CodeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str | None = None
    length: int | None = None
    next_type: str | None = None


class WaitParameters(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["wait_parameters"] = "wait_parameters"


class WaitEncryptionKey(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["wait_encryption_key"] = "wait_encryption_key"


class WaitPhoneNumber(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["wait_phone_number"] = "wait_phone_number"


class WaitCode(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["wait_code"] = "wait_code"
    code_info: CodeInfo | None = None


class WaitPassword(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["wait_password"] = "wait_password"
    password_hint: str | None = None
    has_recovery_email: bool | None = None
    recovery_pattern: str | None = None


class Ready(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["ready"] = "ready"


class LoggingOut(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["logging_out"] = "logging_out"


class Closing(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["closing"] = "closing"


class Closed(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["closed"] = "closed"


class UnknownAuthState(BaseModel):
    model_config = ConfigDict(frozen=True)
    state: Literal["unknown"] = "unknown"
    raw_tag: str


AuthState = Union[
    WaitParameters,
    WaitEncryptionKey,
    WaitPhoneNumber,
    WaitCode,
    WaitPassword,
    Ready,
    LoggingOut,
    Closing,
    Closed,
    UnknownAuthState,
]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class DownloadState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class ChatType(str, Enum):
    PRIVATE = "private"
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"


class NewMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["new_message"] = "new_message"
    chat_id: int
    message_id: int
    sender_id: int
    timestamp: int
    content: MessageContent
    is_outgoing: bool = False
    is_pinned: bool = False


class EditedMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["edited_message"] = "edited_message"
    chat_id: int
    message_id: int
    edit_timestamp: int
    content: MessageContent = TextContent()


class UserUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user_update"] = "user_update"
    user_id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None
    avatar_url: str | None = None

    def to_user(self) -> UserInfo:
        return UserInfo(
            user_id=self.user_id,
            first_name=self.first_name,
            last_name=self.last_name,
            username=self.username,
            avatar_url=self.avatar_url,
        )


class FileUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["file_update"] = "file_update"
    file_id: int
    size: int
    local_path: str | None = None
    download_state: DownloadState = DownloadState.PENDING


class NewChat(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["new_chat"] = "new_chat"
    chat_id: int
    title: str
    chat_type: ChatType
    member_count: int = 0


class AuthUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["auth_update"] = "auth_update"
    state: AuthState
    raw_envelope: Any = None


class UnknownEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"
    type_tag: str
    raw_envelope: Any = None


Event = Union[NewMessage, EditedMessage, UserUpdate, FileUpdate, NewChat, AuthUpdate, UnknownEvent]


# ---------------------------------------------------------------------------
# Outbound deliveries
# ---------------------------------------------------------------------------


class SpoofedDeliveryRequest(BaseModel):
    """Webhook execution body; unset fields are omitted from the wire payload."""

    content: str | None = None
    username: str | None = None
    avatar_url: str | None = None
    embeds: list[dict[str, Any]] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Delivery(BaseModel):
    """A spoofed request plus the text to send through the bot if it fails."""

    request: SpoofedDeliveryRequest
    display_name: str
    fallback_text: str

    @property
    def fallback_message(self) -> str:
        return f"**{self.display_name}**: {self.fallback_text}"
