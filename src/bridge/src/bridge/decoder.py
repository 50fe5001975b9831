"""Typed decoding of TDLib JSON envelopes into bridge events.

``decode`` is total: malformed input, unknown ``@type`` tags and envelopes
missing required fields all come back as ``UnknownEvent`` instead of raising.
All knowledge of the TDLib wire vocabulary lives in this module.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from bridge.models import (
    AttachmentContent,
    AttachmentInfo,
    AttachmentKind,
    AuthState,
    AuthUpdate,
    ChatType,
    Closed,
    Closing,
    CodeInfo,
    DownloadState,
    EditedMessage,
    Event,
    FileUpdate,
    LoggingOut,
    MessageContent,
    NewChat,
    NewMessage,
    Ready,
    TextContent,
    TextWithAttachmentContent,
    UnknownAuthState,
    UnknownEvent,
    UserUpdate,
    WaitCode,
    WaitEncryptionKey,
    WaitParameters,
    WaitPassword,
    WaitPhoneNumber,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("bridge.decoder")

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

PARSE_ERROR_TAG = "parse-error"


class DecodeError(Exception):
    """Raised by field extractors when a required field is missing or mistyped."""


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _obj(parent: dict[str, Any], key: str) -> dict[str, Any]:
    value = parent.get(key)
    if not isinstance(value, dict):
        msg = f"missing object field {key!r}"
        raise DecodeError(msg)
    return value


def _opt_obj(parent: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = parent.get(key)
    return value if isinstance(value, dict) else None


def _to_int64(value: Any) -> int | None:  # noqa: ANN401
    # TDLib encodes int64 as a JSON string.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value, 10)
        except ValueError:
            return None
    else:
        return None
    if not INT64_MIN <= number <= INT64_MAX:
        return None
    return number


def _int64(parent: dict[str, Any], key: str) -> int:
    number = _to_int64(parent.get(key))
    if number is None:
        msg = f"missing integer field {key!r}"
        raise DecodeError(msg)
    return number


def _opt_int64(parent: dict[str, Any], key: str) -> int | None:
    return _to_int64(parent.get(key))


def _opt_int32(parent: dict[str, Any], key: str) -> int | None:
    """Return a 32-bit field, or None when absent, mistyped or out of range."""
    value = parent.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if not INT32_MIN <= value <= INT32_MAX:
        logger.warning("Field %s out of int32 range: %s", key, value)
        return None
    return value


def _str(parent: dict[str, Any], key: str) -> str:
    value = parent.get(key)
    if not isinstance(value, str):
        msg = f"missing string field {key!r}"
        raise DecodeError(msg)
    return value


def _opt_str(parent: dict[str, Any], key: str) -> str | None:
    value = parent.get(key)
    return value if isinstance(value, str) else None


def _opt_nonempty_str(parent: dict[str, Any], key: str) -> str | None:
    value = _opt_str(parent, key)
    return value or None


def _bool(parent: dict[str, Any], key: str, *, default: bool = False) -> bool:
    value = parent.get(key)
    return value if isinstance(value, bool) else default


def _type_of(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return _opt_str(value, "@type")


# ---------------------------------------------------------------------------
# Authorization states
# ---------------------------------------------------------------------------


def _tag_or_str(value: Any) -> str | None:  # noqa: ANN401
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return _type_of(value)
    return None


def _decode_code_info(state: dict[str, Any]) -> CodeInfo | None:
    info = _opt_obj(state, "code_info")
    if info is None:
        return None
    code_type = info.get("type")
    # Newer TDLib nests the length inside the code type object.
    length_source = code_type if isinstance(code_type, dict) and "length" in code_type else info
    return CodeInfo(
        type=_tag_or_str(code_type),
        length=_opt_int32(length_source, "length"),
        next_type=_tag_or_str(info.get("next_type")),
    )


def decode_auth_state(state: dict[str, Any] | None) -> AuthState:
    """Map an ``authorizationState*`` object to an AuthState variant."""
    tag = _type_of(state)
    if state is None or tag is None:
        return UnknownAuthState(raw_tag="unknown")
    if tag == "authorizationStateWaitTdlibParameters":
        return WaitParameters()
    if tag == "authorizationStateWaitEncryptionKey":
        return WaitEncryptionKey()
    if tag == "authorizationStateWaitPhoneNumber":
        return WaitPhoneNumber()
    if tag == "authorizationStateWaitCode":
        return WaitCode(code_info=_decode_code_info(state))
    if tag == "authorizationStateWaitPassword":
        has_recovery = state.get("has_recovery_email_address")
        return WaitPassword(
            password_hint=_opt_nonempty_str(state, "password_hint"),
            has_recovery_email=has_recovery if isinstance(has_recovery, bool) else None,
            recovery_pattern=_opt_nonempty_str(state, "recovery_email_address_pattern"),
        )
    if tag == "authorizationStateReady":
        return Ready()
    if tag == "authorizationStateLoggingOut":
        return LoggingOut()
    if tag == "authorizationStateClosing":
        return Closing()
    if tag == "authorizationStateClosed":
        return Closed()
    return UnknownAuthState(raw_tag=tag)


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


def _file_ref(parent: dict[str, Any], key: str) -> tuple[int, int | None, str | None]:
    """Return ``(id, size, local_path)`` for an embedded TDLib ``file`` object."""
    file_obj = _obj(parent, key)
    local = _opt_obj(file_obj, "local") or {}
    local_path = None
    if _bool(local, "is_downloading_completed"):
        local_path = _opt_nonempty_str(local, "path")
    return _int64(file_obj, "id"), _opt_int64(file_obj, "size"), local_path


def _caption(content: dict[str, Any]) -> str | None:
    caption = _opt_obj(content, "caption")
    if caption is None:
        return None
    return _opt_nonempty_str(caption, "text")


def _photo(content: dict[str, Any]) -> AttachmentInfo:
    photo = _obj(content, "photo")
    sizes = photo.get("sizes")
    if not isinstance(sizes, list) or not sizes or not isinstance(sizes[-1], dict):
        msg = "photo has no sizes"
        raise DecodeError(msg)
    largest = sizes[-1]
    file_id, size, local_path = _file_ref(largest, "photo")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.PHOTO,
        width=_opt_int32(largest, "width"),
        height=_opt_int32(largest, "height"),
        byte_size=size,
        local_path=local_path,
    )


def _document(content: dict[str, Any]) -> AttachmentInfo:
    document = _obj(content, "document")
    file_id, size, local_path = _file_ref(document, "document")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.DOCUMENT,
        byte_size=size,
        file_name=_opt_nonempty_str(document, "file_name"),
        mime_type=_opt_nonempty_str(document, "mime_type"),
        local_path=local_path,
    )


def _video(content: dict[str, Any]) -> AttachmentInfo:
    video = _obj(content, "video")
    file_id, size, local_path = _file_ref(video, "video")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.VIDEO,
        width=_opt_int32(video, "width"),
        height=_opt_int32(video, "height"),
        duration_seconds=_opt_int32(video, "duration"),
        byte_size=size,
        file_name=_opt_nonempty_str(video, "file_name"),
        mime_type=_opt_nonempty_str(video, "mime_type"),
        local_path=local_path,
    )


def _audio(content: dict[str, Any]) -> AttachmentInfo:
    audio = _obj(content, "audio")
    file_id, size, local_path = _file_ref(audio, "audio")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.AUDIO,
        duration_seconds=_opt_int32(audio, "duration"),
        byte_size=size,
        file_name=_opt_nonempty_str(audio, "file_name"),
        mime_type=_opt_nonempty_str(audio, "mime_type"),
        local_path=local_path,
    )


def _voice(content: dict[str, Any]) -> AttachmentInfo:
    voice = _obj(content, "voice_note")
    file_id, size, local_path = _file_ref(voice, "voice")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.VOICE,
        duration_seconds=_opt_int32(voice, "duration"),
        byte_size=size,
        mime_type=_opt_nonempty_str(voice, "mime_type") or "audio/ogg",
        local_path=local_path,
    )


def _video_note(content: dict[str, Any]) -> AttachmentInfo:
    note = _obj(content, "video_note")
    file_id, size, local_path = _file_ref(note, "video")
    side = _opt_int32(note, "length")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.VIDEO_NOTE,
        width=side,
        height=side,
        duration_seconds=_opt_int32(note, "duration"),
        byte_size=size,
        mime_type="video/mp4",
        local_path=local_path,
    )


def _sticker(content: dict[str, Any]) -> AttachmentInfo:
    sticker = _obj(content, "sticker")
    file_id, size, local_path = _file_ref(sticker, "sticker")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.STICKER,
        width=_opt_int32(sticker, "width"),
        height=_opt_int32(sticker, "height"),
        byte_size=size,
        local_path=local_path,
    )


def _animation(content: dict[str, Any]) -> AttachmentInfo:
    animation = _obj(content, "animation")
    file_id, size, local_path = _file_ref(animation, "animation")
    return AttachmentInfo(
        file_id=file_id,
        kind=AttachmentKind.ANIMATION,
        width=_opt_int32(animation, "width"),
        height=_opt_int32(animation, "height"),
        duration_seconds=_opt_int32(animation, "duration"),
        byte_size=size,
        file_name=_opt_nonempty_str(animation, "file_name"),
        mime_type=_opt_nonempty_str(animation, "mime_type"),
        local_path=local_path,
    )


_MEDIA_DECODERS: dict[str, Callable[[dict[str, Any]], AttachmentInfo]] = {
    "messagePhoto": _photo,
    "messageDocument": _document,
    "messageVideo": _video,
    "messageAudio": _audio,
    "messageVoiceNote": _voice,
    "messageVideoNote": _video_note,
    "messageSticker": _sticker,
    "messageAnimation": _animation,
}

_CAPTIONLESS = {"messageSticker", "messageVideoNote"}


def decode_content(content: dict[str, Any] | None) -> MessageContent:
    """Map a ``message*`` content object to MessageContent.

    Unsupported content types become empty text.
    """
    tag = _type_of(content)
    if content is None or tag is None:
        return TextContent()
    if tag == "messageText":
        text = _opt_obj(content, "text") or {}
        return TextContent(body=_opt_str(text, "text") or "")
    media = _MEDIA_DECODERS.get(tag)
    if media is None:
        logger.debug("Unsupported message content %s", tag)
        return TextContent()
    info = media(content)
    caption = None if tag in _CAPTIONLESS else _caption(content)
    if caption:
        return TextWithAttachmentContent(body=caption, info=info.model_copy(update={"caption": caption}))
    return AttachmentContent(info=info)


# ---------------------------------------------------------------------------
# Event decoders
# ---------------------------------------------------------------------------


def _auth_update(envelope: dict[str, Any]) -> Event:
    return AuthUpdate(state=decode_auth_state(_opt_obj(envelope, "authorization_state")), raw_envelope=envelope)


def _new_message(envelope: dict[str, Any]) -> Event:
    message = _obj(envelope, "message")
    sender = _opt_obj(message, "sender_id") or {}
    return NewMessage(
        chat_id=_int64(message, "chat_id"),
        message_id=_int64(message, "id"),
        sender_id=_opt_int64(sender, "user_id") or 0,
        timestamp=_int64(message, "date"),
        content=decode_content(_opt_obj(message, "content")),
        is_outgoing=_bool(message, "is_outgoing"),
        is_pinned=_bool(message, "is_pinned"),
    )


def _edited_message(envelope: dict[str, Any]) -> Event:
    return EditedMessage(
        chat_id=_int64(envelope, "chat_id"),
        message_id=_int64(envelope, "message_id"),
        edit_timestamp=_int64(envelope, "edit_date"),
        content=decode_content(_opt_obj(envelope, "new_content")),
    )


def _user_fields(user: dict[str, Any]) -> Event:
    username = None
    usernames = _opt_obj(user, "usernames")
    if usernames is not None:
        active = usernames.get("active_usernames")
        if isinstance(active, list) and active and isinstance(active[0], str):
            username = active[0]
    return UserUpdate(
        user_id=_int64(user, "id"),
        first_name=_str(user, "first_name"),
        last_name=_opt_nonempty_str(user, "last_name"),
        username=username or _opt_nonempty_str(user, "username"),
    )


def _update_user(envelope: dict[str, Any]) -> Event:
    return _user_fields(_obj(envelope, "user"))


def _file_fields(file_obj: dict[str, Any]) -> Event:
    local = _opt_obj(file_obj, "local") or {}
    if _bool(local, "is_downloading_completed"):
        state = DownloadState.COMPLETED
    elif _bool(local, "is_downloading_active"):
        state = DownloadState.ACTIVE
    else:
        state = DownloadState.PENDING
    return FileUpdate(
        file_id=_int64(file_obj, "id"),
        size=_int64(file_obj, "size"),
        local_path=_opt_nonempty_str(local, "path"),
        download_state=state,
    )


def _update_file(envelope: dict[str, Any]) -> Event:
    return _file_fields(_obj(envelope, "file"))


_CHAT_TYPES = {
    "chatTypePrivate": ChatType.PRIVATE,
    "chatTypeSecret": ChatType.PRIVATE,
    "chatTypeBasicGroup": ChatType.GROUP,
    "private": ChatType.PRIVATE,
    "group": ChatType.GROUP,
    "supergroup": ChatType.SUPERGROUP,
    "channel": ChatType.CHANNEL,
}


def _chat_type(chat: dict[str, Any]) -> ChatType:
    raw = chat.get("type")
    if isinstance(raw, str):
        tag = raw
    elif isinstance(raw, dict) and _type_of(raw) == "chatTypeSupergroup":
        return ChatType.CHANNEL if _bool(raw, "is_channel") else ChatType.SUPERGROUP
    else:
        tag = _type_of(raw) if isinstance(raw, dict) else None
    if tag is None or tag not in _CHAT_TYPES:
        msg = f"unknown chat type {raw!r}"
        raise DecodeError(msg)
    return _CHAT_TYPES[tag]


def _new_chat(envelope: dict[str, Any]) -> Event:
    chat = _obj(envelope, "chat")
    return NewChat(
        chat_id=_int64(chat, "id"),
        title=_str(chat, "title"),
        chat_type=_chat_type(chat),
        member_count=_opt_int32(chat, "member_count") or 0,
    )


_DECODERS: dict[str, Callable[[dict[str, Any]], Event]] = {
    "updateAuthorizationState": _auth_update,
    "updateNewMessage": _new_message,
    "updateMessageEdited": _edited_message,
    "updateUser": _update_user,
    "user": _user_fields,
    "updateFile": _update_file,
    "file": _file_fields,
    "updateNewChat": _new_chat,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def decode(raw: bytes | str) -> Event:
    """Decode one raw envelope into an Event.

    Args:
        raw: JSON text as returned by the native client.

    Returns:
        The matching Event variant, or UnknownEvent when the envelope is
        malformed, unrecognized or missing required fields.

    """
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        logger.warning("Failed to parse envelope: %r", raw[:200] if raw else raw)
        return UnknownEvent(type_tag=PARSE_ERROR_TAG, raw_envelope=raw)
    if not isinstance(envelope, dict) or not isinstance(envelope.get("@type"), str):
        logger.warning("Envelope has no @type: %r", envelope)
        return UnknownEvent(type_tag=PARSE_ERROR_TAG, raw_envelope=raw)

    tag = envelope["@type"]
    decoder = _DECODERS.get(tag)
    if decoder is None:
        return UnknownEvent(type_tag=tag, raw_envelope=envelope)
    try:
        return decoder(envelope)
    except DecodeError as exc:
        logger.warning("Failed to decode %s: %s", tag, exc)
        return UnknownEvent(type_tag=tag, raw_envelope=envelope)
