"""Environment-driven configuration for the bridge."""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel

from bridge.auth import TdlibParameters

INT32_MAX = 2**31 - 1
INT64_MAX = 2**63 - 1
TRUTHY = {"1", "true", "TRUE"}


class BridgeConfig(BaseModel):
    """Settings for one Telegram chat bridged to one Discord channel."""

    telegram_api_id: int
    telegram_api_hash: str
    telegram_chat_id: int
    discord_token: str
    discord_server_id: int
    discord_channel_id: int
    discord_webhook_url: str
    debug: bool = False
    tdlib_directory: str = "tdlib"
    files_directory: str = "attachments"
    attachments_base_url: str = "http://127.0.0.1:8080"
    file_server_host: str = "127.0.0.1"
    file_server_port: int = 8080
    file_server_enabled: bool = True
    webhook_timeout_seconds: float = 15.0
    receive_timeout_seconds: float = 0.1
    poll_interval_seconds: float = 0.02

    def tdlib_parameters(self) -> TdlibParameters:
        return TdlibParameters(
            api_id=self.telegram_api_id,
            api_hash=self.telegram_api_hash,
            database_directory=self.tdlib_directory,
            files_directory=self.files_directory,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _required(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        msg = f"{name} is required."
        raise RuntimeError(msg)
    return value


def _int(name: str, raw: str, *, minimum: int, maximum: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer."
        raise RuntimeError(msg) from None
    if not minimum <= value <= maximum:
        msg = f"{name} must be between {minimum} and {maximum}."
        raise RuntimeError(msg)
    return value


def _float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number."
        raise RuntimeError(msg) from None
    if value <= 0:
        msg = f"{name} must be positive."
        raise RuntimeError(msg)
    return value


def _flag(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw in TRUTHY


def load_config() -> BridgeConfig:
    """Read bridge settings from the environment (and a ``.env`` file, if present).

    Returns:
        Validated configuration.

    Raises:
        RuntimeError: If a required variable is missing or a number is malformed.

    """
    load_dotenv()
    return BridgeConfig(
        telegram_api_id=_int("TELEGRAM_API_ID", _required("TELEGRAM_API_ID"), minimum=1, maximum=INT32_MAX),
        telegram_api_hash=_required("TELEGRAM_API_HASH"),
        telegram_chat_id=_int("TELEGRAM_CHAT_ID", _required("TELEGRAM_CHAT_ID"), minimum=-INT64_MAX - 1, maximum=INT64_MAX),
        discord_token=_required("DISCORD_TOKEN"),
        discord_server_id=_int("DISCORD_SERVER", _required("DISCORD_SERVER"), minimum=0, maximum=INT64_MAX),
        discord_channel_id=_int("DISCORD_CHANNEL", _required("DISCORD_CHANNEL"), minimum=0, maximum=INT64_MAX),
        discord_webhook_url=_required("DISCORD_WEBHOOK_URL"),
        debug=_flag("DEBUG", default=False),
        tdlib_directory=os.environ.get("TDLIB_DIRECTORY", "tdlib"),
        files_directory=os.environ.get("FILES_DIRECTORY", "attachments"),
        attachments_base_url=os.environ.get("ATTACHMENTS_BASE_URL", "http://127.0.0.1:8080"),
        file_server_host=os.environ.get("FILE_SERVER_HOST", "127.0.0.1"),
        file_server_port=_int("FILE_SERVER_PORT", os.environ.get("FILE_SERVER_PORT", "8080"), minimum=1, maximum=65535),
        file_server_enabled=_flag("FILE_SERVER_ENABLED", default=True),
        webhook_timeout_seconds=_float("WEBHOOK_TIMEOUT_SECONDS", os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "15")),
    )
