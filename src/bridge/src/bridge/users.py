"""In-memory cache of Telegram user profiles."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bridge.models import UserInfo


class UserCache:
    """Profiles keyed by user id; entries live for the process lifetime."""

    def __init__(self) -> None:
        self._users: dict[int, UserInfo] = {}

    def get(self, user_id: int) -> UserInfo | None:
        return self._users.get(user_id)

    def put(self, user: UserInfo) -> None:
        """Insert or replace the profile for ``user.user_id``."""
        self._users[user.user_id] = user

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._users

    def __len__(self) -> int:
        return len(self._users)
