"""Tests for the user profile cache."""

from bridge.models import UserInfo
from bridge.users import UserCache


def test_put_and_get() -> None:
    """Profiles are stored by id and replaced on update."""
    cache = UserCache()
    assert cache.get(42) is None

    cache.put(UserInfo(user_id=42, first_name="Ada"))
    cache.put(UserInfo(user_id=42, first_name="Ada", last_name="Lovelace"))

    user = cache.get(42)
    assert user is not None
    assert user.display_name == "Ada Lovelace"
    assert 42 in cache
    assert len(cache) == 1
