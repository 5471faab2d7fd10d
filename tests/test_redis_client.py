"""
Tests for the Redis revocation list
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from database.redis_client import RedisRevocationList, _ttl_seconds


def test_revoke_uses_set_nx_with_ttl():
    client = MagicMock()
    client.set.return_value = True
    revocations = RedisRevocationList(client=client)

    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    assert revocations.revoke("abc", 7, "refresh", expires, "refresh") is True

    args, kwargs = client.set.call_args
    assert args[0] == "revoked_token:abc"
    assert kwargs["nx"] is True
    assert 3500 <= kwargs["ex"] <= 3600


def test_second_revoke_loses():
    client = MagicMock()
    client.set.return_value = None
    revocations = RedisRevocationList(client=client)

    assert revocations.revoke("abc", 7, "refresh", datetime.now(timezone.utc), "refresh") is False


def test_is_revoked():
    client = MagicMock()
    client.exists.return_value = 1
    assert RedisRevocationList(client=client).is_revoked("abc")
    client.exists.assert_called_once_with("revoked_token:abc")

    client.exists.return_value = 0
    assert not RedisRevocationList(client=client).is_revoked("abc")


def test_ttl_never_below_one_second():
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert _ttl_seconds(now - timedelta(minutes=5), now) == 1
    assert _ttl_seconds(now + timedelta(seconds=90), now) == 90
