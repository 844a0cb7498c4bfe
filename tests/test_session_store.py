"""
tests/test_session_store.py -- Unit tests for auth/sessions.py.

Covers:
  - create() requires exactly one owner; key_id only with user_id
  - get() returns the stored owner fields
  - expired sessions read as absent and are deleted on read
  - touch() slides the expiry forward
  - purge_expired() removes only expired rows
"""

from __future__ import annotations

import pytest


class TestCreate:
    def test_user_session(self, stores) -> None:
        _, sessions = stores
        sid = sessions.create(user_id=7, key_id=3)
        record = sessions.get(sid)
        assert record is not None
        assert (record.user_id, record.key_id, record.domain_key_id) == (7, 3, None)
        assert record.expires_at > record.created

    def test_domain_key_session(self, stores) -> None:
        _, sessions = stores
        record = sessions.get(sessions.create(domain_key_id=5))
        assert record.domain_key_id == 5
        assert record.user_id is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"user_id": 1, "domain_key_id": 2},
            {"key_id": 3},
            {"key_id": 3, "domain_key_id": 2},
        ],
    )
    def test_invalid_owner_combinations(self, stores, kwargs) -> None:
        _, sessions = stores
        with pytest.raises(ValueError):
            sessions.create(**kwargs)

    def test_ids_are_unique_and_opaque(self, stores) -> None:
        _, sessions = stores
        a = sessions.create(user_id=1)
        b = sessions.create(user_id=1)
        assert a != b
        assert len(a) >= 32


class TestExpiry:
    def test_unknown_session(self, stores) -> None:
        _, sessions = stores
        assert sessions.get("nope") is None

    def test_expired_session_is_absent_and_deleted(self, stores) -> None:
        _, sessions = stores
        sessions.ttl = -10
        sid = sessions.create(user_id=1)
        assert sessions.get(sid) is None
        assert sessions.delete(sid) is False

    def test_touch_slides_expiry(self, stores) -> None:
        _, sessions = stores
        sid = sessions.create(user_id=1)
        before = sessions.get(sid).expires_at
        sessions.ttl = 10_000
        sessions.touch(sid)
        assert sessions.get(sid).expires_at > before + 5_000

    def test_purge_only_removes_expired(self, stores) -> None:
        _, sessions = stores
        live = sessions.create(user_id=1)
        sessions.ttl = -10
        sessions.create(user_id=2)
        sessions.create(user_id=3)
        assert sessions.purge_expired() == 2
        sessions.ttl = 3600
        assert sessions.get(live) is not None


def test_delete(stores) -> None:
    _, sessions = stores
    sid = sessions.create(user_id=1)
    assert sessions.delete(sid) is True
    assert sessions.get(sid) is None
