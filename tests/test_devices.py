"""
tests/test_devices.py -- Unit tests for auth/devices.py (remembered 2FA devices).

Covers:
  - lookup of a fresh device refreshes last_used
  - lookup of an expired device deletes it and reports not found
  - freshness is measured from created, not last_used
  - remember() generates an id and a default description (blank or ".")
  - remembering the same device id twice converges on one row
  - a storage failure during remember() returns None instead of raising
"""

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError

from auth.devices import DeviceTrustManager
from auth.models import TwoFactorDevice

_DAY = 24 * 60 * 60


def _stored_device(store, user_id: int, device_id: str, age_days: float) -> TwoFactorDevice:
    created = int(time.time() - age_days * _DAY)
    return store.save_twofactor_device(
        TwoFactorDevice(user_id=user_id, device_id=device_id, description="laptop", created=created, last_used=created)
    )


class TestLookup:
    def test_fresh_device_found_and_touched(self, stores, seed) -> None:
        store, _ = stores
        user = seed.user()
        stored = _stored_device(store, user.id, "DEV-1", age_days=10)
        manager = DeviceTrustManager(store, trust_days=30)

        found = manager.lookup(user.id, "DEV-1")
        assert found is not None
        assert found.id == stored.id
        assert store.get_twofactor_device(user.id, "DEV-1").last_used > stored.last_used

    def test_expired_device_deleted(self, stores, seed) -> None:
        store, _ = stores
        user = seed.user()
        _stored_device(store, user.id, "DEV-OLD", age_days=31)
        manager = DeviceTrustManager(store, trust_days=30)

        assert manager.lookup(user.id, "DEV-OLD") is None
        assert store.get_twofactor_device(user.id, "DEV-OLD") is None

    def test_recent_use_does_not_extend_trust(self, stores, seed) -> None:
        store, _ = stores
        user = seed.user()
        device = _stored_device(store, user.id, "DEV-2", age_days=31)
        store.touch_twofactor_device(device.id)
        assert DeviceTrustManager(store, trust_days=30).lookup(user.id, "DEV-2") is None

    def test_device_of_another_user_not_found(self, stores, seed) -> None:
        store, _ = stores
        alice = seed.user("alice@example.org")
        bob = seed.user("bob@example.org")
        _stored_device(store, alice.id, "DEV-A", age_days=1)
        assert DeviceTrustManager(store).lookup(bob.id, "DEV-A") is None

    def test_no_device_id(self, stores, seed) -> None:
        store, _ = stores
        assert DeviceTrustManager(store).lookup(seed.user().id, None) is None


class TestRemember:
    def test_generates_id_and_default_description(self, stores, seed) -> None:
        store, _ = stores
        user = seed.user()
        device = DeviceTrustManager(store).remember(user.id, None, ".")
        assert device is not None
        assert device.id is not None
        assert device.device_id
        assert device.description == f"Device ID: {device.device_id}"

    def test_keeps_client_id_and_description(self, stores, seed) -> None:
        store, _ = stores
        user = seed.user()
        device = DeviceTrustManager(store).remember(user.id, "MY-PHONE", "Pixel")
        assert (device.device_id, device.description) == ("MY-PHONE", "Pixel")

    def test_duplicate_converges_on_one_row(self, stores, seed) -> None:
        store, _ = stores
        user = seed.user()
        manager = DeviceTrustManager(store)
        first = manager.remember(user.id, "SAME", "one")
        second = manager.remember(user.id, "SAME", "two")
        assert second.id == first.id
        devices = store.list_twofactor_devices(user.id)
        assert len(devices) == 1
        assert devices[0].description == "two"

    def test_storage_failure_returns_none(self, stores, seed, monkeypatch) -> None:
        store, _ = stores
        user = seed.user()

        def _broken(device):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store, "save_twofactor_device", _broken)
        assert DeviceTrustManager(store).remember(user.id, "X", None) is None
