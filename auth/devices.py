"""
auth/devices.py -- Remembered-device trust for skipping step-up authentication.

After a successful 2FA login a client may ask the server to remember its
device. Presenting that device id (X-2FA-Device-ID) on a later password login
skips the one-time code, for as long as the device is younger than the trust
window (30 days by default).

Freshness is measured from `created`, not `last_used`: using a device does
not extend its life. An expired device is deleted by the lookup that finds it
and is reported as not found.

Both write paths here are race-tolerant: two requests expiring the same
device both issue a DELETE (the second affects no rows), and two requests
remembering the same device id converge on one row via the store's
UNIQUE(user_id, device_id) constraint.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from auth.models import TwoFactorDevice
from auth.store import CredentialStore
from auth.tokens import generate_device_id

logger = logging.getLogger("dnshost.auth.devices")

_SECONDS_PER_DAY = 24 * 60 * 60


class DeviceTrustManager:
    def __init__(self, store: CredentialStore, trust_days: int = 30) -> None:
        self.store = store
        self.max_age = trust_days * _SECONDS_PER_DAY

    def is_fresh(self, device: TwoFactorDevice, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - device.created <= self.max_age

    def lookup(self, user_id: int, device_id: str | None) -> TwoFactorDevice | None:
        """Return the user's device if it exists and is still trusted.

        Side effects: refreshes last_used on a hit; deletes the device when it
        has outlived the trust window.
        """
        if not device_id:
            return None
        device = self.store.get_twofactor_device(user_id, device_id)
        if device is None:
            return None
        if not self.is_fresh(device):
            logger.info("Removing expired 2FA device %s for user %s", device.id, user_id)
            self.store.delete_twofactor_device(device.id)
            return None
        self.store.touch_twofactor_device(device.id)
        device.last_used = int(time.time())
        return device

    def remember(
        self,
        user_id: int,
        device_id: str | None = None,
        description: str | None = None,
    ) -> TwoFactorDevice | None:
        """Best-effort create (or refresh) of a remembered device.

        device_id: reuse the client's identifier, or generate one when None.
        description: a blank value or "." means "no description"; the device
            is then labelled with its id.

        Returns None if the device could not be stored. Never raises for
        storage problems -- a failed remember must not fail the login.
        """
        device_id = device_id or generate_device_id()
        if not description or description == ".":
            description = f"Device ID: {device_id}"
        now = int(time.time())
        device = TwoFactorDevice(
            user_id=user_id,
            device_id=device_id,
            description=description[:255],
            created=now,
            last_used=now,
        )
        try:
            return self.store.save_twofactor_device(device)
        except SQLAlchemyError:
            logger.warning("Could not remember 2FA device for user %s", user_id, exc_info=True)
            return None
