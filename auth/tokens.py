"""
auth/tokens.py -- Password hashing and opaque credential utilities.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt is the right choice
       for low-entropy secrets because its cost factor makes brute-force
       expensive. The _DUMMY_HASH constant enables timing equalization in
       check_user_password() so response time does not reveal whether an
       email address is registered.

  API keys / domain keys: secrets.token_hex(32) gives 256 bits of entropy.
       We store HMAC-SHA256(SECRET_KEY, raw_key) so lookup is a single indexed
       equality match. bcrypt's intentional slowness is unnecessary here.

  Session and device identifiers: secrets.token_urlsafe / uuid4. They are
       bearer values, so they are never logged.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("dnshost.auth")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a failed check, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("dnshost_timing_dummy")


def check_user_password(user: User | None, password: str) -> bool:
    """Verify a password for a possibly-missing user with equalized timing.

    Always runs bcrypt: against _DUMMY_HASH when the user is unknown or has
    no local password, otherwise against the stored hash.
    """
    if user is None or not user.password_hash:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, user.password_hash)


# ---------------------------------------------------------------------------
# API key / domain key generation and hashing
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new user API key: dk_<64 hex chars>."""
    return f"dk_{secrets.token_hex(32)}"


def generate_domain_key() -> str:
    """Generate a new domain key: dom_<64 hex chars>."""
    return f"dom_{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_key) as a hex string.

    Used for both user API keys and domain keys. Deterministic, so the
    store can match on the hash directly.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()


def key_prefix(raw_key: str) -> str:
    """First 12 chars of a raw key, kept for display only."""
    return raw_key[:12]


# ---------------------------------------------------------------------------
# Session and device identifiers
# ---------------------------------------------------------------------------


def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


def generate_device_id() -> str:
    return str(uuid.uuid4()).upper()
