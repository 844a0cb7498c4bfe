"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
pipeline do the work; these classes only own the shape of each record.

Timestamps are integer Unix seconds. The terms gate and the device-trust
window compare them numerically against configured thresholds, so the
integer form keeps those comparisons exact.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

# Permission name -> granted. Recomputed per request, never persisted.
AccessMap = dict[str, bool]


@dataclass
class User:
    """A human account.

    email is unique and matched case-insensitively (the store lowercases it
    on write and on lookup).

    permissions holds only the names explicitly stored for this user. Any
    name not present inherits the stored value of "all" (see
    auth.permissions.effective_user_permissions).

    disabled_reason: when a disabled account carries a reason, requests are
    rejected with an explicit "account suspended" error instead of being
    treated as anonymous.
    """

    email: str
    real_name: str = ""
    id: int | None = None
    password_hash: str | None = None
    permissions: dict[str, bool] = field(default_factory=dict)
    disabled: bool = False
    disabled_reason: str | None = None
    accept_terms_timestamp: int = 0
    created: int = 0


@dataclass
class APIKey:
    """A user-owned bearer credential that can only narrow the owner's scopes.

    key_hash is HMAC-SHA256(SECRET_KEY, raw_key); the raw key is returned once
    at creation. key_prefix is kept for display so users can tell keys apart.
    """

    user_id: int
    key_hash: str
    key_prefix: str
    description: str = ""
    domains_read: bool = False
    domains_write: bool = False
    user_read: bool = False
    user_write: bool = False
    id: int | None = None
    created: int = 0
    last_used: int | None = None


@dataclass
class Domain:
    """Minimal domain row: enough to resolve domain keys and ownership."""

    name: str
    owner_id: int | None = None
    disabled: bool = False
    id: int | None = None


@dataclass
class DomainKey:
    """A domain-owned bearer credential. Never tied to a human user."""

    domain_id: int
    key_hash: str
    key_prefix: str
    description: str = ""
    domains_write: bool = False
    id: int | None = None
    created: int = 0
    last_used: int | None = None


@dataclass
class DomainKeyUser:
    """Synthetic acting identity produced by resolving a DomainKey.

    Carries no permission set of its own: its AccessMap is derived from the
    key alone (see auth.permissions.domain_key_access).
    """

    domain_key_id: int
    domain_id: int
    domain_name: str
    disabled: bool = False
    disabled_reason: str | None = None

    @property
    def email(self) -> str:
        return f"domainkey-{self.domain_key_id}@{self.domain_name}"


@dataclass
class TwoFactorKey:
    """A TOTP secret used as a step-up factor after the password check.

    Keys are created inactive and become active once the user proves
    possession by submitting a valid code.
    """

    user_id: int
    secret: str  # base32
    description: str = ""
    active: bool = False
    id: int | None = None
    created: int = 0
    last_used: int | None = None


@dataclass
class TwoFactorDevice:
    """A remembered device that bypasses step-up while it is fresh.

    Valid only while now - created <= device_trust_days. Expired devices are
    deleted by the lookup that finds them.
    """

    user_id: int
    device_id: str
    description: str = ""
    id: int | None = None
    created: int = 0
    last_used: int | None = None


@dataclass
class SessionRecord:
    """Server-side session keyed by an opaque identifier.

    Exactly one of user_id / domain_key_id is set. key_id is set when the
    session was created through an API key, so the key's scope keeps applying
    and deleting the key invalidates the session.
    """

    id: str
    user_id: int | None = None
    key_id: int | None = None
    domain_key_id: int | None = None
    created: float = 0.0
    expires_at: float = 0.0


Identity = Union[User, DomainKeyUser]
