"""
auth/strategies.py -- The four ways a request can authenticate.

Each strategy answers two questions:

  applicability(material) -- did the client send this strategy's credential
      material? ABSENT means "not mine, try the next one", PRESENT means "mine,
      and I am the only one that will run", MALFORMED means the material is
      there but structurally broken (half of a header pair, an undecodable
      Basic header). The resolver turns MALFORMED into a hard AccessDenied.

  attempt(ctx) -- run the lookups. On success the strategy fills in
      ctx.identity / ctx.access (and the key or device it used) and returns
      None. On failure it returns an INVALID_CREDENTIAL AuthFailure and leaves
      the identity empty. Side effects (last_used refreshes, device writes)
      only happen after the lookup they belong to has succeeded.

Failure messages never say which part of a credential was wrong: an unknown
email, a wrong password and a wrong key all read the same to the client.

Order is fixed by auth/resolver.py: session, API key, domain key, basic.
"""

from __future__ import annotations

import base64
import binascii
import logging
from enum import Enum

from auth.context import (
    ECHO_DEVICE_ID,
    ECHO_DEVICE_NAME,
    ECHO_LOGIN_ERROR,
    LOGIN_ERROR_2FA_INVALID,
    LOGIN_ERROR_2FA_REQUIRED,
    AuthContext,
    CredentialMaterial,
)
from auth.devices import DeviceTrustManager
from auth.errors import AuthFailure, ErrorKind
from auth.models import DomainKey, DomainKeyUser, User
from auth.permissions import compute_access, domain_key_access
from auth.sessions import SessionStore
from auth.store import CredentialStore
from auth.tokens import check_user_password, hash_api_key
from auth.totp import verify_code

logger = logging.getLogger("dnshost.auth")

_FAILED = "Authentication failed."


class Applicability(Enum):
    ABSENT = "absent"
    PRESENT = "present"
    MALFORMED = "malformed"


def _pair(first: str | None, second: str | None) -> Applicability:
    if first and second:
        return Applicability.PRESENT
    if first or second:
        return Applicability.MALFORMED
    return Applicability.ABSENT


def _invalid(*detail: str) -> AuthFailure:
    return AuthFailure(ErrorKind.INVALID_CREDENTIAL, _FAILED, list(detail))


def _domain_key_identity(store: CredentialStore, key: DomainKey) -> DomainKeyUser | None:
    domain = store.get_domain(key.domain_id)
    if domain is None:
        return None
    return DomainKeyUser(domain_key_id=key.id, domain_id=domain.id, domain_name=domain.name)


class AuthStrategy:
    """Common interface for the resolver's ordered strategy list."""

    name: str = ""

    def applicability(self, material: CredentialMaterial) -> Applicability:
        raise NotImplementedError

    def attempt(self, ctx: AuthContext) -> AuthFailure | None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionStrategy(AuthStrategy):
    """X-Session-ID: resume a session created by an earlier login.

    The session only names who it belongs to. The access map is rebuilt from
    the current records, so permission changes apply immediately and a
    deleted key or user ends the session.
    """

    name = "session"

    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionStore,
        devices: DeviceTrustManager,
        minimum_terms_time: int = 0,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.devices = devices
        self.minimum_terms_time = minimum_terms_time

    def applicability(self, material: CredentialMaterial) -> Applicability:
        return Applicability.PRESENT if material.session_id else Applicability.ABSENT

    def attempt(self, ctx: AuthContext) -> AuthFailure | None:
        session_id = ctx.material.session_id
        record = self.sessions.get(session_id)
        if record is None:
            return _invalid("Session is not valid.")

        if record.domain_key_id is not None:
            key = self.store.get_domain_key(record.domain_key_id)
            identity = _domain_key_identity(self.store, key) if key is not None else None
            if identity is None:
                return _invalid("Session is not valid.")
            self.store.touch_domain_key(key.id)
            ctx.identity = identity
            ctx.domain_key = key
            ctx.access = domain_key_access(key)
        else:
            user = self.store.get_user(record.user_id) if record.user_id is not None else None
            if user is None:
                return _invalid("Session is not valid.")
            key = None
            if record.key_id is not None:
                key = self.store.get_api_key(record.key_id)
                if key is None or key.user_id != user.id:
                    # The key was deleted after the session was created. Nothing
                    # to refresh; the session is simply no longer valid.
                    logger.info("Session for user %s refers to a removed API key", user.id)
                    return _invalid("Session is not valid.")
                self.store.touch_api_key(key.id)
            ctx.device = self.devices.lookup(user.id, ctx.material.device_id)
            ctx.identity = user
            ctx.api_key = key
            ctx.access = compute_access(user, key, self.minimum_terms_time)

        self.sessions.touch(session_id)
        ctx.session_id = session_id
        return None


# ---------------------------------------------------------------------------
# API key
# ---------------------------------------------------------------------------


class ApiKeyStrategy(AuthStrategy):
    """X-API-User + X-API-Key: a user's scoped bearer key."""

    name = "api_key"

    def __init__(self, store: CredentialStore, minimum_terms_time: int = 0) -> None:
        self.store = store
        self.minimum_terms_time = minimum_terms_time

    def applicability(self, material: CredentialMaterial) -> Applicability:
        return _pair(material.api_user, material.api_key)

    def attempt(self, ctx: AuthContext) -> AuthFailure | None:
        user = self.store.get_user_by_email(ctx.material.api_user)
        if user is None:
            return _invalid()
        key = self.store.get_api_key_for_user(user.id, hash_api_key(ctx.material.api_key))
        if key is None:
            return _invalid()

        ctx.identity = user
        ctx.api_key = key
        ctx.access = compute_access(user, key, self.minimum_terms_time)
        self.store.touch_api_key(key.id)
        return None


# ---------------------------------------------------------------------------
# Domain key
# ---------------------------------------------------------------------------


class DomainKeyStrategy(AuthStrategy):
    """X-Domain + X-Domain-Key: delegated access to a single domain."""

    name = "domain_key"

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def applicability(self, material: CredentialMaterial) -> Applicability:
        return _pair(material.domain, material.domain_key)

    def attempt(self, ctx: AuthContext) -> AuthFailure | None:
        domain = self.store.get_domain_by_name(ctx.material.domain)
        if domain is None:
            return _invalid()
        key = self.store.get_domain_key_for_domain(domain.id, hash_api_key(ctx.material.domain_key))
        if key is None:
            return _invalid()

        ctx.identity = DomainKeyUser(domain_key_id=key.id, domain_id=domain.id, domain_name=domain.name)
        ctx.domain_key = key
        ctx.access = domain_key_access(key)
        self.store.touch_domain_key(key.id)
        return None


# ---------------------------------------------------------------------------
# Basic auth + step-up
# ---------------------------------------------------------------------------


def parse_basic_authorization(header: str | None) -> tuple[str, str] | None:
    """Decode 'Basic base64(user:password)'.

    Returns None when the header is not a Basic header at all; raises
    ValueError when it claims to be Basic but cannot be decoded.
    """
    if not header:
        return None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError("Undecodable Basic credentials") from exc
    username, sep, password = decoded.partition(":")
    if not sep or not username:
        raise ValueError("Basic credentials must be user:password")
    return username, password


class BasicAuthStrategy(AuthStrategy):
    """Authorization: Basic -- email + password, then step-up when required.

    Step-up rules, in order:
      - a trusted, unexpired device (X-2FA-Device-ID) skips step-up entirely;
      - no active two-factor keys: nothing to check;
      - active keys but no code: fail with login_error=2fa_required;
      - code matching any active key (+/- one time step): pass, refresh that
        key, and remember the device if the client asked for it;
      - otherwise: fail with login_error=2fa_invalid.
    """

    name = "basic"

    def __init__(
        self,
        store: CredentialStore,
        devices: DeviceTrustManager,
        minimum_terms_time: int = 0,
        totp_window: int = 1,
    ) -> None:
        self.store = store
        self.devices = devices
        self.minimum_terms_time = minimum_terms_time
        self.totp_window = totp_window

    def applicability(self, material: CredentialMaterial) -> Applicability:
        try:
            parsed = parse_basic_authorization(material.authorization)
        except ValueError:
            return Applicability.MALFORMED
        return Applicability.PRESENT if parsed is not None else Applicability.ABSENT

    def attempt(self, ctx: AuthContext) -> AuthFailure | None:
        email, password = parse_basic_authorization(ctx.material.authorization)
        user = self.store.get_user_by_email(email)
        if not check_user_password(user, password):
            return _invalid()

        failure = self._step_up(ctx, user)
        if failure is not None:
            return failure

        ctx.withdraw(ECHO_LOGIN_ERROR)
        ctx.login_error = None
        ctx.identity = user
        ctx.access = compute_access(user, None, self.minimum_terms_time)
        return None

    def _step_up(self, ctx: AuthContext, user: User) -> AuthFailure | None:
        material = ctx.material
        keys = self.store.list_twofactor_keys(user.id, active_only=True)

        device = self.devices.lookup(user.id, material.device_id)
        if device is not None:
            ctx.device = device
            return None
        if not keys:
            return None

        if material.twofactor_code is None:
            ctx.login_error = LOGIN_ERROR_2FA_REQUIRED
            ctx.echo(ECHO_LOGIN_ERROR, LOGIN_ERROR_2FA_REQUIRED)
            return _invalid("2FA key required.")

        matched = next(
            (k for k in keys if verify_code(k.secret, material.twofactor_code, window=self.totp_window)),
            None,
        )
        if matched is None:
            ctx.login_error = LOGIN_ERROR_2FA_INVALID
            ctx.echo(ECHO_LOGIN_ERROR, LOGIN_ERROR_2FA_INVALID)
            return _invalid("2FA key invalid.")

        self.store.touch_twofactor_key(matched.id)
        if material.save_device is not None or material.device_id is not None:
            self._remember_device(ctx, user)
        return None

    def _remember_device(self, ctx: AuthContext, user: User) -> None:
        device = self.devices.remember(user.id, ctx.material.device_id, ctx.material.save_device)
        if device is None:
            ctx.withdraw(ECHO_DEVICE_ID)
            ctx.withdraw(ECHO_DEVICE_NAME)
            return
        ctx.device = device
        ctx.echo(ECHO_DEVICE_ID, device.device_id)
        ctx.echo(ECHO_DEVICE_NAME, device.description)
