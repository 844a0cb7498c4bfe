"""
auth/context.py -- Request-scoped authentication state.

One AuthContext is built per request by the HTTP boundary and handed, by
reference, to every pipeline stage: the resolver's strategies fill in the
identity and access map, the gatekeeper may clear them, the impersonation
handler may swap the identity. Nothing here is shared between requests.

CredentialMaterial is the raw input side (what the client sent); the rest of
AuthContext is the output side (what the pipeline decided, plus the echo
values that go back to the client as response headers).

Layer rule: no imports from api/. Header names live here so the boundary and
the tests agree on them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from auth.errors import AuthFailure
from auth.models import AccessMap, APIKey, DomainKey, Identity, TwoFactorDevice, User

# ---------------------------------------------------------------------------
# Request headers
# ---------------------------------------------------------------------------

HEADER_SESSION_ID = "X-Session-ID"
HEADER_API_USER = "X-API-User"
HEADER_API_KEY = "X-API-Key"
HEADER_DOMAIN = "X-Domain"
HEADER_DOMAIN_KEY = "X-Domain-Key"
HEADER_AUTHORIZATION = "Authorization"
HEADER_2FA_CODE = "X-2FA-Key"
HEADER_2FA_SAVE_DEVICE = "X-2FA-Save-Device"
HEADER_2FA_DEVICE_ID = "X-2FA-Device-ID"
HEADER_IMPERSONATE = "X-Impersonate"
HEADER_IMPERSONATE_ID = "X-Impersonate-ID"

# ---------------------------------------------------------------------------
# Response echo headers
# ---------------------------------------------------------------------------

ECHO_LOGIN_ERROR = "X-Login-Error"
ECHO_DEVICE_ID = "X-2FA-Device-ID"
ECHO_DEVICE_NAME = "X-2FA-Device-Name"
ECHO_IMPERSONATOR = "X-Impersonator"
ECHO_IMPERSONATING = "X-Impersonating"

LOGIN_ERROR_2FA_REQUIRED = "2fa_required"
LOGIN_ERROR_2FA_INVALID = "2fa_invalid"


@dataclass
class CredentialMaterial:
    """Everything the client sent that the auth pipeline may consume.

    Empty strings are normalized to None by from_headers() so "present"
    always means "non-empty".
    """

    session_id: str | None = None
    api_user: str | None = None
    api_key: str | None = None
    domain: str | None = None
    domain_key: str | None = None
    authorization: str | None = None
    twofactor_code: str | None = None
    save_device: str | None = None
    device_id: str | None = None
    # (mode, value) where mode is "id" or "email"; anything else is rejected
    # by the impersonation handler.
    impersonate: tuple | None = None

    @classmethod
    def from_headers(cls, headers, body: dict | None = None) -> "CredentialMaterial":
        """Build from a case-insensitive header mapping and an optional JSON body.

        Impersonation headers take precedence over the body's "impersonate"
        field.
        """

        def _get(name: str) -> str | None:
            value = headers.get(name)
            if value is None:
                return None
            value = value.strip()
            return value or None

        impersonate: tuple | None = None
        if _get(HEADER_IMPERSONATE):
            impersonate = ("email", _get(HEADER_IMPERSONATE))
        elif _get(HEADER_IMPERSONATE_ID):
            impersonate = ("id", _get(HEADER_IMPERSONATE_ID))
        elif body and body.get("impersonate") is not None:
            raw = body["impersonate"]
            impersonate = tuple(raw) if isinstance(raw, (list, tuple)) else (raw,)

        # A present save-device header asks for the device to be remembered
        # even when empty; "." is the explicit "no description" form.
        save_device = headers.get(HEADER_2FA_SAVE_DEVICE)
        if save_device is not None:
            save_device = save_device.strip() or "."

        return cls(
            session_id=_get(HEADER_SESSION_ID),
            api_user=_get(HEADER_API_USER),
            api_key=_get(HEADER_API_KEY),
            domain=_get(HEADER_DOMAIN),
            domain_key=_get(HEADER_DOMAIN_KEY),
            authorization=_get(HEADER_AUTHORIZATION),
            twofactor_code=_get(HEADER_2FA_CODE),
            save_device=save_device,
            device_id=_get(HEADER_2FA_DEVICE_ID),
            impersonate=impersonate,
        )


@dataclass
class AuthContext:
    """Mutable per-request auth state threaded through the pipeline."""

    material: CredentialMaterial = field(default_factory=CredentialMaterial)

    identity: Identity | None = None
    access: AccessMap = field(default_factory=dict)
    # Name of the strategy that ran ("session", "api_key", "domain_key", "basic"), if any.
    strategy: str | None = None

    session_id: str | None = None
    api_key: APIKey | None = None
    domain_key: DomainKey | None = None
    device: TwoFactorDevice | None = None
    impersonator: User | None = None

    # Soft failure recorded by the resolver; surfaced only if the route needs an identity.
    failure: AuthFailure | None = None
    login_error: str | None = None
    response_headers: dict[str, str] = field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    def clear_identity(self) -> None:
        self.identity = None
        self.access = {}
        self.api_key = None
        self.domain_key = None
        self.device = None

    def echo(self, name: str, value: str) -> None:
        self.response_headers[name] = value

    def withdraw(self, name: str) -> None:
        self.response_headers.pop(name, None)
