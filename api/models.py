"""
API request and response models for DNSHost REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal representation. Route handlers map between the two.

Secrets (raw API keys, domain keys, TOTP secrets) appear only in the
*CreatedResponse models, i.e. exactly once, at creation time.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import APIKey, Domain, DomainKey, TwoFactorDevice, TwoFactorKey

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Session and self
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """Response for GET /api/v1/session. Send the value back as X-Session-ID."""

    model_config = ConfigDict(frozen=True)

    session: str


class UserSelfResponse(BaseModel):
    """Response for GET /api/v1/users/self.

    access is the effective AccessMap for this request (after key ceiling,
    overlay and terms gate); permissions is the stored set resolved against
    the "all" default.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    real_name: str
    accept_terms_timestamp: int
    permissions: dict[str, bool]
    access: dict[str, bool]
    strategy: Optional[str] = None
    impersonator: Optional[str] = None


class TermsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    accept_terms_timestamp: int


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class ApiKeyCreate(BaseModel):
    """Request body for POST /api/v1/users/self/keys. Scopes default to read-only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(default="", max_length=255)
    domains_read: bool = True
    domains_write: bool = False
    user_read: bool = True
    user_write: bool = False


class ApiKeyResponse(BaseModel):
    """API key metadata. The raw key is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    description: str
    key_prefix: str
    domains_read: bool
    domains_write: bool
    user_read: bool
    user_write: bool
    created: int
    last_used: Optional[int] = None

    @classmethod
    def from_key(cls, key: APIKey) -> "ApiKeyResponse":
        return cls(
            id=key.id,
            description=key.description,
            key_prefix=key.key_prefix,
            domains_read=key.domains_read,
            domains_write=key.domains_write,
            user_read=key.user_read,
            user_write=key.user_write,
            created=key.created,
            last_used=key.last_used,
        )


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once at creation. key is the raw value; it is not retrievable later."""

    key: str


# ---------------------------------------------------------------------------
# Two-factor keys and devices
# ---------------------------------------------------------------------------


class TwoFactorKeyCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(default="", max_length=255)


class TwoFactorVerify(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=6, max_length=8)


class TwoFactorKeyResponse(BaseModel):
    """Two-factor key metadata. The secret is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    description: str
    active: bool
    created: int
    last_used: Optional[int] = None

    @classmethod
    def from_key(cls, key: TwoFactorKey) -> "TwoFactorKeyResponse":
        return cls(
            id=key.id,
            description=key.description,
            active=key.active,
            created=key.created,
            last_used=key.last_used,
        )


class TwoFactorKeyCreatedResponse(TwoFactorKeyResponse):
    """Returned once at creation, before the key is activated."""

    secret: str
    provisioning_uri: str


class TwoFactorDeviceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    device_id: str
    description: str
    created: int
    last_used: Optional[int] = None
    current: bool = False

    @classmethod
    def from_device(cls, device: TwoFactorDevice, current: bool = False) -> "TwoFactorDeviceResponse":
        return cls(
            id=device.id,
            device_id=device.device_id,
            description=device.description,
            created=device.created,
            last_used=device.last_used,
            current=current,
        )


# ---------------------------------------------------------------------------
# Domains and domain keys
# ---------------------------------------------------------------------------


class DomainResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    owner_id: Optional[int]
    disabled: bool

    @classmethod
    def from_domain(cls, domain: Domain) -> "DomainResponse":
        return cls(id=domain.id, name=domain.name, owner_id=domain.owner_id, disabled=domain.disabled)


class DomainKeyCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(default="", max_length=255)
    domains_write: bool = False


class DomainKeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    description: str
    key_prefix: str
    domains_write: bool
    created: int
    last_used: Optional[int] = None

    @classmethod
    def from_key(cls, key: DomainKey) -> "DomainKeyResponse":
        return cls(
            id=key.id,
            description=key.description,
            key_prefix=key.key_prefix,
            domains_write=key.domains_write,
            created=key.created,
            last_used=key.last_used,
        )


class DomainKeyCreatedResponse(DomainKeyResponse):
    key: str
