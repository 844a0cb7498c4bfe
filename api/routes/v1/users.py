"""
api/routes/v1/users.py -- Self-service account endpoints.

Routes:
  GET    /api/v1/users/self                      -- profile + effective access
  POST   /api/v1/users/self/terms                -- accept the current terms
  GET    /api/v1/users/self/keys                 -- list API keys
  POST   /api/v1/users/self/keys                 -- create API key (raw key shown once)
  DELETE /api/v1/users/self/keys/{key_id}        -- delete API key
  GET    /api/v1/users/self/2fa                  -- list two-factor keys
  POST   /api/v1/users/self/2fa                  -- create (inactive) two-factor key
  POST   /api/v1/users/self/2fa/{key_id}/verify  -- activate by proving a code
  DELETE /api/v1/users/self/2fa/{key_id}         -- delete two-factor key
  GET    /api/v1/users/self/2fadevices           -- list remembered devices
  DELETE /api/v1/users/self/2fadevices/{id}      -- forget a device

"self" is the acting identity: the impersonated user while impersonating.

Security:
  IDOR guard: every delete passes the acting user's id to the store; the
  store's WHERE clause requires both to match.
  [H3] At most 10 API keys per user.
  Terms acceptance only needs user_write, which the terms gate never removes.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response

from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    TermsResponse,
    TwoFactorDeviceResponse,
    TwoFactorKeyCreate,
    TwoFactorKeyCreatedResponse,
    TwoFactorKeyResponse,
    TwoFactorVerify,
    UserSelfResponse,
)
from auth.context import AuthContext
from auth.dependencies import acting_user, require_permission
from auth.models import APIKey, TwoFactorKey
from auth.permissions import effective_user_permissions, has_permission
from auth.store import MAX_ROW_ID, CredentialStore
from auth.tokens import generate_api_key, hash_api_key, key_prefix
from auth.totp import new_secret, provisioning_uri, verify_code
from core.config import get_settings

logger = logging.getLogger("dnshost.api.users")

_MAX_API_KEYS = 10

# Auth policy:
# - GET routes:             user_read
# - POST / DELETE routes:   user_write
# Domain-key identities never hold either scope.
router = APIRouter()

_read = require_permission("user_read")
_write = require_permission("user_write")


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": message})


# ---------------------------------------------------------------------------
# Profile and terms
# ---------------------------------------------------------------------------


@router.get("/users/self", response_model=UserSelfResponse)
def get_self(ctx: AuthContext = Depends(_read)) -> UserSelfResponse:
    user = acting_user(ctx)
    return UserSelfResponse(
        id=user.id,
        email=user.email,
        real_name=user.real_name,
        accept_terms_timestamp=user.accept_terms_timestamp,
        permissions=effective_user_permissions(user),
        access=ctx.access,
        strategy=ctx.strategy,
        impersonator=ctx.impersonator.email if ctx.impersonator is not None else None,
    )


@router.post("/users/self/terms", response_model=TermsResponse)
def accept_terms(request: Request, ctx: AuthContext = Depends(_write)) -> TermsResponse:
    """Record acceptance of the current terms. Takes effect from the next request."""
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    now = int(time.time())
    store.update_user(user.id, accept_terms_timestamp=now)
    return TermsResponse(accept_terms_timestamp=now)


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@router.get("/users/self/keys", response_model=list[ApiKeyResponse])
def list_api_keys(request: Request, ctx: AuthContext = Depends(_read)) -> list[ApiKeyResponse]:
    """List the user's API keys. Raw key values are never returned."""
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    return [ApiKeyResponse.from_key(k) for k in store.list_api_keys(user.id)]


@router.post("/users/self/keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    ctx: AuthContext = Depends(_write),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is shown ONCE and never stored.

    Each scope flag is capped at what the calling credential itself holds, so
    a narrow key cannot mint a broader one.
    """
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store

    if len(store.list_api_keys(user.id)) >= _MAX_API_KEYS:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "key_limit_reached",
                "message": f"Maximum of {_MAX_API_KEYS} API keys per user. Delete an existing key first.",
            },
        )

    raw_key = generate_api_key()
    key = APIKey(
        user_id=user.id,
        key_hash=hash_api_key(raw_key),
        key_prefix=key_prefix(raw_key),
        description=body.description,
        domains_read=body.domains_read and has_permission(ctx.access, "domains_read"),
        domains_write=body.domains_write and has_permission(ctx.access, "domains_write"),
        user_read=body.user_read and has_permission(ctx.access, "user_read"),
        user_write=body.user_write and has_permission(ctx.access, "user_write"),
        created=int(time.time()),
    )
    key.id = store.create_api_key(key)
    logger.info("API key %s created for user %s", key.id, user.id)
    return ApiKeyCreatedResponse(**ApiKeyResponse.from_key(key).model_dump(), key=raw_key)


@router.delete("/users/self/keys/{key_id}", status_code=204)
def delete_api_key(
    request: Request,
    key_id: int = Path(ge=1, le=MAX_ROW_ID),
    ctx: AuthContext = Depends(_write),
) -> Response:
    """Delete an API key. Sessions created through it stop working immediately."""
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    if not store.delete_api_key(key_id, user.id):
        raise _not_found("API key not found.")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Two-factor keys
# ---------------------------------------------------------------------------


@router.get("/users/self/2fa", response_model=list[TwoFactorKeyResponse])
def list_twofactor_keys(request: Request, ctx: AuthContext = Depends(_read)) -> list[TwoFactorKeyResponse]:
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    return [TwoFactorKeyResponse.from_key(k) for k in store.list_twofactor_keys(user.id)]


@router.post("/users/self/2fa", response_model=TwoFactorKeyCreatedResponse, status_code=201)
def create_twofactor_key(
    request: Request,
    body: TwoFactorKeyCreate,
    ctx: AuthContext = Depends(_write),
) -> TwoFactorKeyCreatedResponse:
    """Create an inactive two-factor key.

    The key does not guard logins until it is verified: a typo while copying
    the secret must not lock the user out.
    """
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    secret = new_secret()
    key = TwoFactorKey(
        user_id=user.id,
        secret=secret,
        description=body.description,
        active=False,
        created=int(time.time()),
    )
    key.id = store.create_twofactor_key(key)
    return TwoFactorKeyCreatedResponse(
        **TwoFactorKeyResponse.from_key(key).model_dump(),
        secret=secret,
        provisioning_uri=provisioning_uri(secret, user.email, get_settings().totp_issuer),
    )


@router.post("/users/self/2fa/{key_id}/verify", response_model=TwoFactorKeyResponse)
def verify_twofactor_key(
    request: Request,
    body: TwoFactorVerify,
    key_id: int = Path(ge=1, le=MAX_ROW_ID),
    ctx: AuthContext = Depends(_write),
) -> TwoFactorKeyResponse:
    """Activate a two-factor key by submitting a current code for it."""
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    key = store.get_twofactor_key(key_id, user.id)
    if key is None:
        raise _not_found("Two-factor key not found.")
    if not verify_code(key.secret, body.code, window=get_settings().totp_valid_window):
        raise HTTPException(
            status_code=400,
            detail={"code": "2fa_invalid", "message": "Two-factor code is not valid."},
        )
    store.activate_twofactor_key(key.id)
    logger.info("Two-factor key %s activated for user %s", key.id, user.id)
    return TwoFactorKeyResponse.from_key(store.get_twofactor_key(key_id, user.id))


@router.delete("/users/self/2fa/{key_id}", status_code=204)
def delete_twofactor_key(
    request: Request,
    key_id: int = Path(ge=1, le=MAX_ROW_ID),
    ctx: AuthContext = Depends(_write),
) -> Response:
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    if not store.delete_twofactor_key(key_id, user.id):
        raise _not_found("Two-factor key not found.")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Remembered devices
# ---------------------------------------------------------------------------


@router.get("/users/self/2fadevices", response_model=list[TwoFactorDeviceResponse])
def list_twofactor_devices(
    request: Request,
    ctx: AuthContext = Depends(_read),
) -> list[TwoFactorDeviceResponse]:
    """List remembered devices. current=True marks the device used for this request."""
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    current_id = ctx.device.id if ctx.device is not None else None
    return [
        TwoFactorDeviceResponse.from_device(d, current=d.id == current_id)
        for d in store.list_twofactor_devices(user.id)
    ]


@router.delete("/users/self/2fadevices/{device_pk}", status_code=204)
def delete_twofactor_device(
    request: Request,
    device_pk: int = Path(ge=1, le=MAX_ROW_ID),
    ctx: AuthContext = Depends(_write),
) -> Response:
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    if not store.delete_twofactor_device(device_pk, user.id):
        raise _not_found("Device not found.")
    return Response(status_code=204)
