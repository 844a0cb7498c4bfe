"""
api/routes/v1/domains.py -- Domain listing and domain key management.

Routes:
  GET    /api/v1/domains                         -- domains visible to the caller
  GET    /api/v1/domains/{name}                  -- one domain
  GET    /api/v1/domains/{name}/keys             -- list domain keys
  POST   /api/v1/domains/{name}/keys             -- create domain key (raw key shown once)
  DELETE /api/v1/domains/{name}/keys/{key_id}    -- delete domain key

Visibility:
  a domain-key identity sees only its own domain;
  a user with manage_domains sees every domain;
  any other user sees the domains they own.
A domain the caller cannot see answers 404, the same as one that does not exist.

Domain keys manage DNS records, not other keys: key management needs a
user account.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response

from api.models import DomainKeyCreate, DomainKeyCreatedResponse, DomainKeyResponse, DomainResponse
from auth.context import AuthContext
from auth.dependencies import acting_user, require_permission
from auth.models import Domain, DomainKey, DomainKeyUser
from auth.permissions import has_permission
from auth.store import MAX_ROW_ID, CredentialStore
from auth.tokens import generate_domain_key, hash_api_key, key_prefix

logger = logging.getLogger("dnshost.api.domains")

# Auth policy:
# - GET routes:           domains_read
# - POST / DELETE routes: domains_write (and a user identity for key management)
router = APIRouter()

_read = require_permission("domains_read")
_write = require_permission("domains_write")


def _visible_domains(store: CredentialStore, ctx: AuthContext) -> list[Domain]:
    identity = ctx.identity
    if isinstance(identity, DomainKeyUser):
        domain = store.get_domain(identity.domain_id)
        return [domain] if domain is not None else []
    if has_permission(ctx.access, "manage_domains"):
        return store.list_domains()
    return store.list_domains(owner_id=identity.id)


def _visible_domain(store: CredentialStore, ctx: AuthContext, name: str) -> Domain:
    domain = store.get_domain_by_name(name)
    identity = ctx.identity
    if domain is not None:
        if isinstance(identity, DomainKeyUser):
            visible = identity.domain_id == domain.id
        else:
            visible = has_permission(ctx.access, "manage_domains") or domain.owner_id == identity.id
        if visible:
            return domain
    raise HTTPException(status_code=404, detail={"code": "not_found", "message": f"Domain '{name}' not found."})


@router.get("/domains", response_model=list[DomainResponse])
def list_domains(request: Request, ctx: AuthContext = Depends(_read)) -> list[DomainResponse]:
    store: CredentialStore = request.app.state.store
    return [DomainResponse.from_domain(d) for d in _visible_domains(store, ctx)]


@router.get("/domains/{name}", response_model=DomainResponse)
def get_domain(request: Request, name: str, ctx: AuthContext = Depends(_read)) -> DomainResponse:
    store: CredentialStore = request.app.state.store
    return DomainResponse.from_domain(_visible_domain(store, ctx, name))


# ---------------------------------------------------------------------------
# Domain keys
# ---------------------------------------------------------------------------


@router.get("/domains/{name}/keys", response_model=list[DomainKeyResponse])
def list_domain_keys(request: Request, name: str, ctx: AuthContext = Depends(_read)) -> list[DomainKeyResponse]:
    acting_user(ctx)
    store: CredentialStore = request.app.state.store
    domain = _visible_domain(store, ctx, name)
    return [DomainKeyResponse.from_key(k) for k in store.list_domain_keys(domain.id)]


@router.post("/domains/{name}/keys", response_model=DomainKeyCreatedResponse, status_code=201)
def create_domain_key(
    request: Request,
    name: str,
    body: DomainKeyCreate,
    ctx: AuthContext = Depends(_write),
) -> DomainKeyCreatedResponse:
    """Generate a new domain key. The raw key is shown ONCE and never stored."""
    user = acting_user(ctx)
    store: CredentialStore = request.app.state.store
    domain = _visible_domain(store, ctx, name)

    raw_key = generate_domain_key()
    key = DomainKey(
        domain_id=domain.id,
        key_hash=hash_api_key(raw_key),
        key_prefix=key_prefix(raw_key),
        description=body.description,
        domains_write=body.domains_write,
        created=int(time.time()),
    )
    key.id = store.create_domain_key(key)
    logger.info("Domain key %s created for %s by user %s", key.id, domain.name, user.id)
    return DomainKeyCreatedResponse(**DomainKeyResponse.from_key(key).model_dump(), key=raw_key)


@router.delete("/domains/{name}/keys/{key_id}", status_code=204)
def delete_domain_key(
    request: Request,
    name: str,
    key_id: int = Path(ge=1, le=MAX_ROW_ID),
    ctx: AuthContext = Depends(_write),
) -> Response:
    """Delete a domain key. Sessions created through it stop working immediately."""
    acting_user(ctx)
    store: CredentialStore = request.app.state.store
    domain = _visible_domain(store, ctx, name)
    if not store.delete_domain_key(key_id, domain.id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Domain key not found."})
    return Response(status_code=204)
