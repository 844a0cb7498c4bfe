"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every route that cares about the caller goes through resolve_auth(), which
runs the full pipeline (resolver -> gatekeeper -> impersonation) once per
request and caches the resulting AuthContext on request.state.auth. The
response-header middleware in api/main.py reads the same object to copy the
echo headers (X-Login-Error, X-2FA-Device-ID, X-Impersonator, ...) onto the
response, including error responses.

resolve_auth() is the soft variant: an anonymous or wrongly-authenticated
caller gets a context with no identity. Hard failures (malformed material,
suspension, impersonation errors) raise immediately.
require_identity() raises AuthenticationRequired when there is no identity.
require_permission(*names) additionally checks the access map.

Layer rule: auth/dependencies.py may import from fastapi/starlette because it
is the HTTP boundary of the auth package. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import Depends, Request
from starlette.concurrency import run_in_threadpool

from auth.context import AuthContext, CredentialMaterial
from auth.errors import AuthError, ErrorKind
from auth.models import User
from auth.permissions import has_permission

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


async def _json_body(request: Request) -> dict | None:
    """Return the JSON object body, or None when there isn't one.

    Only used to pick up the "impersonate" field. A body that is not a JSON
    object is left for the route's own validation to reject.
    """
    if request.method not in _BODY_METHODS:
        return None
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


async def resolve_auth(request: Request) -> AuthContext:
    """Run the auth pipeline for this request (once) and return its context."""
    existing = getattr(request.state, "auth", None)
    if existing is not None:
        return existing

    ctx = AuthContext(material=CredentialMaterial.from_headers(request.headers, await _json_body(request)))
    request.state.auth = ctx

    pipeline = request.app.state.auth_pipeline
    # The stores are synchronous SQLAlchemy; keep them off the event loop.
    failure = await run_in_threadpool(pipeline.run, ctx)
    if failure is not None:
        raise AuthError.from_failure(failure)
    return ctx


def require_identity(ctx: AuthContext = Depends(resolve_auth)) -> AuthContext:
    """Require an authenticated caller. Raises AuthenticationRequired (401) otherwise.

    The 401 detail carries the soft failure's detail lines, e.g.
    "2FA key required." after a correct password on a 2FA-protected account.
    """
    if ctx.identity is None:
        detail = ctx.failure.detail if ctx.failure is not None else []
        raise AuthError(ErrorKind.AUTHENTICATION_REQUIRED, "Authentication required.", detail)
    return ctx


def require_permission(*permissions: str):
    """Dependency factory: require an identity holding every named permission.

    Use as a FastAPI dependency:
        @router.get("/domains")
        def route(ctx: AuthContext = Depends(require_permission("domains_read"))): ...
    """

    def _dependency(ctx: AuthContext = Depends(require_identity)) -> AuthContext:
        for permission in permissions:
            if not has_permission(ctx.access, permission):
                raise AuthError(
                    ErrorKind.PERMISSION_DENIED,
                    "Permission denied.",
                    [f"Missing permission: {permission}"],
                )
        return ctx

    return _dependency


def acting_user(ctx: AuthContext) -> User:
    """Return ctx.identity as a User, or raise AccessDenied for domain-key callers."""
    if not isinstance(ctx.identity, User):
        raise AuthError(ErrorKind.ACCESS_DENIED, "Access denied.", ["This endpoint requires a user account."])
    return ctx.identity
