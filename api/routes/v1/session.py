"""
api/routes/v1/session.py -- Session creation and teardown.

Routes:
  GET    /api/v1/session   -- exchange any accepted credential for a session id
  DELETE /api/v1/session   -- end the session presented in X-Session-ID

A client logs in once (Basic + optional 2FA, an API key, or a domain key),
calls GET /session, then sends X-Session-ID on later requests. The session
remembers which key it was created through, so the key's scopes still apply.

Security:
  GET /session is rate-limited per client address (SESSION_RATE_LIMIT).
  Cache-Control: no-store on the response carrying the session id.
  While impersonating, the session belongs to the impersonator; the target
  has to be named again on each request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.limiter import limiter
from api.models import MessageResponse, SessionResponse
from auth.context import AuthContext
from auth.dependencies import require_identity
from auth.models import DomainKeyUser
from auth.sessions import SessionStore
from core.config import get_settings

logger = logging.getLogger("dnshost.api.session")

_settings = get_settings()

# Auth policy:
# - GET    /api/v1/session: requires an identity (any strategy)
# - DELETE /api/v1/session: requires an identity obtained through X-Session-ID
router = APIRouter()


@router.get("/session", response_model=SessionResponse)
@limiter.limit(_settings.session_rate_limit)
def create_session(
    request: Request,
    response: Response,
    ctx: AuthContext = Depends(require_identity),
) -> SessionResponse:
    """Return a session id for the current credentials.

    Presenting an existing session returns that same session instead of
    minting a new one.
    """
    response.headers["Cache-Control"] = "no-store"
    if ctx.session_id is not None:
        return SessionResponse(session=ctx.session_id)

    sessions: SessionStore = request.app.state.sessions
    owner = ctx.impersonator or ctx.identity
    if isinstance(owner, DomainKeyUser):
        session_id = sessions.create(domain_key_id=owner.domain_key_id)
    else:
        key_id = ctx.api_key.id if ctx.api_key is not None else None
        session_id = sessions.create(user_id=owner.id, key_id=key_id)

    logger.info("Session created for %s via %s", owner.email, ctx.strategy)
    return SessionResponse(session=session_id)


@router.delete("/session", response_model=MessageResponse)
def delete_session(
    request: Request,
    ctx: AuthContext = Depends(require_identity),
) -> MessageResponse:
    """End the current session. Other credentials are unaffected."""
    if ctx.session_id is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_session", "message": "This request was not made with a session."},
        )
    sessions: SessionStore = request.app.state.sessions
    sessions.delete(ctx.session_id)
    return MessageResponse(message="Session ended.")
