"""
auth/resolver.py -- Pick the one strategy a request is using and run it.

Strategies are tried in a fixed order (session, API key, domain key, basic).
The first one whose credential material is present is the only one that
runs: a request carrying a bad X-Session-ID and a good Basic header is
treated as a bad session, never as a fallback to Basic.

Outcomes of resolve():
  None                      -- authenticated, or no credentials at all
  soft failure (not hard)   -- credentials were wrong; the request proceeds
                               unauthenticated and the failure is kept on
                               ctx.failure for the 401 detail
  hard failure              -- malformed material; the caller stops here
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from auth.context import AuthContext
from auth.devices import DeviceTrustManager
from auth.errors import AuthFailure, ErrorKind
from auth.sessions import SessionStore
from auth.store import CredentialStore
from auth.strategies import (
    ApiKeyStrategy,
    Applicability,
    AuthStrategy,
    BasicAuthStrategy,
    DomainKeyStrategy,
    SessionStrategy,
)

logger = logging.getLogger("dnshost.auth")

_MALFORMED_DETAIL = {
    "api_key": "X-API-User and X-API-Key must be sent together.",
    "domain_key": "X-Domain and X-Domain-Key must be sent together.",
    "basic": "Malformed Basic authorization header.",
}


class AuthResolver:
    def __init__(self, strategies: Sequence[AuthStrategy]) -> None:
        self.strategies = list(strategies)

    @classmethod
    def default(
        cls,
        store: CredentialStore,
        sessions: SessionStore,
        devices: DeviceTrustManager,
        minimum_terms_time: int = 0,
        totp_window: int = 1,
    ) -> "AuthResolver":
        return cls(
            [
                SessionStrategy(store, sessions, devices, minimum_terms_time),
                ApiKeyStrategy(store, minimum_terms_time),
                DomainKeyStrategy(store),
                BasicAuthStrategy(store, devices, minimum_terms_time, totp_window),
            ]
        )

    def resolve(self, ctx: AuthContext) -> AuthFailure | None:
        for strategy in self.strategies:
            state = strategy.applicability(ctx.material)
            if state is Applicability.ABSENT:
                continue

            ctx.strategy = strategy.name
            if state is Applicability.MALFORMED:
                detail = _MALFORMED_DETAIL.get(strategy.name, "Malformed credentials.")
                logger.info("Rejected malformed %s credentials", strategy.name)
                return AuthFailure(ErrorKind.ACCESS_DENIED, "Access denied.", [detail])

            failure = strategy.attempt(ctx)
            if failure is None:
                logger.debug("Authenticated %s via %s", ctx.identity.email, strategy.name)
                return None

            ctx.clear_identity()
            ctx.failure = failure
            logger.info("Authentication via %s failed: %s", strategy.name, "; ".join(failure.detail) or failure.message)
            return failure

        return None
