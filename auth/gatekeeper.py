"""
auth/gatekeeper.py -- Post-authentication account suspension check.

Runs after the resolver, on whatever identity it produced. A disabled
identity is always stripped from the request. What the client sees depends
on whether an administrator left a reason:

  disabled + reason    -> hard AccountSuspended carrying the reason
  disabled, no reason  -> silently unauthenticated (routes that need an
                          identity answer 401 as for any anonymous call)
"""

from __future__ import annotations

import logging

from auth.context import AuthContext
from auth.errors import AuthFailure, ErrorKind

logger = logging.getLogger("dnshost.auth")


class Gatekeeper:
    def check(self, ctx: AuthContext) -> AuthFailure | None:
        identity = ctx.identity
        if identity is None or not identity.disabled:
            return None

        reason = (identity.disabled_reason or "").strip()
        logger.info("Blocked disabled account %s", identity.email)
        ctx.clear_identity()
        if reason:
            return AuthFailure(
                ErrorKind.ACCOUNT_SUSPENDED,
                "Access denied.",
                [f"Account has been suspended: {reason}"],
            )
        return None
