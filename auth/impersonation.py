"""
auth/impersonation.py -- Acting as another user.

A caller holding impersonate_users may name a target with X-Impersonate
(email), X-Impersonate-ID (numeric id) or a JSON body field
"impersonate": ["email"|"id", value]. On success the request proceeds as the
target:

  - ctx.identity becomes the target and ctx.impersonator keeps the caller;
  - the access map is rebuilt from the target's own permissions with no key
    ceiling, so the caller's API key scopes do not carry over;
  - X-Impersonator / X-Impersonating echo both emails back to the client.

Checks run in this order: permission, selector shape, target lookup. A caller
without the permission learns nothing about whether the target exists.
"""

from __future__ import annotations

import logging

from auth.context import ECHO_IMPERSONATING, ECHO_IMPERSONATOR, AuthContext
from auth.errors import AuthFailure, ErrorKind
from auth.models import User
from auth.permissions import compute_access, has_permission
from auth.store import MAX_ROW_ID, CredentialStore

logger = logging.getLogger("dnshost.auth.impersonation")

_MODES = ("id", "email")


class ImpersonationHandler:
    def __init__(self, store: CredentialStore, minimum_terms_time: int = 0) -> None:
        self.store = store
        self.minimum_terms_time = minimum_terms_time

    def apply(self, ctx: AuthContext) -> AuthFailure | None:
        selector = ctx.material.impersonate
        if selector is None or ctx.identity is None:
            return None

        if not has_permission(ctx.access, "impersonate_users"):
            return AuthFailure(
                ErrorKind.ACCESS_DENIED,
                "Access denied.",
                ["You do not have permission to impersonate users."],
            )
        if len(selector) != 2 or selector[1] in (None, ""):
            return AuthFailure(ErrorKind.ACCESS_DENIED, "Access denied.", ["Malformed impersonation request."])

        mode, value = selector
        target = self._find_target(mode, value)
        if target is None:
            return AuthFailure(ErrorKind.TARGET_NOT_FOUND, "No such user to impersonate.")

        impersonator = ctx.identity
        logger.info("User %s is impersonating %s", impersonator.email, target.email)
        ctx.impersonator = impersonator
        ctx.identity = target
        ctx.device = None
        ctx.access = compute_access(target, None, self.minimum_terms_time)
        ctx.echo(ECHO_IMPERSONATOR, impersonator.email)
        ctx.echo(ECHO_IMPERSONATING, target.email)
        return None

    def _find_target(self, mode, value) -> User | None:
        if mode not in _MODES:
            return None
        if mode == "email":
            return self.store.get_user_by_email(str(value))
        try:
            user_id = int(value)
        except (TypeError, ValueError):
            return None
        if not 1 <= user_id <= MAX_ROW_ID:
            return None
        return self.store.get_user(user_id)
