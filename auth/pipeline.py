"""
auth/pipeline.py -- The full per-request authentication chain.

    resolver -> gatekeeper -> impersonation

run() returns the first hard failure, or None. Soft failures from the
resolver stay on ctx.failure and the request carries on unauthenticated;
whether that is acceptable is decided per route by the dependencies in
auth/dependencies.py.
"""

from __future__ import annotations

from auth.context import AuthContext
from auth.devices import DeviceTrustManager
from auth.errors import AuthFailure
from auth.gatekeeper import Gatekeeper
from auth.impersonation import ImpersonationHandler
from auth.resolver import AuthResolver
from auth.sessions import SessionStore
from auth.store import CredentialStore
from core.config import Settings


class AuthPipeline:
    def __init__(
        self,
        resolver: AuthResolver,
        gatekeeper: Gatekeeper,
        impersonation: ImpersonationHandler,
    ) -> None:
        self.resolver = resolver
        self.gatekeeper = gatekeeper
        self.impersonation = impersonation

    @classmethod
    def build(cls, store: CredentialStore, sessions: SessionStore, settings: Settings) -> "AuthPipeline":
        devices = DeviceTrustManager(store, trust_days=settings.device_trust_days)
        resolver = AuthResolver.default(
            store,
            sessions,
            devices,
            minimum_terms_time=settings.minimum_terms_time,
            totp_window=settings.totp_valid_window,
        )
        return cls(resolver, Gatekeeper(), ImpersonationHandler(store, settings.minimum_terms_time))

    def run(self, ctx: AuthContext) -> AuthFailure | None:
        failure = self.resolver.resolve(ctx)
        if failure is not None and failure.is_hard:
            return failure

        for stage in (self.gatekeeper.check, self.impersonation.apply):
            failure = stage(ctx)
            if failure is not None:
                return failure
        return None
