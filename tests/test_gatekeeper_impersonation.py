"""
tests/test_gatekeeper_impersonation.py -- Unit tests for auth/gatekeeper.py and
auth/impersonation.py, run through AuthPipeline.

Covers:
  - disabled with a reason: hard AccountSuspended carrying the reason
  - disabled without a reason: silently unauthenticated
  - impersonation requires impersonate_users, checked before the target lookup
  - by email, by id, unknown or out-of-range target, unknown selector mode, malformed selector
  - the target's own access map applies, without the caller's key ceiling
  - echo headers name both parties
  - a suspended caller cannot impersonate
"""

from __future__ import annotations

import base64

import pytest

from auth.context import ECHO_IMPERSONATING, ECHO_IMPERSONATOR, AuthContext, CredentialMaterial
from auth.errors import ErrorKind
from auth.pipeline import AuthPipeline
from core.config import get_settings


def _basic(email: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{email}:{password}".encode()).decode()


@pytest.fixture
def pipeline(stores) -> AuthPipeline:
    store, sessions = stores
    return AuthPipeline.build(store, sessions, get_settings())


def _run(pipeline: AuthPipeline, **material):
    ctx = AuthContext(material=CredentialMaterial(**material))
    return ctx, pipeline.run(ctx)


class TestGatekeeper:
    def test_suspended_with_reason(self, pipeline, seed) -> None:
        user = seed.user(disabled=True, disabled_reason="Unpaid invoice")
        ctx, failure = _run(pipeline, authorization=_basic(user.email, seed.password))
        assert failure.kind is ErrorKind.ACCOUNT_SUSPENDED
        assert failure.is_hard
        assert failure.detail == ["Account has been suspended: Unpaid invoice"]
        assert ctx.identity is None
        assert ctx.access == {}

    def test_disabled_without_reason_is_anonymous(self, pipeline, seed) -> None:
        user = seed.user(disabled=True)
        ctx, failure = _run(pipeline, authorization=_basic(user.email, seed.password))
        assert failure is None
        assert ctx.identity is None

    def test_blank_reason_counts_as_no_reason(self, pipeline, seed) -> None:
        user = seed.user(disabled=True, disabled_reason="   ")
        _, failure = _run(pipeline, authorization=_basic(user.email, seed.password))
        assert failure is None

    def test_disabled_user_via_api_key(self, pipeline, seed) -> None:
        user = seed.user(disabled=True, disabled_reason="Abuse")
        raw, _ = seed.api_key(user, domains_read=True)
        _, failure = _run(pipeline, api_user=user.email, api_key=raw)
        assert failure.kind is ErrorKind.ACCOUNT_SUSPENDED

    def test_enabled_user_passes(self, pipeline, seed) -> None:
        user = seed.user()
        ctx, failure = _run(pipeline, authorization=_basic(user.email, seed.password))
        assert failure is None
        assert ctx.identity.id == user.id


class TestImpersonation:
    def test_by_email(self, pipeline, seed) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        target = seed.user("target@example.org")
        ctx, failure = _run(
            pipeline,
            authorization=_basic(admin.email, seed.password),
            impersonate=("email", "TARGET@example.org"),
        )
        assert failure is None
        assert ctx.identity.id == target.id
        assert ctx.impersonator.id == admin.id
        assert ctx.response_headers[ECHO_IMPERSONATOR] == admin.email
        assert ctx.response_headers[ECHO_IMPERSONATING] == target.email

    def test_by_id(self, pipeline, seed) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        target = seed.user("target@example.org")
        ctx, failure = _run(
            pipeline,
            authorization=_basic(admin.email, seed.password),
            impersonate=("id", str(target.id)),
        )
        assert failure is None
        assert ctx.identity.id == target.id

    def test_target_access_without_key_ceiling(self, pipeline, seed) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        target = seed.user("target@example.org")
        raw, _ = seed.api_key(admin, user_read=True)
        ctx, _ = _run(pipeline, api_user=admin.email, api_key=raw, impersonate=("email", target.email))
        assert ctx.identity.id == target.id
        assert ctx.access["domains_write"] is True
        assert ctx.access["user_write"] is True
        assert "impersonate_users" not in ctx.access

    def test_without_permission(self, pipeline, seed) -> None:
        user = seed.user("plain@example.org")
        ctx, failure = _run(
            pipeline,
            authorization=_basic(user.email, seed.password),
            impersonate=("email", "nobody@example.org"),
        )
        # Denied before the lookup: the caller cannot probe for accounts.
        assert failure.kind is ErrorKind.ACCESS_DENIED
        assert ctx.impersonator is None

    def test_key_ceiling_does_not_remove_named_permission(self, pipeline, seed) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        seed.user("target@example.org")
        raw, _ = seed.api_key(admin)
        _, failure = _run(pipeline, api_user=admin.email, api_key=raw, impersonate=("email", "target@example.org"))
        assert failure is None

    @pytest.mark.parametrize(
        "selector",
        [
            ("email", "ghost@example.org"),
            ("id", "99999"),
            ("id", "abc"),
            ("id", "0"),
            ("id", "99999999999999999999999"),
        ],
    )
    def test_unknown_target(self, pipeline, seed, selector) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        _, failure = _run(pipeline, authorization=_basic(admin.email, seed.password), impersonate=selector)
        assert failure.kind is ErrorKind.TARGET_NOT_FOUND
        assert failure.message == "No such user to impersonate."

    def test_unknown_mode(self, pipeline, seed) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        _, failure = _run(pipeline, authorization=_basic(admin.email, seed.password), impersonate=("name", "x"))
        assert failure.kind is ErrorKind.TARGET_NOT_FOUND

    def test_malformed_selector(self, pipeline, seed) -> None:
        admin = seed.user("admin@example.org", permissions={"impersonate_users": True})
        _, failure = _run(pipeline, authorization=_basic(admin.email, seed.password), impersonate=("email",))
        assert failure.kind is ErrorKind.ACCESS_DENIED

    def test_anonymous_caller_ignored(self, pipeline, seed) -> None:
        seed.user("target@example.org")
        ctx, failure = _run(pipeline, impersonate=("email", "target@example.org"))
        assert failure is None
        assert ctx.identity is None

    def test_suspended_caller_cannot_impersonate(self, pipeline, seed) -> None:
        admin = seed.user(
            "admin@example.org",
            permissions={"impersonate_users": True},
            disabled=True,
            disabled_reason="Locked",
        )
        seed.user("target@example.org")
        ctx, failure = _run(
            pipeline,
            authorization=_basic(admin.email, seed.password),
            impersonate=("email", "target@example.org"),
        )
        assert failure.kind is ErrorKind.ACCOUNT_SUSPENDED
        assert ECHO_IMPERSONATING not in ctx.response_headers
