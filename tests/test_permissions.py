"""
tests/test_permissions.py -- Unit tests for auth/permissions.py.

Covers:
  - no key: all four base scopes granted
  - key ceiling: the key's flags become the base scopes, and a stored
    permission cannot widen them back
  - named-permission overlay: only True values are added, "all" default applies
  - terms gate: everything but user_read/user_write forced False
  - domain key access map: exactly domains_read + domains_write
"""

from __future__ import annotations

from auth.models import APIKey, DomainKey, User
from auth.permissions import (
    BASE_SCOPES,
    KNOWN_PERMISSIONS,
    compute_access,
    domain_key_access,
    effective_user_permissions,
    has_permission,
)


def _user(**kwargs) -> User:
    kwargs.setdefault("email", "u@example.org")
    kwargs.setdefault("id", 1)
    return User(**kwargs)


def _key(**scopes) -> APIKey:
    return APIKey(user_id=1, key_hash="h", key_prefix="dk_", **scopes)


class TestEffectivePermissions:
    def test_all_default_applies_to_unset_names(self) -> None:
        perms = effective_user_permissions(_user(permissions={"all": True, "manage_users": False}))
        assert perms["manage_users"] is False
        for name in KNOWN_PERMISSIONS:
            if name != "manage_users":
                assert perms[name] is True

    def test_no_all_means_nothing_granted(self) -> None:
        perms = effective_user_permissions(_user(permissions={"domains_create": True}))
        assert perms["domains_create"] is True
        assert perms["impersonate_users"] is False


class TestComputeAccess:
    def test_no_key_grants_base_scopes(self) -> None:
        access = compute_access(_user())
        for scope in BASE_SCOPES:
            assert access[scope] is True

    def test_key_narrows_base_scopes(self) -> None:
        access = compute_access(_user(), _key(domains_read=True))
        assert access == {
            "domains_read": True,
            "domains_write": False,
            "user_read": False,
            "user_write": False,
        }

    def test_stored_base_scope_cannot_widen_key(self) -> None:
        user = _user(permissions={"all": True, "domains_write": True, "user_write": True})
        access = compute_access(user, _key(domains_read=True))
        assert access["domains_write"] is False
        assert access["user_write"] is False

    def test_overlay_adds_named_permissions(self) -> None:
        user = _user(permissions={"impersonate_users": True, "manage_users": False})
        access = compute_access(user, _key(user_read=True))
        assert access["impersonate_users"] is True
        assert "manage_users" not in access
        assert has_permission(access, "manage_users") is False

    def test_terms_gate_keeps_only_user_scopes(self) -> None:
        user = _user(permissions={"all": True}, accept_terms_timestamp=100)
        access = compute_access(user, None, minimum_terms_time=200)
        assert access["user_read"] is True
        assert access["user_write"] is True
        assert access["domains_read"] is False
        assert access["domains_write"] is False
        assert access["impersonate_users"] is False

    def test_terms_gate_respects_key_ceiling(self) -> None:
        user = _user(accept_terms_timestamp=0)
        access = compute_access(user, _key(user_read=True), minimum_terms_time=1)
        assert access["user_read"] is True
        assert access["user_write"] is False

    def test_accepted_terms_pass_the_gate(self) -> None:
        user = _user(accept_terms_timestamp=500)
        access = compute_access(user, None, minimum_terms_time=500)
        assert access["domains_write"] is True


class TestDomainKeyAccess:
    def test_read_only_key(self) -> None:
        key = DomainKey(domain_id=1, key_hash="h", key_prefix="dom_", domains_write=False)
        assert domain_key_access(key) == {"domains_read": True, "domains_write": False}

    def test_write_key_has_no_user_scopes(self) -> None:
        key = DomainKey(domain_id=1, key_hash="h", key_prefix="dom_", domains_write=True)
        access = domain_key_access(key)
        assert access == {"domains_read": True, "domains_write": True}
        assert not has_permission(access, "user_read")
