"""
auth/permissions.py -- Effective access map computation.

compute_access() is the single place where a request's permissions are
decided for a human user. The three steps run in a fixed order and the order
matters:

  1. Key ceiling. The four base scopes (domains_read, domains_write,
     user_read, user_write) start at True, or at the key's flag when the
     request came in through an API key. A key can only narrow.
  2. Named-permission overlay. Every named permission beyond the base four
     that the user effectively holds is added as True. The overlay never
     touches the base scopes, so it cannot undo the key ceiling.
  3. Terms gate. If the user has not accepted the minimum terms version,
     everything except user_read / user_write is forced False, whatever the
     key or stored permissions say. This keeps the account usable for
     accepting the new terms or managing the profile, and nothing else.

Domain keys never go through compute_access(): domain_key_access() gives
them exactly domains_read=True and domains_write=<key flag>.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from auth.models import AccessMap, APIKey, DomainKey, User

BASE_SCOPES: tuple[str, ...] = ("domains_read", "domains_write", "user_read", "user_write")

# Scopes that survive the terms gate.
TERMS_EXEMPT: frozenset[str] = frozenset({"user_read", "user_write"})

# Named permissions a user can hold. "all" is not in this list: it is the
# default every unset name inherits.
KNOWN_PERMISSIONS: tuple[str, ...] = (
    "domains_create",
    "domains_stats",
    "manage_domains",
    "manage_users",
    "manage_permissions",
    "impersonate_users",
    "manage_site_config",
)


def effective_user_permissions(user: User) -> dict[str, bool]:
    """Resolve the user's stored permissions against the "all" default.

    An explicitly stored value always wins; an unset known permission takes
    the stored value of "all" (False when "all" is unset too). Unknown names
    that happen to be stored are passed through unchanged.
    """
    stored = user.permissions or {}
    default = bool(stored.get("all", False))
    resolved: dict[str, bool] = {name: bool(value) for name, value in stored.items()}
    for name in KNOWN_PERMISSIONS:
        resolved[name] = bool(stored[name]) if name in stored else default
    return resolved


def compute_access(user: User, key: APIKey | None = None, minimum_terms_time: int = 0) -> AccessMap:
    """Return the AccessMap for user, optionally narrowed by an API key."""
    if key is None:
        access: AccessMap = {scope: True for scope in BASE_SCOPES}
    else:
        access = {
            "domains_read": bool(key.domains_read),
            "domains_write": bool(key.domains_write),
            "user_read": bool(key.user_read),
            "user_write": bool(key.user_write),
        }

    for permission, value in effective_user_permissions(user).items():
        if value and permission not in BASE_SCOPES:
            access[permission] = True

    if (user.accept_terms_timestamp or 0) < minimum_terms_time:
        for permission in access:
            if permission not in TERMS_EXEMPT:
                access[permission] = False

    return access


def domain_key_access(key: DomainKey) -> AccessMap:
    """AccessMap for a domain key identity. No user-level scopes, ever."""
    return {"domains_read": True, "domains_write": bool(key.domains_write)}


def has_permission(access: AccessMap, permission: str) -> bool:
    return bool(access.get(permission, False))
