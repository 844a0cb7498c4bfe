#!/usr/bin/env python3
"""
DNSHost admin CLI -- bootstrap accounts, permissions, domains and keys.

Usage:
  python main.py user admin@example.org --name "Admin" --all
  python main.py permission admin@example.org impersonate_users on
  python main.py disable someone@example.org --reason "Unpaid invoice"
  python main.py enable someone@example.org
  python main.py domain example.org --owner admin@example.org
  python main.py apikey admin@example.org --domains-write --description "CI"
  python main.py domainkey example.org --write --description "certbot"
  python main.py purge-sessions
  python main.py demo --domain example.org

The password for `user` is read from the terminal (or DNSHOST_PASSWORD when
stdin is not a TTY). Raw API and domain keys are printed once; only their
HMAC is stored, so they cannot be shown again.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the credential database.
  SECRET_KEY     Required unless DEBUG=true. Must match the API server's key,
                 or keys created here will not verify.
"""

import argparse
import getpass
import os
import secrets
import sys
import time

from sqlalchemy.exc import IntegrityError

from auth.models import APIKey, Domain, DomainKey, User
from auth.permissions import KNOWN_PERMISSIONS
from auth.sessions import SessionStore
from auth.store import CredentialStore
from auth.tokens import generate_api_key, generate_domain_key, hash_api_key, hash_password, key_prefix
from core.config import get_settings

_ON = ("on", "true", "yes", "1")
_OFF = ("off", "false", "no", "0")


def _fail(message: str) -> None:
    print(f"  [!] {message}", file=sys.stderr)
    sys.exit(1)


def _require_user(store: CredentialStore, email: str) -> User:
    user = store.get_user_by_email(email)
    if user is None:
        _fail(f"No user with email '{email}'.")
    return user


def _read_password() -> str:
    if sys.stdin.isatty():
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            _fail("Passwords do not match.")
    else:
        password = os.environ.get("DNSHOST_PASSWORD", "")
    if len(password) < 8:
        _fail("Password must be at least 8 characters.")
    return password


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_user(store: CredentialStore, args: argparse.Namespace) -> None:
    permissions = {"all": True} if args.all else {}
    user = User(
        email=args.email,
        real_name=args.name or "",
        password_hash=hash_password(_read_password()),
        permissions=permissions,
        accept_terms_timestamp=int(time.time()) if args.accept_terms else 0,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        _fail(f"A user with email '{args.email}' already exists.")
    print(f"  Created user {args.email} (id {user_id})")


def cmd_permission(store: CredentialStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    value = args.value.lower()
    if value not in _ON + _OFF:
        _fail(f"Value must be one of: {', '.join(_ON + _OFF)}")
    if args.permission != "all" and args.permission not in KNOWN_PERMISSIONS:
        print(f"  [!] '{args.permission}' is not a known permission; storing it anyway.")
    store.set_permission(user.id, args.permission, value in _ON)
    print(f"  {args.permission}={value in _ON} for {user.email}")


def cmd_disable(store: CredentialStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    store.update_user(user.id, disabled=True, disabled_reason=args.reason or None)
    print(f"  Disabled {user.email}" + (f" ({args.reason})" if args.reason else ""))


def cmd_enable(store: CredentialStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    store.update_user(user.id, disabled=False, disabled_reason=None)
    print(f"  Enabled {user.email}")


def cmd_domain(store: CredentialStore, args: argparse.Namespace) -> None:
    owner = _require_user(store, args.owner) if args.owner else None
    try:
        domain_id = store.create_domain(Domain(name=args.name, owner_id=owner.id if owner else None))
    except IntegrityError:
        _fail(f"Domain '{args.name}' already exists.")
    print(f"  Created domain {args.name} (id {domain_id})")


def cmd_apikey(store: CredentialStore, args: argparse.Namespace) -> None:
    user = _require_user(store, args.email)
    raw_key = generate_api_key()
    key_id = store.create_api_key(
        APIKey(
            user_id=user.id,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_prefix(raw_key),
            description=args.description,
            domains_read=not args.no_domains_read,
            domains_write=args.domains_write,
            user_read=not args.no_user_read,
            user_write=args.user_write,
        )
    )
    print(f"  API key {key_id} for {user.email}:")
    print(f"    X-API-User: {user.email}")
    print(f"    X-API-Key:  {raw_key}")


def cmd_domainkey(store: CredentialStore, args: argparse.Namespace) -> None:
    domain = store.get_domain_by_name(args.domain)
    if domain is None:
        _fail(f"No domain named '{args.domain}'.")
    raw_key = generate_domain_key()
    key_id = store.create_domain_key(
        DomainKey(
            domain_id=domain.id,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_prefix(raw_key),
            description=args.description,
            domains_write=args.write,
        )
    )
    print(f"  Domain key {key_id} for {domain.name}:")
    print(f"    X-Domain:     {domain.name}")
    print(f"    X-Domain-Key: {raw_key}")


def cmd_demo(store: CredentialStore, args: argparse.Namespace) -> None:
    """Seed an admin with an all-scopes API key plus two ordinary users.

    Refuses to run against a database that already has users.
    """
    if store.has_users():
        _fail("Database already has users; demo data is only seeded into an empty database.")

    accounts = [
        ("admin@" + args.domain, "Admin", {"all": True}),
        ("alice@" + args.domain, "Alice", {"domains_create": True}),
        ("bob@" + args.domain, "Bob", {}),
    ]
    now = int(time.time())
    created: list[User] = []
    for email, name, permissions in accounts:
        password = secrets.token_urlsafe(12)
        user = User(
            email=email,
            real_name=name,
            password_hash=hash_password(password),
            permissions=permissions,
            accept_terms_timestamp=now,
        )
        user.id = store.create_user(user)
        created.append(user)
        print(f"  {email:<28} password: {password}")

    admin, alice, bob = created
    store.create_domain(Domain(name=args.domain, owner_id=admin.id))
    store.create_domain(Domain(name=f"alice.{args.domain}", owner_id=alice.id))
    store.create_domain(Domain(name=f"bob.{args.domain}", owner_id=bob.id))

    raw_key = generate_api_key()
    store.create_api_key(
        APIKey(
            user_id=admin.id,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_prefix(raw_key),
            description="demo admin key",
            domains_read=True,
            domains_write=True,
            user_read=True,
            user_write=True,
        )
    )
    print(f"  Admin API key (shown once): {raw_key}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="DNSHost admin CLI",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("user", help="Create a user (password prompted)")
    p.add_argument("email")
    p.add_argument("--name", help="Real name")
    p.add_argument("--all", action="store_true", help="Grant every named permission (all=true)")
    p.add_argument("--accept-terms", action="store_true", help="Mark the current terms as accepted")
    p.set_defaults(func=cmd_user)

    p = sub.add_parser("permission", help="Set a stored permission value")
    p.add_argument("email")
    p.add_argument("permission", help=f"all, or one of: {', '.join(KNOWN_PERMISSIONS)}")
    p.add_argument("value", help="on/off")
    p.set_defaults(func=cmd_permission)

    p = sub.add_parser("disable", help="Disable an account")
    p.add_argument("email")
    p.add_argument("--reason", help="Shown to the user as 'Account has been suspended: <reason>'")
    p.set_defaults(func=cmd_disable)

    p = sub.add_parser("enable", help="Re-enable an account")
    p.add_argument("email")
    p.set_defaults(func=cmd_enable)

    p = sub.add_parser("domain", help="Register a domain")
    p.add_argument("name")
    p.add_argument("--owner", help="Owner email")
    p.set_defaults(func=cmd_domain)

    p = sub.add_parser("apikey", help="Create an API key for a user")
    p.add_argument("email")
    p.add_argument("--description", default="")
    p.add_argument("--no-domains-read", action="store_true")
    p.add_argument("--domains-write", action="store_true")
    p.add_argument("--no-user-read", action="store_true")
    p.add_argument("--user-write", action="store_true")
    p.set_defaults(func=cmd_apikey)

    p = sub.add_parser("domainkey", help="Create a key for a domain")
    p.add_argument("domain")
    p.add_argument("--description", default="")
    p.add_argument("--write", action="store_true", help="Allow record changes (domains_write)")
    p.set_defaults(func=cmd_domainkey)

    p = sub.add_parser("demo", help="Seed an empty database with demo accounts, domains and a key")
    p.add_argument("--domain", default="example.org", help="Base domain for demo accounts")
    p.set_defaults(func=cmd_demo)

    p = sub.add_parser("purge-sessions", help="Delete expired sessions now")
    p.set_defaults(func=None)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "purge-sessions":
        sessions = SessionStore(settings.database_url, ttl=settings.session_ttl_seconds)
        try:
            print(f"  Purged {sessions.purge_expired()} expired sessions")
        finally:
            sessions.close()
        return

    store = CredentialStore(settings.database_url)
    try:
        args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    main()
