"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository (one
clean interface per entity); the _row_to_* functions are the mappers. The auth
pipeline and route code never touch SQL directly.

Entities: users (+ their stored permissions), API keys, domains, domain keys,
two-factor keys and remembered two-factor devices. Sessions live in
auth/sessions.py because their lifetime rules differ.

Security:
  All queries use bound parameters. No f-strings in SQL.
  API keys and domain keys are stored only as HMAC hashes (auth/tokens.py).

Concurrency:
  last_used refreshes are plain UPDATEs -- last write wins, which is fine for
  advisory telemetry. Device creation relies on UNIQUE(user_id, device_id):
  a concurrent duplicate insert turns into a refresh of the existing row, and
  deleting an already-deleted device is a no-op.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    false,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import APIKey, Domain, DomainKey, TwoFactorDevice, TwoFactorKey, User

logger = logging.getLogger("dnshost.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'dnshost.db'}"

# Largest value an SQLite INTEGER primary key can hold.
MAX_ROW_ID = 2**63 - 1

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("real_name", String(255), nullable=False, server_default=""),
    Column("password_hash", Text),
    Column("disabled", Boolean, nullable=False, server_default=false()),
    Column("disabled_reason", Text),
    Column("accept_terms_timestamp", Integer, nullable=False, server_default="0"),
    Column("created", Integer, nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("permission", String(64), nullable=False),
    Column("value", Boolean, nullable=False),
    UniqueConstraint("user_id", "permission", name="uq_user_permission"),
)

_api_keys = Table(
    "apikeys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("key_prefix", String(12), nullable=False),  # display only
    Column("description", String(255), nullable=False, server_default=""),
    Column("domains_read", Boolean, nullable=False, server_default=false()),
    Column("domains_write", Boolean, nullable=False, server_default=false()),
    Column("user_read", Boolean, nullable=False, server_default=false()),
    Column("user_write", Boolean, nullable=False, server_default=false()),
    Column("created", Integer, nullable=False),
    Column("last_used", Integer),
)

_domains = Table(
    "domains",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("domain", String(255), nullable=False, unique=True),  # stored lowercased
    Column("owner_id", Integer),
    Column("disabled", Boolean, nullable=False, server_default=false()),
)

_domain_keys = Table(
    "domainkeys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("domain_id", Integer, nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("key_prefix", String(12), nullable=False),
    Column("description", String(255), nullable=False, server_default=""),
    Column("domains_write", Boolean, nullable=False, server_default=false()),
    Column("created", Integer, nullable=False),
    Column("last_used", Integer),
)

_twofactor_keys = Table(
    "twofactorkeys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("secret", String(64), nullable=False),
    Column("description", String(255), nullable=False, server_default=""),
    Column("active", Boolean, nullable=False, server_default=false()),
    Column("created", Integer, nullable=False),
    Column("last_used", Integer),
)

_twofactor_devices = Table(
    "twofactordevices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("device_id", String(128), nullable=False),
    Column("description", String(255), nullable=False, server_default=""),
    Column("created", Integer, nullable=False),
    Column("last_used", Integer),
    UniqueConstraint("user_id", "device_id", name="uq_user_device"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks both stores need."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now() -> int:
    return int(time.time())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for users, keys, domains and two-factor records.

    Usage:
        store = CredentialStore()
        uid = store.create_user(User(email="admin@example.org", password_hash=hash_password("secret")))
        user = store.get_user_by_email("Admin@Example.org")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Health probe: True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a user (and its stored permissions); return the new ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    real_name=user.real_name,
                    password_hash=user.password_hash,
                    disabled=user.disabled,
                    disabled_reason=user.disabled_reason,
                    accept_terms_timestamp=user.accept_terms_timestamp,
                    created=user.created or _now(),
                )
            )
            user_id = result.inserted_primary_key[0]
            for name, value in user.permissions.items():
                conn.execute(_permissions.insert().values(user_id=user_id, permission=name, value=bool(value)))
            conn.commit()
        return user_id

    def get_user(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_permissions(conn, row.id))

    def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive email lookup. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_permissions(conn, row.id))

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable columns on a user.

        Accepted fields: real_name, password_hash, disabled, disabled_reason,
        accept_terms_timestamp. Returns True if a row was updated.
        """
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_permission(self, user_id: int, permission: str, value: bool) -> None:
        """Store an explicit permission value, replacing any existing one."""
        with self.engine.connect() as conn:
            updated = conn.execute(
                _permissions.update()
                .where((_permissions.c.user_id == user_id) & (_permissions.c.permission == permission))
                .values(value=bool(value))
            )
            if updated.rowcount == 0:
                conn.execute(_permissions.insert().values(user_id=user_id, permission=permission, value=bool(value)))
            conn.commit()

    def _load_permissions(self, conn, user_id: int) -> dict[str, bool]:
        rows = conn.execute(_permissions.select().where(_permissions.c.user_id == user_id)).fetchall()
        return {r.permission: bool(r.value) for r in rows}

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(self, key: APIKey) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    user_id=key.user_id,
                    key_hash=key.key_hash,
                    key_prefix=key.key_prefix,
                    description=key.description,
                    domains_read=key.domains_read,
                    domains_write=key.domains_write,
                    user_read=key.user_read,
                    user_write=key.user_write,
                    created=key.created or _now(),
                )
            )
            conn.commit()
        return result.inserted_primary_key[0]

    def get_api_key(self, key_id: int) -> APIKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.id == key_id)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def get_api_key_for_user(self, user_id: int, key_hash: str) -> APIKey | None:
        """Look up a key by the (owner, key hash) pair. Both must match."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.user_id == user_id) & (_api_keys.c.key_hash == key_hash))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def list_api_keys(self, user_id: int) -> list[APIKey]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.user_id == user_id).order_by(_api_keys.c.id)
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def touch_api_key(self, key_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_api_keys.update().where(_api_keys.c.id == key_id).values(last_used=_now()))
            conn.commit()

    def delete_api_key(self, key_id: int, user_id: int) -> bool:
        """Delete a key. user_id is part of the WHERE clause (ownership check)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.delete().where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Domains and domain keys
    # ------------------------------------------------------------------

    def create_domain(self, domain: Domain) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _domains.insert().values(
                    domain=domain.name.strip().lower(),
                    owner_id=domain.owner_id,
                    disabled=domain.disabled,
                )
            )
            conn.commit()
        return result.inserted_primary_key[0]

    def get_domain(self, domain_id: int) -> Domain | None:
        with self.engine.connect() as conn:
            row = conn.execute(_domains.select().where(_domains.c.id == domain_id)).fetchone()
        return _row_to_domain(row) if row is not None else None

    def get_domain_by_name(self, name: str) -> Domain | None:
        with self.engine.connect() as conn:
            row = conn.execute(_domains.select().where(_domains.c.domain == name.strip().lower())).fetchone()
        return _row_to_domain(row) if row is not None else None

    def list_domains(self, owner_id: int | None = None) -> list[Domain]:
        """All domains, or only those owned by owner_id."""
        query = _domains.select().order_by(_domains.c.domain)
        if owner_id is not None:
            query = query.where(_domains.c.owner_id == owner_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_domain(r) for r in rows]

    def create_domain_key(self, key: DomainKey) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _domain_keys.insert().values(
                    domain_id=key.domain_id,
                    key_hash=key.key_hash,
                    key_prefix=key.key_prefix,
                    description=key.description,
                    domains_write=key.domains_write,
                    created=key.created or _now(),
                )
            )
            conn.commit()
        return result.inserted_primary_key[0]

    def get_domain_key(self, key_id: int) -> DomainKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_domain_keys.select().where(_domain_keys.c.id == key_id)).fetchone()
        return _row_to_domain_key(row) if row is not None else None

    def get_domain_key_for_domain(self, domain_id: int, key_hash: str) -> DomainKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _domain_keys.select().where(
                    (_domain_keys.c.domain_id == domain_id) & (_domain_keys.c.key_hash == key_hash)
                )
            ).fetchone()
        return _row_to_domain_key(row) if row is not None else None

    def list_domain_keys(self, domain_id: int) -> list[DomainKey]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _domain_keys.select().where(_domain_keys.c.domain_id == domain_id).order_by(_domain_keys.c.id)
            ).fetchall()
        return [_row_to_domain_key(r) for r in rows]

    def touch_domain_key(self, key_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_domain_keys.update().where(_domain_keys.c.id == key_id).values(last_used=_now()))
            conn.commit()

    def delete_domain_key(self, key_id: int, domain_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _domain_keys.delete().where((_domain_keys.c.id == key_id) & (_domain_keys.c.domain_id == domain_id))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Two-factor keys
    # ------------------------------------------------------------------

    def create_twofactor_key(self, key: TwoFactorKey) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _twofactor_keys.insert().values(
                    user_id=key.user_id,
                    secret=key.secret,
                    description=key.description,
                    active=key.active,
                    created=key.created or _now(),
                )
            )
            conn.commit()
        return result.inserted_primary_key[0]

    def get_twofactor_key(self, key_id: int, user_id: int) -> TwoFactorKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _twofactor_keys.select().where(
                    (_twofactor_keys.c.id == key_id) & (_twofactor_keys.c.user_id == user_id)
                )
            ).fetchone()
        return _row_to_twofactor_key(row) if row is not None else None

    def list_twofactor_keys(self, user_id: int, active_only: bool = False) -> list[TwoFactorKey]:
        query = _twofactor_keys.select().where(_twofactor_keys.c.user_id == user_id)
        if active_only:
            query = query.where(_twofactor_keys.c.active.is_(True))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_twofactor_keys.c.id)).fetchall()
        return [_row_to_twofactor_key(r) for r in rows]

    def activate_twofactor_key(self, key_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _twofactor_keys.update().where(_twofactor_keys.c.id == key_id).values(active=True, last_used=_now())
            )
            conn.commit()

    def touch_twofactor_key(self, key_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_twofactor_keys.update().where(_twofactor_keys.c.id == key_id).values(last_used=_now()))
            conn.commit()

    def delete_twofactor_key(self, key_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _twofactor_keys.delete().where(
                    (_twofactor_keys.c.id == key_id) & (_twofactor_keys.c.user_id == user_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Two-factor devices
    # ------------------------------------------------------------------

    def get_twofactor_device(self, user_id: int, device_id: str) -> TwoFactorDevice | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _twofactor_devices.select().where(
                    (_twofactor_devices.c.user_id == user_id) & (_twofactor_devices.c.device_id == device_id)
                )
            ).fetchone()
        return _row_to_device(row) if row is not None else None

    def list_twofactor_devices(self, user_id: int) -> list[TwoFactorDevice]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _twofactor_devices.select()
                .where(_twofactor_devices.c.user_id == user_id)
                .order_by(_twofactor_devices.c.id)
            ).fetchall()
        return [_row_to_device(r) for r in rows]

    def save_twofactor_device(self, device: TwoFactorDevice) -> TwoFactorDevice:
        """Insert a device, or refresh it if (user_id, device_id) already exists.

        A concurrent request may have inserted the same device first; the
        UNIQUE constraint turns that race into a refresh of the winner's row.
        Returns the stored device with id and created filled in.
        """
        now = _now()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _twofactor_devices.insert().values(
                        user_id=device.user_id,
                        device_id=device.device_id,
                        description=device.description,
                        created=device.created or now,
                        last_used=device.last_used or now,
                    )
                )
                conn.commit()
            device.id = result.inserted_primary_key[0]
            device.created = device.created or now
            device.last_used = device.last_used or now
            return device
        except IntegrityError:
            logger.debug("Device already stored for user %s; refreshing instead", device.user_id)

        with self.engine.connect() as conn:
            conn.execute(
                _twofactor_devices.update()
                .where(
                    (_twofactor_devices.c.user_id == device.user_id)
                    & (_twofactor_devices.c.device_id == device.device_id)
                )
                .values(description=device.description, last_used=now)
            )
            conn.commit()
        stored = self.get_twofactor_device(device.user_id, device.device_id)
        return stored if stored is not None else device

    def touch_twofactor_device(self, device_pk: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_twofactor_devices.update().where(_twofactor_devices.c.id == device_pk).values(last_used=_now()))
            conn.commit()

    def delete_twofactor_device(self, device_pk: int, user_id: int | None = None) -> bool:
        """Delete a device row. A missing row is a no-op returning False."""
        condition = _twofactor_devices.c.id == device_pk
        if user_id is not None:
            condition = condition & (_twofactor_devices.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_twofactor_devices.delete().where(condition))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, permissions: dict[str, bool]) -> User:
    return User(
        id=row.id,
        email=row.email,
        real_name=row.real_name or "",
        password_hash=row.password_hash,
        permissions=permissions,
        disabled=bool(row.disabled),
        disabled_reason=row.disabled_reason,
        accept_terms_timestamp=row.accept_terms_timestamp or 0,
        created=row.created,
    )


def _row_to_api_key(row) -> APIKey:
    return APIKey(
        id=row.id,
        user_id=row.user_id,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        description=row.description or "",
        domains_read=bool(row.domains_read),
        domains_write=bool(row.domains_write),
        user_read=bool(row.user_read),
        user_write=bool(row.user_write),
        created=row.created,
        last_used=row.last_used,
    )


def _row_to_domain(row) -> Domain:
    return Domain(id=row.id, name=row.domain, owner_id=row.owner_id, disabled=bool(row.disabled))


def _row_to_domain_key(row) -> DomainKey:
    return DomainKey(
        id=row.id,
        domain_id=row.domain_id,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        description=row.description or "",
        domains_write=bool(row.domains_write),
        created=row.created,
        last_used=row.last_used,
    )


def _row_to_twofactor_key(row) -> TwoFactorKey:
    return TwoFactorKey(
        id=row.id,
        user_id=row.user_id,
        secret=row.secret,
        description=row.description or "",
        active=bool(row.active),
        created=row.created,
        last_used=row.last_used,
    )


def _row_to_device(row) -> TwoFactorDevice:
    return TwoFactorDevice(
        id=row.id,
        user_id=row.user_id,
        device_id=row.device_id,
        description=row.description or "",
        created=row.created,
        last_used=row.last_used,
    )
