"""
auth/sessions.py -- Server-side session store with sliding expiry.

A session is created after a successful API-key, domain-key or password
login (GET /api/v1/session) and is then presented back in X-Session-ID.
Each session records who it belongs to and, for key-based logins, which key
created it, so the key's scope keeps applying and deleting the key ends the
session.

The permission map is not stored: it is recomputed from the current user and
key records on every request.

Lifetime: every successful use pushes expires_at forward by the TTL. Expired
rows are treated as absent by get() (and deleted there) and are swept in bulk
by purge_expired(), which api/main.py runs from a background task.

Usage:
    sessions = SessionStore(ttl=3600)
    sid = sessions.create(user_id=1, key_id=4)
    record = sessions.get(sid)       # SessionRecord or None
    sessions.touch(sid)
    sessions.purge_expired()

Layer rule: no imports from api/.
"""

from __future__ import annotations

import time
from pathlib import Path

from sqlalchemy import Column, Float, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import SessionRecord
from auth.store import make_engine
from auth.tokens import generate_session_id

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'dnshost_sessions.db'}"
_DEFAULT_TTL = 60 * 60  # 1 hour in seconds

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer),
    Column("key_id", Integer),
    Column("domain_key_id", Integer),
    Column("created", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)


class SessionStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def create(
        self,
        *,
        user_id: int | None = None,
        key_id: int | None = None,
        domain_key_id: int | None = None,
    ) -> str:
        """Create a session and return its opaque identifier.

        Exactly one of user_id / domain_key_id must be given; key_id only
        makes sense alongside user_id.
        """
        if (user_id is None) == (domain_key_id is None):
            raise ValueError("A session belongs to exactly one of a user or a domain key.")
        if key_id is not None and user_id is None:
            raise ValueError("key_id requires user_id.")
        session_id = generate_session_id()
        now = time.time()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    user_id=user_id,
                    key_id=key_id,
                    domain_key_id=domain_key_id,
                    created=now,
                    expires_at=now + self.ttl,
                )
            )
            conn.commit()
        return session_id

    def get(self, session_id: str) -> SessionRecord | None:
        """Return the session if it exists and hasn't expired."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if time.time() > row.expires_at:
            self.delete(session_id)
            return None
        return SessionRecord(
            id=row.id,
            user_id=row.user_id,
            key_id=row.key_id,
            domain_key_id=row.domain_key_id,
            created=row.created,
            expires_at=row.expires_at,
        )

    def touch(self, session_id: str) -> None:
        """Slide the expiry window forward from now."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.update().where(_sessions.c.id == session_id).values(expires_at=time.time() + self.ttl)
            )
            conn.commit()

    def delete(self, session_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < time.time()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
