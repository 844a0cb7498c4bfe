"""
auth/errors.py -- Error kinds for the authentication pipeline.

The pipeline stages (resolver, gatekeeper, impersonation) never raise for
expected failures. They return an AuthFailure: a tagged value naming the kind
of failure plus the human-readable message and detail lines. Only the HTTP
boundary (auth/dependencies.py) turns a failure into an AuthError exception,
and api/main.py maps the kind onto a status code.

Hard kinds abort the request immediately, even on routes that would accept
an anonymous caller. INVALID_CREDENTIAL is deliberately soft: a bad password,
an unknown key or a failed 2FA check all collapse into "unauthenticated" so
the response never says which part of the credential was wrong.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ErrorKind(str, Enum):
    AUTHENTICATION_REQUIRED = "authentication_required"
    ACCESS_DENIED = "access_denied"
    PERMISSION_DENIED = "permission_denied"
    ACCOUNT_SUSPENDED = "account_suspended"
    INVALID_CREDENTIAL = "invalid_credential"
    TARGET_NOT_FOUND = "target_not_found"
    INTERNAL = "internal"


HARD_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.ACCESS_DENIED, ErrorKind.ACCOUNT_SUSPENDED, ErrorKind.TARGET_NOT_FOUND}
)


@dataclass
class AuthFailure:
    """Tagged result of a failed pipeline stage."""

    kind: ErrorKind
    message: str
    detail: list[str] = field(default_factory=list)

    @property
    def is_hard(self) -> bool:
        return self.kind in HARD_KINDS


class AuthError(Exception):
    """Boundary exception raised by FastAPI dependencies.

    api/main.py registers a handler that renders it as the standard error
    envelope with the status code for its kind.
    """

    def __init__(self, kind: ErrorKind, message: str, detail: list[str] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = list(detail or [])

    @classmethod
    def from_failure(cls, failure: AuthFailure) -> "AuthError":
        return cls(failure.kind, failure.message, failure.detail)
