"""
auth/totp.py -- Time-based one-time code verification (RFC 6238) via pyotp.

Codes are 6 digits over 30-second steps. verify_code() accepts the code for
the current step and for `window` steps either side, which absorbs clock
skew between the server and the user's authenticator app.
"""

from __future__ import annotations

import pyotp


def new_secret() -> str:
    """Generate a fresh base32 secret for a new two-factor key."""
    return pyotp.random_base32()


def provisioning_uri(secret: str, account: str, issuer: str) -> str:
    """otpauth:// URI for QR-code enrolment in authenticator apps."""
    return pyotp.TOTP(secret).provisioning_uri(name=account, issuer_name=issuer)


def verify_code(secret: str, code: str, window: int = 1, for_time: float | None = None) -> bool:
    """Return True if code is valid for secret within +/- window time steps.

    Malformed input (non-digit codes, a broken secret) is a failed check.
    """
    code = (code or "").strip().replace(" ", "")
    if not code.isdigit():
        return False
    try:
        return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=window)
    except (ValueError, TypeError):
        # binascii.Error (bad base32) is a ValueError subclass
        return False
