"""
tests/test_totp.py -- Unit tests for auth/totp.py.

Covers:
  - current code accepted, neighbouring steps accepted within the window
  - codes two steps away rejected with window=1
  - malformed codes and broken secrets are a failed check, not an exception
  - provisioning URI carries issuer and account
"""

from __future__ import annotations

import pyotp

from auth.totp import new_secret, provisioning_uri, verify_code

_NOW = 1_700_000_000.0


class TestVerifyCode:
    def test_current_code(self) -> None:
        secret = new_secret()
        code = pyotp.TOTP(secret).at(_NOW)
        assert verify_code(secret, code, window=1, for_time=_NOW)

    def test_adjacent_steps_within_window(self) -> None:
        secret = new_secret()
        totp = pyotp.TOTP(secret)
        assert verify_code(secret, totp.at(_NOW - 30), window=1, for_time=_NOW)
        assert verify_code(secret, totp.at(_NOW + 30), window=1, for_time=_NOW)

    def test_outside_window_rejected(self) -> None:
        secret = new_secret()
        totp = pyotp.TOTP(secret)
        code = totp.at(_NOW - 90)
        # Guard against the (rare) collision with an in-window code.
        in_window = {totp.at(_NOW + offset) for offset in (-30, 0, 30)}
        if code not in in_window:
            assert not verify_code(secret, code, window=1, for_time=_NOW)

    def test_whitespace_tolerated(self) -> None:
        secret = new_secret()
        code = pyotp.TOTP(secret).at(_NOW)
        assert verify_code(secret, f" {code[:3]} {code[3:]} ", for_time=_NOW)

    def test_non_digit_code_rejected(self) -> None:
        assert not verify_code(new_secret(), "12ab56", for_time=_NOW)
        assert not verify_code(new_secret(), "", for_time=_NOW)

    def test_broken_secret_is_a_failed_check(self) -> None:
        assert not verify_code("not base32 !!", "123456", for_time=_NOW)


def test_provisioning_uri() -> None:
    uri = provisioning_uri(new_secret(), "alice@example.org", "DNSHost")
    assert uri.startswith("otpauth://totp/")
    assert "issuer=DNSHost" in uri
    assert "alice%40example.org" in uri
