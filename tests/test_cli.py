"""
tests/test_cli.py -- Tests for the admin CLI in main.py.

Covers:
  - demo seeds users, domains and an all-scopes admin key into an empty DB
  - demo refuses to run twice
  - commands naming an unknown user exit non-zero
  - user creation reads the password from DNSHOST_PASSWORD when not on a TTY
"""

from __future__ import annotations

import io
import uuid

import pytest

import main as cli
from auth.store import CredentialStore
from core.config import get_settings


@pytest.fixture
def cli_db(monkeypatch):
    """Point the CLI at a shared-memory DB kept alive by an extra store."""
    url = f"sqlite:///file:test_cli_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    settings = get_settings().model_copy(update={"database_url": url})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    keeper = CredentialStore(url)
    yield keeper
    keeper.close()


def test_demo_seeds_empty_database(cli_db, capsys) -> None:
    cli.main(["demo", "--domain", "demo.test"])
    out = capsys.readouterr().out
    assert "Admin API key (shown once): dk_" in out

    admin = cli_db.get_user_by_email("admin@demo.test")
    assert admin.permissions == {"all": True}
    keys = cli_db.list_api_keys(admin.id)
    assert len(keys) == 1
    assert all((keys[0].domains_read, keys[0].domains_write, keys[0].user_read, keys[0].user_write))
    assert {d.name for d in cli_db.list_domains()} == {"demo.test", "alice.demo.test", "bob.demo.test"}


def test_demo_refuses_non_empty_database(cli_db) -> None:
    cli.main(["demo"])
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["demo"])
    assert excinfo.value.code == 1


def test_unknown_user_exits_non_zero(cli_db) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["apikey", "ghost@example.org"])
    assert excinfo.value.code == 1


def test_create_user_and_disable(cli_db, monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO())
    monkeypatch.setenv("DNSHOST_PASSWORD", "long enough password")
    cli.main(["user", "Carol@Example.org", "--name", "Carol"])
    cli.main(["disable", "carol@example.org", "--reason", "Testing"])

    user = cli_db.get_user_by_email("carol@example.org")
    assert user.real_name == "Carol"
    assert user.disabled is True
    assert user.disabled_reason == "Testing"
    assert "Created user" in capsys.readouterr().out
