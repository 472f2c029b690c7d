from contextlib import contextmanager

import pytest

from backend.scripts import bootstrap_admin
from backend.tests.fake_store import FakeConn, FakeStore


@pytest.fixture
def store(monkeypatch):
    store = FakeStore()

    @contextmanager
    def _connect(_db_url, row_factory=None):
        yield FakeConn(store)

    monkeypatch.setattr(bootstrap_admin.psycopg, "connect", _connect)
    # bcrypt is slow and irrelevant here
    monkeypatch.setattr(bootstrap_admin, "hash_password", lambda pw: f"hashed:{pw}")
    monkeypatch.setenv("BOOTSTRAP_ADMIN", "1")
    monkeypatch.setenv("DATABASE_URL", "postgresql://test/carparts")
    monkeypatch.delenv("BOOTSTRAP_ADMIN_USERNAME", raising=False)
    monkeypatch.delenv("BOOTSTRAP_ADMIN_ROLE", raising=False)
    monkeypatch.delenv("BOOTSTRAP_ADMIN_PASSWORD", raising=False)
    return store


def test_disabled_unless_flag_is_set(store, monkeypatch):
    monkeypatch.setenv("BOOTSTRAP_ADMIN", "0")
    assert bootstrap_admin.main() == 0
    assert store.rows("users") == []


def test_creates_superadmin_once(store, monkeypatch, capsys):
    monkeypatch.setenv("BOOTSTRAP_ADMIN_PASSWORD", "s3cret-pass")

    assert bootstrap_admin.main() == 0
    assert bootstrap_admin.main() == 0

    (user,) = store.rows("users")
    assert user["username"] == "admin"
    assert user["role"] == "superadmin"
    assert user["hashed_password"] == "hashed:s3cret-pass"
    assert "s3cret-pass" not in capsys.readouterr().err


def test_generated_password_is_printed(store, capsys):
    assert bootstrap_admin.main() == 0
    assert "with password:" in capsys.readouterr().err


def test_rejects_unknown_role(store, monkeypatch):
    monkeypatch.setenv("BOOTSTRAP_ADMIN_ROLE", "owner")
    assert bootstrap_admin.main() == 2
    assert store.rows("users") == []


def test_requires_database_url(store, monkeypatch):
    monkeypatch.delenv("DATABASE_URL")
    assert bootstrap_admin.main() == 2
