"""Tests for configuration loading."""

from __future__ import annotations

import base64

import pytest
from pydantic import ValidationError

from storefront.core.config import Settings

from conftest import TEST_KEY


def test_settings_defaults():
    s = Settings(_env_file=None, JWT_SECRET="x", TWOFA_ENCRYPTION_KEY=TEST_KEY)
    assert s.ACCESS_TOKEN_EXPIRE_MINUTES == 1440
    assert s.TWOFA_BACKUP_CODE_COUNT == 8
    assert s.TOTP_REPLAY_PROTECTION is False
    assert s.encryption_key == bytes(range(32))


def test_mysql_url_built_from_parts():
    s = Settings(
        _env_file=None, JWT_SECRET="x", TWOFA_ENCRYPTION_KEY=TEST_KEY,
        DB_HOST="db", DB_PORT=3307, DB_USER="shop", DB_PASSWORD="pw", DB_NAME="store",
    )
    assert s.async_database_url == "mysql+aiomysql://shop:pw@db:3307/store?charset=utf8mb4"


def test_database_url_overrides_parts():
    s = Settings(_env_file=None, JWT_SECRET="x", TWOFA_ENCRYPTION_KEY=TEST_KEY,
                 DATABASE_URL="sqlite+aiosqlite:///./dev.db")
    assert s.async_database_url == "sqlite+aiosqlite:///./dev.db"


def test_cors_origins_parsed():
    s = Settings(_env_file=None, JWT_SECRET="x", TWOFA_ENCRYPTION_KEY=TEST_KEY,
                 CORS_ORIGINS=" https://shop.example.com, ,http://localhost:3000")
    assert s.cors_origins == ["https://shop.example.com", "http://localhost:3000"]


def test_env_vars_are_read(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "from-env")
    monkeypatch.setenv("TWOFA_ENCRYPTION_KEY", TEST_KEY)
    monkeypatch.setenv("TWOFA_ISSUER", "Shop")
    s = Settings(_env_file=None)
    assert s.JWT_SECRET == "from-env"
    assert s.TWOFA_ISSUER == "Shop"


@pytest.mark.parametrize("key", [
    "not-base64!!",
    base64.b64encode(b"sixteen byte key").decode(),
])
def test_bad_encryption_key_rejected(key):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, JWT_SECRET="x", TWOFA_ENCRYPTION_KEY=key)


def test_encryption_key_required(monkeypatch):
    monkeypatch.delenv("TWOFA_ENCRYPTION_KEY", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, JWT_SECRET="x")
