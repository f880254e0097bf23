"""Shared fixtures: in-memory SQLite, a controllable clock, a recording mailer."""

from __future__ import annotations

import base64

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from storefront.core.config import Settings
from storefront.core.crypto import SecretCodec
from storefront.core.db import build_engine, build_sessionmaker, create_tables
from storefront.core.security import hash_password
from storefront.main import create_app
from storefront.models.user import User
from storefront.services.two_factor import TwoFactorService

TEST_KEY = base64.b64encode(bytes(range(32))).decode()
# start of a 30s step, so T0 +/- 29s stays within one step of T0
T0 = 1_700_000_010.0
PASSWORD = "correct-horse"


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMailer:
    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to_email: str, subject: str, body_html: str) -> None:
        self.sent.append((to_email, subject, body_html))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        JWT_SECRET="test-jwt-secret",
        TWOFA_ENCRYPTION_KEY=TEST_KEY,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        AUTO_CREATE_TABLES=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def codec(settings) -> SecretCodec:
    return SecretCodec(settings.encryption_key)


@pytest.fixture
def two_factor(settings, codec, clock) -> TwoFactorService:
    return TwoFactorService(settings, codec, clock=clock)


@pytest_asyncio.fixture
async def db(settings):
    engine = build_engine(settings)
    await create_tables(engine)
    async with build_sessionmaker(engine)() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def user(db) -> User:
    u = User(username="alice", email="alice@example.com", hashed_password=hash_password(PASSWORD))
    db.add(u)
    await db.commit()
    await db.refresh(u)
    return u


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def app(settings, clock, mailer):
    app = create_app(settings)
    app.state.two_factor.clock = clock
    app.state.accounts.mailer = mailer
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
