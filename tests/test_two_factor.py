"""Tests for the 2FA state controller against a real (in-memory) database."""

from __future__ import annotations

import os

import pytest
import pytest_asyncio

from storefront.core.crypto import SecretCodec
from storefront.core.db import build_engine, build_sessionmaker, create_tables
from storefront.core.errors import CryptoError, InvalidBackupCode, InvalidCode, NoSecret
from storefront.core.security import decode_access_token, hash_password
from storefront.models.user import TwoFactorState, User
from storefront.services import user_store
from storefront.services.accounts import AccountService
from storefront.services.sessions import Authenticated, ChallengeRequired
from storefront.services.totp import current_code
from storefront.services.two_factor import TwoFactorService

from conftest import PASSWORD, FakeMailer


async def _enable(db, two_factor, user, clock):
    result = await two_factor.setup(db, user)
    await two_factor.verify_and_enable(db, user, current_code(result.secret, clock()))
    return result


# ---------- setup ----------

async def test_setup_stores_encrypted_pending_secret(db, two_factor, user, codec):
    result = await two_factor.setup(db, user)

    assert user.two_factor_state == TwoFactorState.pending
    assert user.two_factor_enabled is False
    assert user.two_factor_secret != result.secret
    assert codec.decrypt(user.two_factor_secret) == result.secret
    assert len(result.backup_codes) == 8
    assert len(set(result.backup_codes)) == 8
    assert await two_factor.remaining_backup_codes(db, user) == 8
    assert result.provisioning_uri.startswith("otpauth://totp/")
    assert result.qr_code


async def test_setup_without_verify_does_not_require_second_factor(db, two_factor, user, settings):
    await two_factor.setup(db, user)
    assert two_factor.login_challenge(user) is None

    accounts = AccountService(settings, FakeMailer(), two_factor)
    result = await accounts.login(db, user.email, PASSWORD)
    assert isinstance(result, Authenticated)


async def test_setup_again_replaces_secret_and_codes(db, two_factor, user, clock):
    first = await two_factor.setup(db, user)
    second = await two_factor.setup(db, user)
    assert first.secret != second.secret
    assert await two_factor.remaining_backup_codes(db, user) == 8

    # the first secret no longer verifies
    with pytest.raises(InvalidCode):
        await two_factor.verify_and_enable(db, user, current_code(first.secret, clock()))


async def test_setup_on_enabled_account_returns_to_pending(db, two_factor, user, clock):
    first = await _enable(db, two_factor, user, clock)
    await two_factor.setup(db, user, current_code(first.secret, clock()))
    assert user.two_factor_state == TwoFactorState.pending


async def test_setup_on_enabled_account_needs_a_code(db, two_factor, user, clock):
    await _enable(db, two_factor, user, clock)
    blob = user.two_factor_secret

    for code in (None, "000000"):
        with pytest.raises(InvalidCode):
            await two_factor.setup(db, user, code)

    await db.refresh(user)
    assert user.two_factor_state == TwoFactorState.enabled
    assert user.two_factor_secret == blob
    assert await two_factor.remaining_backup_codes(db, user) == 8


# ---------- verify and enable ----------

async def test_verify_enables(db, two_factor, user, clock):
    await _enable(db, two_factor, user, clock)
    assert user.two_factor_state == TwoFactorState.enabled
    assert two_factor.login_challenge(user) == ChallengeRequired(email=user.email)


async def test_verify_wrong_code_keeps_pending(db, two_factor, user):
    await two_factor.setup(db, user)
    with pytest.raises(InvalidCode):
        await two_factor.verify_and_enable(db, user, "000000")
    await db.refresh(user)
    assert user.two_factor_state == TwoFactorState.pending


async def test_verify_without_setup(db, two_factor, user):
    with pytest.raises(NoSecret):
        await two_factor.verify_and_enable(db, user, "123456")


async def test_enable_refuses_stale_secret(db, two_factor, user):
    await two_factor.setup(db, user)
    stale = user.two_factor_secret
    await two_factor.setup(db, user)
    assert await user_store.enable_if_secret_unchanged(db, user.id, stale) is False
    assert await user_store.enable_if_secret_unchanged(db, user.id, user.two_factor_secret) is True


# ---------- login second step ----------

async def test_end_to_end_totp_login(db, two_factor, user, clock, settings):
    result = await _enable(db, two_factor, user, clock)

    accounts = AccountService(settings, FakeMailer(), two_factor)
    challenge = await accounts.login(db, user.email, PASSWORD)
    assert challenge == ChallengeRequired(email=user.email)

    clock.advance(30)
    code = current_code(result.secret, clock())
    session = await two_factor.validate_login(db, user.email, code)
    assert decode_access_token(settings, session.token)["sub"] == user.id

    clock.advance(90)
    with pytest.raises(InvalidCode):
        await two_factor.validate_login(db, user.email, code)


async def test_validate_rejects_wrong_code(db, two_factor, user, clock):
    await _enable(db, two_factor, user, clock)
    with pytest.raises(InvalidCode):
        await two_factor.validate_login(db, user.email, "000000")


async def test_validate_unknown_user_and_2fa_off_look_the_same(db, two_factor, user):
    with pytest.raises(InvalidCode) as unknown:
        await two_factor.validate_login(db, "nobody@example.com", "123456")
    with pytest.raises(InvalidCode) as not_enabled:
        await two_factor.validate_login(db, user.email, "123456")
    assert unknown.value.message == not_enabled.value.message


async def test_rotated_key_raises_crypto_error(db, two_factor, user, clock, settings):
    await _enable(db, two_factor, user, clock)
    rotated = TwoFactorService(settings, SecretCodec(os.urandom(32)), clock=clock)
    with pytest.raises(CryptoError):
        await rotated.validate_login(db, user.email, "123456")


# ---------- backup codes ----------

async def test_backup_code_single_use(db, two_factor, user, clock, settings):
    result = await _enable(db, two_factor, user, clock)
    code = result.backup_codes[0]

    session = await two_factor.redeem_backup_code(db, user.email, code)
    assert decode_access_token(settings, session.token)["sub"] == user.id
    assert await two_factor.remaining_backup_codes(db, user) == 7

    with pytest.raises(InvalidBackupCode):
        await two_factor.redeem_backup_code(db, user.email, code)
    assert await two_factor.remaining_backup_codes(db, user) == 7


async def test_each_redemption_removes_exactly_one(db, two_factor, user, clock):
    result = await _enable(db, two_factor, user, clock)
    for used, code in enumerate(result.backup_codes, start=1):
        await two_factor.redeem_backup_code(db, user.email, code)
        assert await two_factor.remaining_backup_codes(db, user) == 8 - used


async def test_backup_code_is_case_and_dash_insensitive(db, two_factor, user, clock):
    result = await _enable(db, two_factor, user, clock)
    code = result.backup_codes[0]
    await two_factor.redeem_backup_code(db, user.email, f"{code[:4].lower()}-{code[4:].lower()}")
    assert await two_factor.remaining_backup_codes(db, user) == 7


async def test_backup_code_rejected_when_2fa_pending(db, two_factor, user):
    result = await two_factor.setup(db, user)
    with pytest.raises(InvalidBackupCode):
        await two_factor.redeem_backup_code(db, user.email, result.backup_codes[0])
    assert await two_factor.remaining_backup_codes(db, user) == 8


async def test_unknown_backup_code(db, two_factor, user, clock):
    await _enable(db, two_factor, user, clock)
    with pytest.raises(InvalidBackupCode):
        await two_factor.redeem_backup_code(db, user.email, "ZZZZZZZZ")
    with pytest.raises(InvalidBackupCode):
        await two_factor.redeem_backup_code(db, "nobody@example.com", "ZZZZZZZZ")


async def test_regenerate_backup_codes(db, two_factor, user, clock):
    result = await _enable(db, two_factor, user, clock)
    fresh = await two_factor.regenerate_backup_codes(db, user, current_code(result.secret, clock()))
    assert len(fresh) == 8
    with pytest.raises(InvalidBackupCode):
        await two_factor.redeem_backup_code(db, user.email, result.backup_codes[0])
    await two_factor.redeem_backup_code(db, user.email, fresh[0])


# ---------- disable ----------

async def test_disable_with_wrong_code_changes_nothing(db, two_factor, user, clock):
    await _enable(db, two_factor, user, clock)
    blob = user.two_factor_secret

    with pytest.raises(InvalidCode):
        await two_factor.disable(db, user, "000000")

    await db.refresh(user)
    assert user.two_factor_enabled is True
    assert user.two_factor_secret == blob
    assert await two_factor.remaining_backup_codes(db, user) == 8


async def test_disable_clears_everything(db, two_factor, user, clock):
    result = await _enable(db, two_factor, user, clock)
    await two_factor.disable(db, user, current_code(result.secret, clock()))

    assert user.two_factor_state == TwoFactorState.disabled
    assert user.two_factor_secret is None
    assert await two_factor.remaining_backup_codes(db, user) == 0
    assert two_factor.login_challenge(user) is None


async def test_disable_requires_enabled(db, two_factor, user, clock):
    result = await two_factor.setup(db, user)
    with pytest.raises(InvalidCode):
        await two_factor.disable(db, user, current_code(result.secret, clock()))


# ---------- replay protection (opt-in) ----------

async def test_replay_protection_rejects_reuse_in_same_step(db, user, clock, settings, codec):
    strict = TwoFactorService(
        settings.model_copy(update={"TOTP_REPLAY_PROTECTION": True}), codec, clock=clock
    )
    result = await _enable(db, strict, user, clock)

    # the enabling code already consumed this step
    with pytest.raises(InvalidCode):
        await strict.validate_login(db, user.email, current_code(result.secret, clock()))

    clock.advance(30)
    code = current_code(result.secret, clock())
    await strict.validate_login(db, user.email, code)
    with pytest.raises(InvalidCode):
        await strict.validate_login(db, user.email, code)


async def test_without_replay_protection_code_reusable_in_window(db, two_factor, user, clock):
    result = await _enable(db, two_factor, user, clock)
    code = current_code(result.secret, clock())
    await two_factor.validate_login(db, user.email, code)
    await two_factor.validate_login(db, user.email, code)


# ---------- two requests racing on the same account ----------

@pytest_asyncio.fixture
async def two_sessions(settings, tmp_path):
    # a file database, so each session gets its own connection
    engine = build_engine(
        settings.model_copy(update={"DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'race.db'}"})
    )
    await create_tables(engine)
    maker = build_sessionmaker(engine)
    async with maker() as first, maker() as second:
        yield first, second
    await engine.dispose()


async def _add_user(db) -> User:
    u = User(username="carol", email="carol@example.com", hashed_password=hash_password(PASSWORD))
    db.add(u)
    await db.commit()
    await db.refresh(u)
    return u


async def test_backup_code_race_has_one_winner(two_sessions, two_factor, clock):
    a, b = two_sessions
    user = await _add_user(a)
    result = await _enable(a, two_factor, user, clock)
    code = result.backup_codes[0]

    # both requests have seen the account before either consumes the code
    assert two_factor.login_challenge(await user_store.get_user_by_email(b, user.email))

    await two_factor.redeem_backup_code(a, user.email, code)
    with pytest.raises(InvalidBackupCode):
        await two_factor.redeem_backup_code(b, user.email, code)
    assert await two_factor.remaining_backup_codes(b, user) == 7


async def test_enable_loses_to_concurrent_setup(two_sessions, two_factor, clock):
    a, b = two_sessions
    user_a = await _add_user(a)
    first = await two_factor.setup(a, user_a)

    # another request restarts enrollment after this one read the secret
    user_b = await user_store.get_user_by_id(b, user_a.id)
    await two_factor.setup(b, user_b)

    with pytest.raises(InvalidCode):
        await two_factor.verify_and_enable(a, user_a, current_code(first.secret, clock()))
    assert user_a.two_factor_state == TwoFactorState.pending
    assert user_a.two_factor_secret == user_b.two_factor_secret
