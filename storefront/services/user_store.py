"""User lookups and the 2FA writes that must not be read-modify-write.

Every function here stages work on the session; callers commit. The
conditional ones report through the statement rowcount whether they
applied, so two requests racing on the same row cannot both win.
"""
from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.backup_code import BackupCode
from storefront.models.user import User


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    res = await db.execute(select(User).where(User.id == user_id))
    return res.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    res = await db.execute(select(User).where(User.email == email.strip().lower()))
    return res.scalar_one_or_none()


async def get_user_by_email_or_username(db: AsyncSession, email: str, username: str) -> User | None:
    res = await db.execute(
        select(User).where(or_(User.email == email.strip().lower(), User.username == username))
    )
    return res.scalars().first()


async def get_user_by_token(db: AsyncSession, column, token_hash: str) -> User | None:
    res = await db.execute(select(User).where(column == token_hash))
    return res.scalar_one_or_none()


# ---------- 2FA ----------

async def replace_backup_codes(db: AsyncSession, user_id: str, code_hashes: list[str]) -> None:
    await db.execute(
        delete(BackupCode)
        .where(BackupCode.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    if code_hashes:
        await db.execute(
            insert(BackupCode),
            [{"user_id": user_id, "code_hash": h} for h in code_hashes],
        )


async def store_pending_secret(
    db: AsyncSession, user_id: str, encrypted_secret: str, code_hashes: list[str]
) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(two_factor_secret=encrypted_secret, two_factor_enabled=False, two_factor_last_step=None)
        .execution_options(synchronize_session=False)
    )
    await replace_backup_codes(db, user_id, code_hashes)


async def enable_if_secret_unchanged(db: AsyncSession, user_id: str, encrypted_secret: str) -> bool:
    """Flip the enabled flag only if the secret we verified is still the stored one."""
    res = await db.execute(
        update(User)
        .where(User.id == user_id, User.two_factor_secret == encrypted_secret)
        .values(two_factor_enabled=True)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def consume_backup_code(db: AsyncSession, user_id: str, code_hash: str) -> bool:
    """Delete the code if present. True only for the request that removed it."""
    res = await db.execute(
        delete(BackupCode)
        .where(BackupCode.user_id == user_id, BackupCode.code_hash == code_hash)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def claim_totp_step(db: AsyncSession, user_id: str, step: int) -> bool:
    """Record ``step`` as used; False if it (or a later one) already was."""
    res = await db.execute(
        update(User)
        .where(
            User.id == user_id,
            or_(User.two_factor_last_step.is_(None), User.two_factor_last_step < step),
        )
        .values(two_factor_last_step=step)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def clear_two_factor(db: AsyncSession, user_id: str) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(two_factor_enabled=False, two_factor_secret=None, two_factor_last_step=None)
        .execution_options(synchronize_session=False)
    )
    await replace_backup_codes(db, user_id, [])


async def count_backup_codes(db: AsyncSession, user_id: str) -> int:
    res = await db.execute(
        select(func.count()).select_from(BackupCode).where(BackupCode.user_id == user_id)
    )
    return res.scalar_one()
