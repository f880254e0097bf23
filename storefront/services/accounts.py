import logging
import smtplib
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.errors import (
    AccountDisabled, AccountExists, IncorrectPassword, InvalidCredentials, InvalidToken,
)
from storefront.core.security import hash_email_token, hash_password, new_email_token, verify_password
from storefront.models.user import User
from storefront.services import user_store
from storefront.services.mailer import Mailer, password_reset_email, verification_email
from storefront.services.sessions import Authenticated, LoginResult, issue_session
from storefront.services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # columns are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AccountService:
    def __init__(self, settings: Settings, mailer: Mailer, two_factor: TwoFactorService):
        self.settings = settings
        self.mailer = mailer
        self.two_factor = two_factor

    async def register(self, db: AsyncSession, username: str, email: str, password: str) -> Authenticated:
        email = email.strip().lower()
        if await user_store.get_user_by_email_or_username(db, email, username):
            raise AccountExists()

        token, token_hash = new_email_token()
        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password),
            email_verification_token=token_hash,
            email_verification_expires=_utcnow() + timedelta(hours=self.settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # lost a race with another registration for the same email/username
            await db.rollback()
            raise AccountExists()
        await db.refresh(user)
        logger.info("Registered user %s", user.id)

        subject, html = verification_email(self.settings, token)
        await self.mailer.send(email, subject, html)

        return issue_session(self.settings, user)

    async def verify_email(self, db: AsyncSession, token: str) -> None:
        user = await user_store.get_user_by_token(db, User.email_verification_token, hash_email_token(token))
        if not user or not user.email_verification_expires or user.email_verification_expires <= _utcnow():
            raise InvalidToken()
        user.is_email_verified = True
        user.email_verification_token = None
        user.email_verification_expires = None
        await db.commit()

    async def login(self, db: AsyncSession, email: str, password: str) -> LoginResult:
        user = await user_store.get_user_by_email(db, email)
        if not user or not verify_password(password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDisabled()

        challenge = self.two_factor.login_challenge(user)
        if challenge is not None:
            return challenge
        return issue_session(self.settings, user)

    async def forgot_password(self, db: AsyncSession, email: str) -> None:
        user = await user_store.get_user_by_email(db, email)
        if not user:
            logger.info("Password reset requested for unknown address")
            return

        token, token_hash = new_email_token()
        user.password_reset_token = token_hash
        user.password_reset_expires = _utcnow() + timedelta(minutes=self.settings.PASSWORD_RESET_EXPIRE_MINUTES)
        await db.commit()

        subject, html = password_reset_email(self.settings, token)
        try:
            await self.mailer.send(user.email, subject, html)
        except (smtplib.SMTPException, OSError):
            # answer exactly as for an unknown address
            logger.exception("Password reset email for user %s not delivered", user.id)

    async def reset_password(self, db: AsyncSession, token: str, password: str) -> None:
        user = await user_store.get_user_by_token(db, User.password_reset_token, hash_email_token(token))
        if not user or not user.password_reset_expires or user.password_reset_expires <= _utcnow():
            raise InvalidToken()
        user.hashed_password = hash_password(password)
        user.password_reset_token = None
        user.password_reset_expires = None
        await db.commit()
        logger.info("Password reset for user %s", user.id)

    async def update_profile(
        self, db: AsyncSession, user: User,
        first_name: str | None, last_name: str | None, bio: str | None,
    ) -> User:
        if first_name is not None:
            user.first_name = first_name
        if last_name is not None:
            user.last_name = last_name
        if bio is not None:
            user.bio = bio
        await db.commit()
        await db.refresh(user)
        return user

    async def change_password(self, db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.hashed_password):
            raise IncorrectPassword()
        user.hashed_password = hash_password(new_password)
        await db.commit()
        logger.info("Password changed for user %s", user.id)
