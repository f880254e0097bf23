"""Two-factor authentication state controller.

Per-user states, derived from the security columns on ``User``::

    disabled --setup--> pending --verify_and_enable--> enabled
    enabled  --disable (needs a valid code)--> disabled
    enabled  --setup (needs a valid code)--> pending
    pending  --setup--> pending (fresh secret, fresh backup codes)

A login against an enabled account yields a ``ChallengeRequired`` instead of
a session; ``validate_login`` or ``redeem_backup_code`` completes it. Each
operation commits its writes before returning, and a failed operation leaves
the stored state untouched.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.crypto import SecretCodec
from storefront.core.errors import CryptoError, InvalidBackupCode, InvalidCode, NoSecret
from storefront.models.user import User
from storefront.services import backup_codes, totp, user_store
from storefront.services.sessions import Authenticated, ChallengeRequired, issue_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupResult:
    secret: str
    provisioning_uri: str
    qr_code: str
    backup_codes: list[str]


class TwoFactorService:
    def __init__(self, settings: Settings, codec: SecretCodec, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.codec = codec
        self.clock = clock

    # ---------- helpers ----------
    def _decrypt_secret(self, user: User) -> str:
        try:
            return self.codec.decrypt(user.two_factor_secret or "")
        except CryptoError:
            logger.error("2FA secret for user %s failed to decrypt (key rotated or blob corrupted)", user.id)
            raise

    async def _check_code(self, db: AsyncSession, user: User, code: str | None) -> None:
        secret = self._decrypt_secret(user)
        step = totp.matching_step(code, secret, self.clock())
        if step is None:
            raise InvalidCode()
        if self.settings.TOTP_REPLAY_PROTECTION:
            if not await user_store.claim_totp_step(db, user.id, step):
                logger.warning("Reused TOTP code rejected for user %s", user.id)
                raise InvalidCode()

    def _new_backup_codes(self) -> tuple[list[str], list[str]]:
        codes = backup_codes.generate_backup_codes(
            count=self.settings.TWOFA_BACKUP_CODE_COUNT,
            length=self.settings.TWOFA_BACKUP_CODE_LENGTH,
        )
        return codes, [backup_codes.hash_backup_code(c) for c in codes]

    @staticmethod
    def _can_challenge(user: User | None) -> bool:
        return bool(user and user.is_active and user.two_factor_enabled and user.two_factor_secret)

    # ---------- enrollment ----------
    async def setup(self, db: AsyncSession, user: User, code: str | None = None) -> SetupResult:
        """Start (or restart) enrollment. 2FA stays off until verify_and_enable.

        Re-enrolling an enabled account needs a current code, like disable.
        """
        if user.two_factor_enabled:
            await self._check_code(db, user, code)
        secret = totp.generate_secret()
        uri = totp.provisioning_uri(secret, user.email, self.settings.TWOFA_ISSUER)
        codes, hashes = self._new_backup_codes()

        await user_store.store_pending_secret(db, user.id, self.codec.encrypt(secret), hashes)
        await db.commit()
        await db.refresh(user)
        logger.info("2FA setup started for user %s", user.id)

        return SetupResult(
            secret=secret,
            provisioning_uri=uri,
            qr_code=totp.qr_png_base64(uri),
            backup_codes=codes,
        )

    async def verify_and_enable(self, db: AsyncSession, user: User, code: str | None) -> None:
        blob = user.two_factor_secret
        if not blob:
            raise NoSecret()
        await self._check_code(db, user, code)
        # a concurrent setup may have replaced the secret we just checked
        if not await user_store.enable_if_secret_unchanged(db, user.id, blob):
            await db.rollback()
            await db.refresh(user)
            raise InvalidCode()
        await db.commit()
        await db.refresh(user)
        logger.info("2FA enabled for user %s", user.id)

    # ---------- login ----------
    def login_challenge(self, user: User) -> ChallengeRequired | None:
        if self._can_challenge(user):
            return ChallengeRequired(email=user.email)
        return None

    async def validate_login(self, db: AsyncSession, email: str, code: str | None) -> Authenticated:
        # same error whether the account is missing or has no 2FA
        user = await user_store.get_user_by_email(db, email)
        if user is None or not self._can_challenge(user):
            raise InvalidCode()
        await self._check_code(db, user, code)
        await db.commit()
        return issue_session(self.settings, user)

    async def redeem_backup_code(self, db: AsyncSession, email: str, code: str | None) -> Authenticated:
        user = await user_store.get_user_by_email(db, email)
        if user is None or not self._can_challenge(user) or not code:
            raise InvalidBackupCode()
        consumed = await user_store.consume_backup_code(db, user.id, backup_codes.hash_backup_code(code))
        if not consumed:
            raise InvalidBackupCode()
        await db.commit()
        logger.info("Backup code redeemed for user %s", user.id)
        return issue_session(self.settings, user)

    # ---------- management ----------
    async def disable(self, db: AsyncSession, user: User, code: str | None) -> None:
        """Turn 2FA off. Needs a current code, not just a session."""
        if not user.two_factor_enabled or not user.two_factor_secret:
            raise InvalidCode()
        await self._check_code(db, user, code)
        await user_store.clear_two_factor(db, user.id)
        await db.commit()
        await db.refresh(user)
        logger.info("2FA disabled for user %s", user.id)

    async def regenerate_backup_codes(self, db: AsyncSession, user: User, code: str | None) -> list[str]:
        if not user.two_factor_enabled or not user.two_factor_secret:
            raise InvalidCode()
        await self._check_code(db, user, code)
        codes, hashes = self._new_backup_codes()
        await user_store.replace_backup_codes(db, user.id, hashes)
        await db.commit()
        logger.info("Backup codes regenerated for user %s", user.id)
        return codes

    async def remaining_backup_codes(self, db: AsyncSession, user: User) -> int:
        return await user_store.count_backup_codes(db, user.id)
