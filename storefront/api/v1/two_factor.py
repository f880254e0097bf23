from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user, get_two_factor
from storefront.core.db import get_db
from storefront.models.user import User
from storefront.schemas.auth import (
    AuthOut, BackupCodesOut, MessageOut, TwoFABackupIn, TwoFACodeIn, TwoFASetupIn,
    TwoFASetupOut, TwoFAValidateIn, UserOut,
)
from storefront.services.two_factor import TwoFactorService

router = APIRouter(prefix="/auth/2fa", tags=["2fa"])

# ---------- enrollment (authenticated) ----------
@router.post("/setup", response_model=TwoFASetupOut)
async def twofa_setup(
    body: TwoFASetupIn | None = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    two_factor: TwoFactorService = Depends(get_two_factor),
):
    # the only response that ever carries the secret and the backup codes
    result = await two_factor.setup(db, current_user, body.code if body else None)
    return TwoFASetupOut(
        secret=result.secret,
        provisioning_uri=result.provisioning_uri,
        qr_code=result.qr_code,
        backup_codes=result.backup_codes,
    )

@router.post("/verify", response_model=MessageOut)
async def twofa_verify(
    body: TwoFACodeIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    two_factor: TwoFactorService = Depends(get_two_factor),
):
    await two_factor.verify_and_enable(db, current_user, body.code)
    return MessageOut(message="2FA enabled successfully")

@router.post("/disable", response_model=MessageOut)
async def twofa_disable(
    body: TwoFACodeIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    two_factor: TwoFactorService = Depends(get_two_factor),
):
    await two_factor.disable(db, current_user, body.code)
    return MessageOut(message="2FA disabled successfully")

@router.post("/backup-codes", response_model=BackupCodesOut)
async def twofa_regenerate_backup_codes(
    body: TwoFACodeIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    two_factor: TwoFactorService = Depends(get_two_factor),
):
    codes = await two_factor.regenerate_backup_codes(db, current_user, body.code)
    return BackupCodesOut(backup_codes=codes)

# ---------- login second step (anonymous) ----------
@router.post("/validate", response_model=AuthOut)
async def twofa_validate(
    body: TwoFAValidateIn,
    db: AsyncSession = Depends(get_db),
    two_factor: TwoFactorService = Depends(get_two_factor),
):
    result = await two_factor.validate_login(db, body.email, body.code)
    return AuthOut(token=result.token, user=UserOut.model_validate(result.user))

@router.post("/backup", response_model=AuthOut)
async def twofa_backup(
    body: TwoFABackupIn,
    db: AsyncSession = Depends(get_db),
    two_factor: TwoFactorService = Depends(get_two_factor),
):
    result = await two_factor.redeem_backup_code(db, body.email, body.backup_code)
    return AuthOut(token=result.token, user=UserOut.model_validate(result.user))
