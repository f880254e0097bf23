from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_accounts, get_current_user
from storefront.core.db import get_db
from storefront.models.user import User
from storefront.schemas.auth import (
    AuthOut, ChallengeOut, ChangePasswordIn, ForgotPasswordIn, LoginIn, MessageOut,
    ProfileOut, ProfileUpdateIn, RegisterIn, ResetPasswordIn, UserOut,
)
from storefront.services.accounts import AccountService
from storefront.services.sessions import Authenticated

router = APIRouter(prefix="/auth", tags=["auth"])

def _auth_out(result: Authenticated) -> AuthOut:
    return AuthOut(token=result.token, user=UserOut.model_validate(result.user))

@router.post("/register", response_model=AuthOut, status_code=201)
async def register(
    payload: RegisterIn,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    result = await accounts.register(db, payload.username, payload.email, payload.password)
    return _auth_out(result)

@router.get("/verify-email/{token}", response_model=MessageOut)
async def verify_email(
    token: str,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.verify_email(db, token)
    return MessageOut(message="Email verified successfully")

@router.post("/login", response_model=AuthOut | ChallengeOut)
async def login(
    payload: LoginIn,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    result = await accounts.login(db, payload.email, payload.password)
    if isinstance(result, Authenticated):
        return _auth_out(result)
    # 2FA is on: no session until /auth/2fa/validate or /auth/2fa/backup
    return ChallengeOut(email=result.email)

@router.post("/forgot-password", response_model=MessageOut)
async def forgot_password(
    payload: ForgotPasswordIn,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.forgot_password(db, payload.email)
    return MessageOut(message="If the account exists, a password reset email has been sent")

@router.post("/reset-password/{token}", response_model=MessageOut)
async def reset_password(
    token: str,
    payload: ResetPasswordIn,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.reset_password(db, token, payload.password)
    return MessageOut(message="Password reset successfully")

@router.get("/profile", response_model=ProfileOut)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user

@router.put("/profile", response_model=ProfileOut)
async def update_profile(
    payload: ProfileUpdateIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    return await accounts.update_profile(
        db, current_user, payload.first_name, payload.last_name, payload.bio
    )

@router.put("/change-password", response_model=MessageOut)
async def change_password(
    payload: ChangePasswordIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(get_accounts),
):
    await accounts.change_password(db, current_user, payload.current_password, payload.new_password)
    return MessageOut(message="Password changed successfully")
