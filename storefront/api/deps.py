from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.db import get_db
from storefront.core.security import decode_access_token
from storefront.models.user import User
from storefront.services import user_store
from storefront.services.accounts import AccountService
from storefront.services.two_factor import TwoFactorService


bearer = HTTPBearer(auto_error=False)

def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings

def get_two_factor(request: Request) -> TwoFactorService:
    return request.app.state.two_factor

def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts

async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    settings: Settings = Depends(get_settings_dep),
    db: AsyncSession = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(settings, creds.credentials)
    sub = payload.get("sub") if payload else None
    if not isinstance(sub, str) or not sub:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = await user_store.get_user_by_id(db, sub)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    return user

