from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, StringConstraints

Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]


class CamelModel(BaseModel):
    # wire names are camelCase (the web client), attributes stay snake_case
    model_config = ConfigDict(populate_by_name=True)


class Role(str, Enum):
    customer = "customer"
    admin = "admin"

class RegisterIn(BaseModel):
    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=64)]
    email: EmailStr
    password: str = Field(..., min_length=6)

class LoginIn(BaseModel):
    email: str
    password: str

class UserOut(CamelModel):
    """Safe user summary: never carries the password hash or any 2FA material."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    username: str
    email: str
    role: Role
    is_email_verified: bool = Field(alias="isEmailVerified")

class ProfileOut(UserOut):
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    bio: str | None = None
    two_factor_enabled: bool = Field(alias="twoFactorEnabled")
    created_at: datetime | None = Field(default=None, alias="createdAt")

class AuthOut(BaseModel):
    token: str
    user: UserOut

class ChallengeOut(CamelModel):
    require_2fa: Literal[True] = Field(default=True, alias="require2FA")
    email: str

class MessageOut(BaseModel):
    message: str

class ForgotPasswordIn(BaseModel):
    email: EmailStr

class ResetPasswordIn(BaseModel):
    password: str = Field(..., min_length=6)

class ProfileUpdateIn(CamelModel):
    first_name: Name | None = Field(default=None, alias="firstName")
    last_name: Name | None = Field(default=None, alias="lastName")
    bio: Trimmed | None = None

class ChangePasswordIn(CamelModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword", min_length=6)

# --- 2FA ---
class TwoFASetupOut(CamelModel):
    secret: str
    provisioning_uri: str = Field(alias="provisioningUri")
    qr_code: str = Field(alias="qrCode")   # base64 PNG
    backup_codes: list[str] = Field(alias="backupCodes")

class TwoFASetupIn(BaseModel):
    # only checked when 2FA is already enabled
    code: str | None = Field(None, validation_alias=AliasChoices("token", "code"))

class TwoFACodeIn(BaseModel):
    # the web client posts the TOTP code as "token"
    code: str = Field(..., validation_alias=AliasChoices("token", "code"))

class TwoFAValidateIn(TwoFACodeIn):
    email: str

class TwoFABackupIn(BaseModel):
    email: str
    backup_code: str = Field(..., validation_alias=AliasChoices("backupCode", "backup_code"))

class BackupCodesOut(CamelModel):
    backup_codes: list[str] = Field(alias="backupCodes")
