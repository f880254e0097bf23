# storefront/core/config.py
import base64
import binascii
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "TechNest Storefront"
    LOG_LEVEL: str = "INFO"

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # DATABASE_URL wins over the DB_* parts (tests use sqlite+aiosqlite)
    DATABASE_URL: str | None = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "storefront"
    DB_PASSWORD: str = ""
    DB_NAME: str = "storefront"
    AUTO_CREATE_TABLES: bool = False

    # --- 2FA ---
    TWOFA_ENCRYPTION_KEY: str = Field(...)   # base64 of 32 random bytes
    TWOFA_ISSUER: str = "TechNest Solutions"
    TWOFA_BACKUP_CODE_COUNT: int = 8
    TWOFA_BACKUP_CODE_LENGTH: int = 8
    TOTP_REPLAY_PROTECTION: bool = False

    # --- mail ---
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_SECURE: bool = False
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    SMTP_FROM: str = "no-reply@technest.local"
    FRONTEND_URL: str = "http://localhost:3000"

    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @field_validator("TWOFA_ENCRYPTION_KEY")
    @classmethod
    def check_encryption_key(cls, v: str) -> str:
        try:
            raw = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("TWOFA_ENCRYPTION_KEY must be base64")
        if len(raw) != 32:
            raise ValueError("TWOFA_ENCRYPTION_KEY must decode to 32 bytes")
        return v

    @property
    def encryption_key(self) -> bytes:
        return base64.b64decode(self.TWOFA_ENCRYPTION_KEY)

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
