from dataclasses import dataclass

from storefront.core.config import Settings
from storefront.core.security import create_access_token
from storefront.models.user import User


@dataclass(frozen=True)
class Authenticated:
    token: str
    user: User


@dataclass(frozen=True)
class ChallengeRequired:
    email: str


LoginResult = Authenticated | ChallengeRequired


def issue_session(settings: Settings, user: User) -> Authenticated:
    token = create_access_token(settings, subject=user.id, extra={"role": user.role.value})
    return Authenticated(token=token, user=user)
