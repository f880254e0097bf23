"""Domain errors raised by the service layer.

Routes let these propagate; ``storefront.main`` maps each one to an HTTP
response. The messages here are the ones clients see, so they stay generic.
"""


class StorefrontError(Exception):
    status_code = 400
    message = "Invalid request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidCredentials(StorefrontError):
    # unknown email and wrong password share this error on purpose
    status_code = 401
    message = "Invalid credentials"


class InvalidCode(StorefrontError):
    message = "Invalid verification code"


class InvalidBackupCode(StorefrontError):
    message = "Invalid backup code"


class NoSecret(StorefrontError):
    message = "Two-factor setup has not been started"


class CryptoError(StorefrontError):
    """The stored 2FA secret could not be decrypted.

    Usually means the encryption key was rotated or the blob was tampered
    with. Clients only ever see a generic server error.
    """

    status_code = 500
    message = "Server error"


class AccountDisabled(StorefrontError):
    status_code = 403
    message = "Account is disabled"


class AccountExists(StorefrontError):
    message = "User already exists"


class InvalidToken(StorefrontError):
    message = "Invalid or expired token"


class IncorrectPassword(StorefrontError):
    message = "Current password is incorrect"
