# storefront/services/totp.py
"""
TOTP (RFC 6238) helpers: secret generation, provisioning and verification.

- 6-digit codes, 30-second step, HMAC-SHA1 (what authenticator apps expect)
- Base32 secrets, 32 chars = 160 bits from a CSPRNG
- Verification accepts the current step and one step either side, nothing wider
"""
import base64
import io
import time

import pyotp
import qrcode
from pyotp.utils import strings_equal

STEP_SECONDS = 30
DIGITS = 6
DRIFT_STEPS = 1


def generate_secret() -> str:
    return pyotp.random_base32(length=32)


def provisioning_uri(secret: str, account_label: str, issuer: str) -> str:
    """otpauth://totp/{issuer}:{label}?secret=...&issuer=... (the QR payload)."""
    return pyotp.TOTP(secret).provisioning_uri(name=account_label, issuer_name=issuer)


def qr_png_base64(uri: str) -> str:
    img = qrcode.make(uri)
    buf = io.BytesIO()
    img.save(buf, "PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def time_step(at_time: float) -> int:
    return int(at_time // STEP_SECONDS)


def current_code(secret: str, at_time: float | None = None) -> str:
    """Code for ``at_time`` (now by default). Tests and tooling only."""
    if at_time is None:
        at_time = time.time()
    return pyotp.TOTP(secret, digits=DIGITS, interval=STEP_SECONDS).generate_otp(time_step(at_time))


def normalize_code(code: str | None) -> str | None:
    if not code:
        return None
    code = code.strip().replace(" ", "")
    if len(code) != DIGITS or not code.isdigit():
        return None
    return code


def matching_step(code: str | None, secret: str, at_time: float) -> int | None:
    """Return the time step ``code`` belongs to, or None if it matches none.

    Only steps c-1, c and c+1 are checked. Comparison is constant time.
    """
    code = normalize_code(code)
    if code is None:
        return None
    totp = pyotp.TOTP(secret, digits=DIGITS, interval=STEP_SECONDS)
    counter = time_step(at_time)
    for step in range(counter - DRIFT_STEPS, counter + DRIFT_STEPS + 1):
        if step < 0:
            continue
        if strings_equal(code, totp.generate_otp(step)):
            return step
    return None


def verify_code(code: str | None, secret: str, at_time: float | None = None) -> bool:
    if at_time is None:
        at_time = time.time()
    return matching_step(code, secret, at_time) is not None
