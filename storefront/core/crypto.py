"""AES-256-GCM encryption for 2FA secrets at rest."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from storefront.core.errors import CryptoError

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_TAG_SIZE = 16


class SecretCodec:
    """Encrypts TOTP secrets as base64(nonce + ciphertext + tag).

    The key comes from configuration and is never generated here.
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("encryption key must be 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_SIZE)
        ct = self._aead.encrypt(nonce, plaintext.encode(), None)
        return base64.b64encode(nonce + ct).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises CryptoError for every failure mode (bad encoding, truncated
        blob, wrong key, tampered ciphertext) without saying which.
        """
        try:
            raw = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise CryptoError() from exc
        if len(raw) < _NONCE_SIZE + _TAG_SIZE:
            raise CryptoError()
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, ct, None).decode()
        except (InvalidTag, UnicodeDecodeError) as exc:
            raise CryptoError() from exc
