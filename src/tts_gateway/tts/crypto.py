"""
Payload Encryption for Cached Audio.

Cached audio is encrypted with Fernet (AES-128-CBC + HMAC-SHA256) before it
reaches the store. The Fernet key is derived from the operator secret:

    key = urlsafe_b64encode(sha256(secret))

so any non-empty string works as cache.encryption_key. Changing the
secret makes every existing entry undecryptable, which the cache treats
as a plain miss.
"""
from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

__all__ = ["PayloadCipher", "InvalidToken", "derive_key"]


def derive_key(secret: str) -> bytes:
    """Derive a Fernet key from an arbitrary secret string."""
    if not secret:
        raise ValueError("encryption secret must not be empty")
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class PayloadCipher:
    """Encrypts and decrypts audio payloads. Thread-safe."""

    def __init__(self, secret: str):
        self._fernet = Fernet(derive_key(secret))

    def encrypt(self, payload: bytes) -> bytes:
        return self._fernet.encrypt(payload)

    def decrypt(self, token: bytes) -> bytes:
        """
        Decrypt a token produced by encrypt().

        Raises:
            InvalidToken: Wrong key, tampered or truncated token.
        """
        return self._fernet.decrypt(token)
