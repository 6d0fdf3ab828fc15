"""
Credential blob encryption — how stored provider credentials are sealed.

Uses Fernet (AES-128-CBC + HMAC-SHA256) with a key derived from
GATEWAY_CREDENTIAL_SECRET via PBKDF2. Deterministic derivation means we
don't need to store key material separately — just the secret.

Without a secret, blobs are plain base64 of the credential JSON, which is
how credentials arrive from deployments that don't encrypt at rest.

Usage:
    cipher = CredentialCipher(config.store.credential_secret)

    blob = cipher.encrypt_value('{"apiKey": "sk-abc123..."}')
    plaintext = cipher.decrypt_value(blob)
"""

from __future__ import annotations

import base64
import binascii
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Fixed salt, deterministic so every process derives the same key.
_SALT = b"llm-gateway-credential-encryption-v1"
_ITERATIONS = 480_000


def derive_fernet_key(secret: str) -> bytes:
    """Derive a 32-byte Fernet key from the app secret via PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_SALT,
        iterations=_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class CredentialCipher:
    """Seals and opens encrypted-credential blobs."""

    def __init__(self, secret: str = ""):
        self._fernet: Fernet | None = Fernet(derive_fernet_key(secret)) if secret else None

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def encrypt_value(self, plaintext: str) -> str:
        if self._fernet is None:
            return base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt_value(self, blob: str) -> str:
        """Open a blob. Raises ValueError if it can't be decoded."""
        if self._fernet is None:
            try:
                return base64.b64decode(blob, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise ValueError("credential blob is not valid base64") from e

        try:
            return self._fernet.decrypt(blob.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise ValueError("credential blob failed decryption") from e
