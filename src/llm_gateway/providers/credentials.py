"""
Provider Credentials — where API keys come from.

The gateway never administers credentials; it only reads them through
CredentialStore. InMemoryCredentialStore is the stock implementation,
seeded at startup from the environment.

Key resolution (resolve_api_key) tries, in order:
  1. the plaintext ``api_key`` field
  2. the ``encrypted_credentials`` blob → JSON {"apiKey": "..."}
  3. the environment fallback key
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from llm_gateway.core.crypto import CredentialCipher
from llm_gateway.core.errors import CredentialMissingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """
    A stored provider credential.

    user_id None means system-wide. Exactly one of api_key and
    encrypted_credentials is usually set.
    """

    provider: str
    user_id: str | None = None
    name: str = "Default"
    api_key: str = ""
    encrypted_credentials: str = ""
    is_default: bool = False
    is_enabled: bool = True


def decode_credential_blob(blob: str, cipher: CredentialCipher, provider: str) -> str:
    """Open an encrypted-credential blob and return its apiKey ("" if absent)."""
    try:
        data = json.loads(cipher.decrypt_value(blob))
    except (ValueError, TypeError) as e:
        logger.error(f"Error decoding {provider} credentials: {e}")
        raise CredentialMissingError(provider, f"Invalid {provider} credentials") from e

    if not isinstance(data, dict):
        raise CredentialMissingError(provider, f"Invalid {provider} credentials")

    # Field names are matched case-insensitively ("apiKey", "ApiKey", "apikey")
    for key, value in data.items():
        if key.lower() == "apikey" and isinstance(value, str):
            return value
    return ""


def resolve_api_key(
    provider: str,
    credential: Credential | None,
    cipher: CredentialCipher,
    fallback_key: str = "",
) -> str:
    """Pick the API key by priority. Raises CredentialMissingError if none."""
    if credential is None:
        logger.warning(f"Credential is null for {provider} provider")
    elif credential.api_key:
        logger.debug("Using API key from api_key field")
        return credential.api_key
    elif credential.encrypted_credentials:
        api_key = decode_credential_blob(
            credential.encrypted_credentials, cipher, provider
        )
        if api_key:
            logger.debug("API key extracted from encrypted credentials")
            return api_key
    else:
        logger.warning(f"No API key found in {provider} credential")

    if fallback_key:
        logger.info(f"Using {provider} API key from environment")
        return fallback_key

    logger.error(f"API key is missing for {provider} provider")
    raise CredentialMissingError(provider)


class CredentialStore(ABC):
    """Read-only credential lookup."""

    @abstractmethod
    async def get_credential(
        self, provider: str, user_id: str | None = None
    ) -> Credential | None:
        ...

    async def get_decrypted_key(
        self, provider: str, user_id: str | None = None
    ) -> str | None:
        """The usable secret for ``provider``, or None when nothing is stored."""
        credential = await self.get_credential(provider, user_id)
        if credential is None:
            return None
        try:
            return resolve_api_key(provider, credential, self.cipher) or None
        except CredentialMissingError:
            return None

    @property
    def cipher(self) -> CredentialCipher:
        return CredentialCipher()


class InMemoryCredentialStore(CredentialStore):
    """Credentials held in a list — for startup seeding and tests."""

    def __init__(
        self,
        credentials: list[Credential] | None = None,
        cipher: CredentialCipher | None = None,
    ):
        self._credentials: list[Credential] = list(credentials or [])
        self._cipher = cipher or CredentialCipher()

    @property
    def cipher(self) -> CredentialCipher:
        return self._cipher

    def add(self, credential: Credential) -> None:
        self._credentials.append(credential)

    async def get_credential(
        self, provider: str, user_id: str | None = None
    ) -> Credential | None:
        """
        User-scoped credentials win over system-wide ones; within a scope
        the default enabled credential wins over any other enabled one.
        """
        candidates = [
            c
            for c in self._credentials
            if c.provider.lower() == provider.lower() and c.is_enabled
        ]

        scopes = [user_id, None] if user_id else [None]
        for scope in scopes:
            scoped = [c for c in candidates if c.user_id == scope]
            if not scoped:
                continue
            for credential in scoped:
                if credential.is_default:
                    return credential
            return scoped[0]
        return None
