"""
Credential vault: symmetric encryption of provider API keys at rest.

Keys are sealed with AES-256-GCM under a single server-held secret. A blob is
``base64(nonce || ciphertext || tag)`` with a fresh 12-byte nonce per call.
The vault holds no mutable state, so one instance can serve concurrent
requests.

Example:
    vault = CredentialVault.from_secret(os.environ["BLOCKFLOW_ENCRYPTION_KEY"])
    blob = vault.encrypt("sk-live-...")
    vault.decrypt(blob)  # "sk-live-..."
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import re
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from blockflow.config import BlockflowConfig
from blockflow.errors import ConfigurationError, VaultError
from blockflow.models import ProviderCredential, new_id

NONCE_SIZE = 12
TAG_SIZE = 16

_HEX_KEY = re.compile(r"[0-9a-fA-F]{64}")


def key_hint(api_key: str) -> str:
    """Displayable hint for a key: first and last four characters."""
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"


class CredentialVault:
    """Encrypts and decrypts provider credentials."""

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ConfigurationError("Vault key must be 32 bytes (AES-256)")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> CredentialVault:
        """
        Build a vault from a configured secret.

        A 64-character hex string is used as the raw key; anything else is
        stretched to 32 bytes with SHA-256.
        """
        if not secret:
            raise ConfigurationError("Encryption key is empty")
        if _HEX_KEY.fullmatch(secret):
            return cls(bytes.fromhex(secret))
        return cls(hashlib.sha256(secret.encode("utf-8")).digest())

    @classmethod
    def from_config(cls, config: BlockflowConfig) -> CredentialVault:
        if not config.encryption_key:
            raise ConfigurationError(
                "No encryption key configured (set BLOCKFLOW_ENCRYPTION_KEY)"
            )
        return cls.from_secret(config.encryption_key)

    @staticmethod
    def generate_key() -> str:
        """Return a new random key as 64 hex characters."""
        return secrets.token_hex(32)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Open a blob produced by ``encrypt``.

        Raises:
            VaultError: If the blob is malformed, truncated, tampered with, or
                was sealed under a different key.
        """
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise VaultError("Credential blob is not valid base64") from e

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise VaultError("Credential blob is truncated")

        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise VaultError("Credential blob failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise VaultError("Credential is not valid UTF-8") from e

    def seal(
        self,
        owner_id: str,
        provider: str,
        api_key: str,
        team_id: str | None = None,
        credential_id: str | None = None,
    ) -> ProviderCredential:
        """Encrypt ``api_key`` into a storable credential record."""
        api_key = api_key.strip()
        if not api_key:
            raise ValueError("API key is empty")
        return ProviderCredential(
            id=credential_id or new_id("cred_"),
            owner_id=owner_id,
            provider=provider,
            encrypted_key=self.encrypt(api_key),
            key_hint=key_hint(api_key),
            team_id=team_id,
        )

    def unwrap(self, credential: ProviderCredential) -> str:
        return self.decrypt(credential.encrypted_key)
