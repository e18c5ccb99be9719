"""Symmetric encryption of credential values at rest."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import ConfigurationError, EncryptionError
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

_PREFIX = "enc:v1:"
_NONCE_SIZE = 12


class CredentialCipher:
    """AES-256-GCM cipher producing ``enc:v1:<urlsafe base64(nonce + ciphertext)>`` tokens.

    Failures surface as :class:`EncryptionError` with a generic message; the
    underlying cryptographic exception is never chained.
    """

    def __init__(self, key_hex: str) -> None:
        try:
            key = bytes.fromhex(key_hex)
        except ValueError:
            raise ConfigurationError("Encryption key must be hex encoded") from None
        if len(key) != 32:
            raise ConfigurationError("Encryption key must be 32 bytes (64 hex chars)")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: GlobalSettings | None = None) -> CredentialCipher:
        settings = settings or get_settings()
        if not settings.encryption_key:
            raise ConfigurationError(
                "INGESTOR_ENCRYPTION_KEY must be configured to store or read credentials"
            )
        return cls(settings.encryption_key)

    def encrypt(self, plaintext: str) -> str:
        if not isinstance(plaintext, str) or plaintext == "":
            raise EncryptionError("Credential value must be a non-empty string")
        try:
            nonce = os.urandom(_NONCE_SIZE)
            ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.error("Credential encryption failed (%s)", type(exc).__name__)
            raise EncryptionError("Failed to encrypt credential") from None
        payload = base64.urlsafe_b64encode(nonce + ciphertext).decode("ascii")
        return _PREFIX + payload

    def decrypt(self, token: str) -> str:
        if not token.startswith(_PREFIX):
            raise EncryptionError("Failed to decrypt credential")
        try:
            data = base64.urlsafe_b64decode(token[len(_PREFIX):].encode("ascii"))
            nonce, ciphertext = data[:_NONCE_SIZE], data[_NONCE_SIZE:]
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, binascii.Error, ValueError, UnicodeError) as exc:
            logger.error("Credential decryption failed (%s)", type(exc).__name__)
            raise EncryptionError("Failed to decrypt credential") from None
