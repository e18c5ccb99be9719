"""Encryption helpers for credential storage."""
from .cipher import CredentialCipher

__all__ = ["CredentialCipher"]
