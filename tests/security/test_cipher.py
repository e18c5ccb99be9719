"""Tests for the credential cipher."""

import pytest

from knowledge_ingestor.exceptions import ConfigurationError, EncryptionError
from knowledge_ingestor.security.cipher import CredentialCipher
from knowledge_ingestor.utils.config import get_settings


def test_encrypt_roundtrip_uses_versioned_prefix(encryption_key: str) -> None:
    cipher = CredentialCipher(encryption_key)

    token = cipher.encrypt("ghp_secret")

    assert token.startswith("enc:v1:")
    assert "ghp_secret" not in token
    assert cipher.decrypt(token) == "ghp_secret"


def test_each_encryption_uses_a_fresh_nonce(encryption_key: str) -> None:
    cipher = CredentialCipher(encryption_key)

    assert cipher.encrypt("same") != cipher.encrypt("same")


@pytest.mark.parametrize("key", ["not-hex", "00" * 16, ""])
def test_invalid_keys_are_configuration_errors(key: str) -> None:
    with pytest.raises(ConfigurationError):
        CredentialCipher(key)


def test_from_settings_requires_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("INGESTOR_ENCRYPTION_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        CredentialCipher.from_settings(get_settings(reload=True))


def test_empty_plaintext_is_rejected(encryption_key: str) -> None:
    with pytest.raises(EncryptionError):
        CredentialCipher(encryption_key).encrypt("")


def test_tampered_token_fails_without_leaking_cause(encryption_key: str) -> None:
    cipher = CredentialCipher(encryption_key)
    token = cipher.encrypt("ghp_secret")
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

    with pytest.raises(EncryptionError) as excinfo:
        cipher.decrypt(tampered)

    assert excinfo.value.__cause__ is None
    assert str(excinfo.value) == "Failed to decrypt credential"


def test_token_from_another_key_cannot_be_read(encryption_key: str) -> None:
    token = CredentialCipher(encryption_key).encrypt("ghp_secret")
    other = CredentialCipher("ff" * 32)

    with pytest.raises(EncryptionError):
        other.decrypt(token)


def test_unprefixed_value_is_rejected(encryption_key: str) -> None:
    with pytest.raises(EncryptionError):
        CredentialCipher(encryption_key).decrypt("plain-text")
