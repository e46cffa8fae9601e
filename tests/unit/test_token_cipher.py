"""Unit tests for token encryption"""

import pytest
from cryptography.fernet import Fernet
from qbo_ingest.domain.exceptions import EncryptionError
from qbo_ingest.infrastructure.security.token_cipher import TokenCipher


def test_ciphertext_is_not_plaintext(cipher: TokenCipher):
    ciphertext = cipher.encrypt("refresh-secret")

    assert "refresh-secret" not in ciphertext
    assert cipher.decrypt(ciphertext) == "refresh-secret"


def test_decrypt_with_other_key_fails(cipher: TokenCipher):
    other = TokenCipher(Fernet.generate_key())

    with pytest.raises(EncryptionError):
        other.decrypt(cipher.encrypt("refresh-secret"))


def test_missing_key_raises():
    with pytest.raises(EncryptionError):
        TokenCipher("")


def test_invalid_key_raises():
    with pytest.raises(EncryptionError):
        TokenCipher("not-a-fernet-key")
