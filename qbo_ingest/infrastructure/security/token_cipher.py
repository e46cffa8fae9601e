"""Symmetric encryption of OAuth tokens at rest"""

from cryptography.fernet import Fernet, InvalidToken
from qbo_ingest.domain.exceptions import EncryptionError
from qbo_ingest.config import settings


class TokenCipher:
    """Fernet wrapper; ciphertexts are urlsafe base64 text"""

    def __init__(self, key: str | bytes | None = None):
        key = key if key is not None else settings.token_encryption_key
        if not key:
            raise EncryptionError("Token encryption key is not configured")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise EncryptionError("Token encryption key is not a valid Fernet key") from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            raise EncryptionError("Stored token could not be decrypted") from e
