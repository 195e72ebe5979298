import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class CipherError(Exception):
    """Raised when a stored credential cannot be decrypted."""


class TokenCipher:
    """Symmetric authenticated encryption for credentials at rest (Fernet)."""

    def __init__(self, key: str | bytes):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            logger.critical(f"Invalid APP_SECRET_KEY: {exc}")
            raise

    def encrypt(self, text: str) -> str:
        return self._fernet.encrypt(text.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        if not token:
            raise CipherError("Empty ciphertext")
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError, UnicodeDecodeError) as exc:
            raise CipherError("Stored credential could not be decrypted") from exc


_cipher_instance: Optional[TokenCipher] = None


def get_cipher() -> TokenCipher:
    global _cipher_instance
    if _cipher_instance:
        return _cipher_instance

    key = os.environ.get("APP_SECRET_KEY")

    if not key:
        if os.environ.get("ENV") == "TEST" or os.environ.get("TESTING"):
            key = Fernet.generate_key().decode()
        else:
            msg = "APP_SECRET_KEY is not set. Integration tokens require a Fernet key (32 url-safe base64-encoded bytes)."
            logger.critical(msg)
            # Raised on first use rather than at import so the app can still boot
            raise ValueError(msg)

    _cipher_instance = TokenCipher(key)
    return _cipher_instance
