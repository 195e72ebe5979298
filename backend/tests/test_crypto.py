import pytest
from cryptography.fernet import Fernet

from familyhub.core.crypto import CipherError, TokenCipher


def test_roundtrip():
    cipher = TokenCipher(Fernet.generate_key())
    encrypted = cipher.encrypt("ya29.access-token")
    assert encrypted != "ya29.access-token"
    assert cipher.decrypt(encrypted) == "ya29.access-token"


def test_decrypt_with_other_key_fails():
    encrypted = TokenCipher(Fernet.generate_key()).encrypt("secret")
    with pytest.raises(CipherError):
        TokenCipher(Fernet.generate_key()).decrypt(encrypted)


def test_decrypt_garbage_fails():
    cipher = TokenCipher(Fernet.generate_key())
    with pytest.raises(CipherError):
        cipher.decrypt("not-a-fernet-token")
    with pytest.raises(CipherError):
        cipher.decrypt("")


def test_invalid_key_rejected():
    with pytest.raises(ValueError):
        TokenCipher("too-short")
