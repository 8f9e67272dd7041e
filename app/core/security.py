"""
At-rest encryption for provider credentials.

Tokens are stored as Fernet ciphertext keyed from SECRET_KEY. The ORM type
below encrypts on write and decrypts on read, so services only ever see
plaintext.
"""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet
from sqlalchemy.types import Text, TypeDecorator

from app.core.config import settings


@lru_cache(maxsize=4)
def _cipher(secret_key: str) -> Fernet:
    # Fernet wants 32 url-safe base64 bytes; derive them from the app secret
    digest = hashlib.sha256(secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_token(token: str) -> str:
    return _cipher(settings.SECRET_KEY).encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    return _cipher(settings.SECRET_KEY).decrypt(encrypted_token.encode()).decode()


class EncryptedText(TypeDecorator):
    """Text column holding Fernet ciphertext."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_token(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt_token(value)
