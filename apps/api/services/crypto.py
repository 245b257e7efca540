"""
Encryption of runtime secrets (API keys in the settings table) using Fernet.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


class SecretDecryptionError(ValueError):
    """Stored secret could not be decrypted with the configured key."""


@lru_cache(maxsize=4)
def _fernet_for(key: str) -> Fernet:
    # A 32-char key is used as-is; anything else is stretched with PBKDF2.
    if len(key) != 32:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"image_description_settings_salt",
            iterations=100000,
        )
        raw = base64.urlsafe_b64encode(kdf.derive(key.encode()))
    else:
        raw = base64.urlsafe_b64encode(key.encode())
    return Fernet(raw)


def _get_fernet() -> Fernet:
    return _fernet_for(settings.ENCRYPTION_KEY)


def encrypt_secret(value: str) -> str:
    """
    Encrypt a secret for storage.

    Args:
        value: Plain text secret

    Returns:
        URL-safe base64 Fernet token
    """
    return _get_fernet().encrypt(value.encode()).decode()


def decrypt_secret(encrypted_value: str) -> str:
    """
    Decrypt a stored secret.

    Raises:
        SecretDecryptionError: when the token was produced with another key
            or has been tampered with.
    """
    try:
        return _get_fernet().decrypt(encrypted_value.encode()).decode()
    except InvalidToken as exc:
        raise SecretDecryptionError("Stored secret cannot be decrypted with the configured ENCRYPTION_KEY.") from exc


def mask_secret(value: str, visible: int = 4) -> str:
    """Return ``value`` with everything but the last few characters hidden."""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
