"""Encryption utilities for sensitive data."""

from cryptography.fernet import Fernet
from donorsync.config import get_settings


def get_cipher(key: str | None = None) -> Fernet:
    """Get Fernet cipher instance, defaulting to the encryption key from settings."""
    if key is None:
        key = get_settings().encryption_key
    return Fernet(key.encode())


def encrypt_token(token: str, key: str | None = None) -> str:
    """Encrypt a token (e.g., a CRM API key).

    Args:
        token: Plain text token to encrypt
        key: Optional Fernet key overriding settings

    Returns:
        Encrypted token as a string
    """
    cipher = get_cipher(key)
    encrypted = cipher.encrypt(token.encode())
    return encrypted.decode()


def decrypt_token(encrypted_token: str, key: str | None = None) -> str:
    """Decrypt an encrypted token.

    Args:
        encrypted_token: Encrypted token string
        key: Optional Fernet key overriding settings

    Returns:
        Decrypted plain text token

    Raises:
        cryptography.fernet.InvalidToken: If the token was not produced with this key.
    """
    cipher = get_cipher(key)
    decrypted = cipher.decrypt(encrypted_token.encode())
    return decrypted.decode()
