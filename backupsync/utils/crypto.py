"""
Encryption utilities for credentials stored in the settings file.

Transport and email passwords may be stored as '<field>_encrypted' values.
They are Fernet tokens whose key is derived from a master password (and a
salt) supplied through the environment, so the settings file alone does not
reveal them.
"""

import base64
import os
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

ENCRYPTED_SUFFIX = '_encrypted'


def encode_salt(salt: bytes) -> str:
    return base64.urlsafe_b64encode(salt).decode()


def decode_salt(salt: str) -> bytes:
    return base64.urlsafe_b64decode(salt.encode())


class CryptoManager:
    """Handles encryption and decryption of stored credentials."""

    def __init__(self):
        self._fernet = None
        self._salt = None

    def initialize(self, password: str, salt: bytes = None) -> bytes:
        """
        Initialize the encryption manager with a master password.

        Args:
            password: Master password to derive the encryption key from
            salt: Optional salt (if None, generates new one)

        Returns:
            The salt used (keep it next to the master password)
        """
        if salt is None:
            salt = os.urandom(16)

        self._salt = salt

        # Derive a 32-byte key from password using PBKDF2
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=480000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(password.encode()))

        self._fernet = Fernet(key)
        return salt

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Raises:
            RuntimeError: If crypto manager not initialized
        """
        if not self._fernet:
            raise RuntimeError("CryptoManager not initialized. Call initialize() first.")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a string produced by encrypt().

        Raises:
            RuntimeError: If crypto manager not initialized
            cryptography.fernet.InvalidToken: If decryption fails
        """
        if not self._fernet:
            raise RuntimeError("CryptoManager not initialized. Call initialize() first.")

        return self._fernet.decrypt(encrypted.encode()).decode()

    def decrypt_section(self, section: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a copy of a settings section with encrypted fields decrypted.

        'password_encrypted' becomes 'password', and so on. Plain values
        already present are overwritten by the decrypted ones.
        """
        decrypted = {}
        for key, value in section.items():
            if key.endswith(ENCRYPTED_SUFFIX) and value:
                decrypted[key[:-len(ENCRYPTED_SUFFIX)]] = self.decrypt(value)
            elif key not in decrypted:
                decrypted[key] = value
        return decrypted

    @property
    def is_initialized(self) -> bool:
        """Check if the crypto manager has been initialized."""
        return self._fernet is not None


def create_crypto_manager(password: Optional[str], salt: Optional[str]) -> CryptoManager:
    """
    Create a crypto manager from the master password settings.

    Returns an uninitialized manager when no password is configured.

    Raises:
        ValueError: If a password is configured without a salt
    """
    manager = CryptoManager()
    if not password:
        return manager
    if not salt:
        raise ValueError("A master salt is required together with the master password")

    manager.initialize(password, decode_salt(salt))
    return manager
