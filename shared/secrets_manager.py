"""
Encryption helpers for values kept in the secure key-value store.
"""

import base64
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shared.errors import StorageError
from shared.logging import get_logger

logger = get_logger("shared.secrets_manager")

DEFAULT_SALT = b"client_gateway_store"


class SecretsCipher:
    """
    Symmetric cipher for values persisted at rest.

    The Fernet key is derived from a master key with PBKDF2-HMAC-SHA256 so
    that any passphrase can be used as the master key.
    """

    def __init__(self, master_key: Optional[str] = None, salt: bytes = DEFAULT_SALT,
                 iterations: int = 100000):
        """
        Initialize the cipher.

        Args:
            master_key: Passphrase for encryption/decryption; falls back to
                the ``GATEWAY_MASTER_KEY`` environment variable
            salt: KDF salt
            iterations: KDF iteration count
        """
        self.master_key = master_key or os.getenv("GATEWAY_MASTER_KEY")
        if not self.master_key:
            raise ValueError("Master key is required")

        self._fernet = self._create_fernet(salt, iterations)

    @classmethod
    def generate(cls) -> "SecretsCipher":
        """Create a cipher around a random, throwaway master key."""
        return cls(Fernet.generate_key().decode())

    def _create_fernet(self, salt: bytes, iterations: int) -> Fernet:
        """Create a Fernet cipher instance from the master key."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self.master_key.encode()))
        return Fernet(key)

    def encrypt(self, value: str) -> str:
        """Encrypt a string value."""
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Raises:
            StorageError: If the value was tampered with or encrypted with a
                different key
        """
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as e:
            logger.error("Failed to decrypt stored value")
            raise StorageError("Stored value could not be decrypted") from e
