"""Fernet-based encryption for secrets at rest.

The signing secret shared with publishing clients is stored encrypted.
The key is derived from the two process-wide secret materials
(``auth_key`` and ``nonce_salt``) so that a leaked store dump alone does
not reveal the secret.
"""

from __future__ import annotations

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from src.core.config import Settings

logger = logging.getLogger(__name__)


def _derive_fernet_key(secret: str) -> bytes:
    """Derive a valid Fernet key from an arbitrary secret string."""
    derived = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(derived)


class SecretCipher:
    """Symmetric cipher for small string secrets.

    Args:
        auth_key: First process-wide secret material.
        nonce_salt: Second process-wide secret material.
    """

    def __init__(self, auth_key: str, nonce_salt: str) -> None:
        if not auth_key or not nonce_salt:
            raise ValueError("Both auth_key and nonce_salt are required for encryption")
        self._fernet = Fernet(_derive_fernet_key(auth_key + nonce_salt))

    @classmethod
    def from_settings(cls, settings: Settings) -> SecretCipher:
        return cls(settings.auth_key, settings.nonce_salt)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string value and return base64-encoded ciphertext."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str | None:
        """Decrypt a ciphertext.

        Returns:
            The plaintext, or None when the token is corrupt or was
            produced under different secret material.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, ValueError):
            logger.error("Failed to decrypt value: invalid token or wrong key")
            return None
