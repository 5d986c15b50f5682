"""HMAC request signing and the shared signing secret.

Publishing clients sign the exact raw request body with HMAC-SHA256 and
send it as ``X-PostRelay-Signature: sha256=<hex>``. The shared secret
lives in the key-value store encrypted with ``SecretCipher``; it is
generated on first use and only ever decrypted transiently.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from src.core.encryption import SecretCipher
from src.core.kvstore import KeyValueStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-PostRelay-Signature"
SIGNATURE_PREFIX = "sha256="
SECRET_KEY = "signing:secret"


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature of ``body`` under ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    """Check a signature header against the raw body.

    Fails closed: an empty body, an empty secret, a missing header or a
    header without the ``sha256=`` prefix are all rejected.
    """
    if not raw_body or not secret or not signature_header:
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign_payload(raw_body, secret)
    return hmac.compare_digest(expected, signature_header.strip())


class SharedSecretVault:
    """Self-initializing store for the inbound signing secret.

    Args:
        store: Backing key-value store.
        cipher: Cipher used to encrypt the secret at rest.
    """

    def __init__(self, store: KeyValueStore, cipher: SecretCipher) -> None:
        self._store = store
        self._cipher = cipher

    async def get_secret(self) -> str:
        """Return the current secret, generating one if none is usable.

        A stored value that can no longer be decrypted (e.g. the secret
        material changed) is replaced rather than treated as an error.
        """
        stored = await self._store.get(SECRET_KEY)
        if stored:
            secret = self._cipher.decrypt(stored)
            if secret:
                return secret
            logger.warning("Stored signing secret could not be decrypted; generating a new one")
        return await self.rotate()

    async def rotate(self) -> str:
        """Generate, encrypt and persist a fresh secret."""
        secret = secrets.token_urlsafe(48)
        await self._store.set(SECRET_KEY, self._cipher.encrypt(secret))
        logger.info("Generated new signing secret")
        return secret
