"""Caller authentication for the publishing API.

Supports:
- Basic credentials checked against an identity provider
- Capability checks (publish, author, manage)
- HMAC signature verification of the raw request body
- An in-memory identity provider with bcrypt-hashed application passwords
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import bcrypt

from src.core.errors import Forbidden, Unauthorized
from src.core.signing import SharedSecretVault, verify_signature

logger = logging.getLogger(__name__)

# Capabilities
CAP_PUBLISH_VIA_API = "publish_via_api"
CAP_PUBLISH_POSTS = "publish_posts"
CAP_MANAGE = "manage_publisher"


# ---------------------------------------------------------------------------
# Password helpers
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plaintext password against its bcrypt hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """An authenticated caller or a prospective document author."""

    id: str
    username: str
    capabilities: frozenset[str] = field(default_factory=frozenset)
    email: str = ""

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


@runtime_checkable
class IdentityProvider(Protocol):
    """Collaborator that owns user accounts."""

    async def check_credentials(self, username: str, password: str) -> Identity | None:
        """Return the identity when the password matches, else None."""
        ...

    async def get_identity(self, identity_id: str) -> Identity | None:
        """Look up an identity by id."""
        ...


class InMemoryIdentityProvider:
    """Identity provider backed by a dict, for development and tests."""

    def __init__(self) -> None:
        self._by_id: dict[str, Identity] = {}
        self._by_username: dict[str, tuple[Identity, str]] = {}

    def add_identity(
        self,
        username: str,
        password: str,
        capabilities: set[str] | frozenset[str],
        identity_id: str | None = None,
        email: str = "",
    ) -> Identity:
        identity = Identity(
            id=identity_id or str(uuid.uuid4()),
            username=username,
            capabilities=frozenset(capabilities),
            email=email,
        )
        self._by_id[identity.id] = identity
        self._by_username[username.lower()] = (identity, hash_password(password))
        return identity

    async def check_credentials(self, username: str, password: str) -> Identity | None:
        entry = self._by_username.get(username.lower())
        if entry is None:
            return None
        identity, hashed = entry
        if not verify_password(password, hashed):
            return None
        return identity

    async def get_identity(self, identity_id: str) -> Identity | None:
        return self._by_id.get(identity_id)


# ---------------------------------------------------------------------------
# Request verification
# ---------------------------------------------------------------------------


def parse_basic_credentials(authorization: str | None) -> tuple[str, str]:
    """Split a ``Basic`` authorization header into username and password.

    Raises:
        Unauthorized: The header is missing or malformed.
    """
    if not authorization:
        raise Unauthorized("Authentication required", code="missing_credentials")
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        raise Unauthorized("Invalid authorization header", code="invalid_credentials")
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise Unauthorized("Invalid authorization header", code="invalid_credentials") from exc
    username, sep, password = decoded.partition(":")
    if not sep or not username:
        raise Unauthorized("Invalid authorization header", code="invalid_credentials")
    return username, password


class RequestVerifier:
    """Authenticates callers and checks request signatures.

    Args:
        identities: Identity provider used for credential checks.
        vault: Holder of the shared signing secret.
    """

    def __init__(self, identities: IdentityProvider, vault: SharedSecretVault) -> None:
        self._identities = identities
        self._vault = vault

    async def authenticate(
        self,
        authorization: str | None,
        capability: str = CAP_PUBLISH_VIA_API,
    ) -> Identity:
        """Resolve the caller from a Basic header and require ``capability``.

        Raises:
            Unauthorized: Missing, malformed or rejected credentials.
            Forbidden: The caller lacks ``capability``.
        """
        username, password = parse_basic_credentials(authorization)
        identity = await self._identities.check_credentials(username, password)
        if identity is None:
            logger.warning("Rejected credentials for user %s", username)
            raise Unauthorized("Invalid username or password", code="invalid_credentials")
        if not identity.can(capability):
            logger.warning("User %s lacks capability %s", username, capability)
            raise Forbidden("You do not have permission to perform this action")
        return identity

    async def verify_signature(self, raw_body: bytes, signature_header: str | None) -> None:
        """Require a valid ``sha256=`` HMAC of the raw body.

        Raises:
            Unauthorized: The body is empty, the header is missing, or the
                signature does not match.
        """
        if not raw_body:
            raise Unauthorized("Request body is empty", code="empty_body")
        if not signature_header:
            raise Unauthorized("Missing request signature", code="missing_signature")
        secret = await self._vault.get_secret()
        if not verify_signature(raw_body, signature_header, secret):
            logger.warning("Rejected request with invalid signature")
            raise Unauthorized("Invalid request signature", code="invalid_signature")
