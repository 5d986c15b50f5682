"""Tests for caller authentication (src/core/auth.py)."""

from __future__ import annotations

import base64

import pytest

from src.core.auth import (
    CAP_MANAGE,
    CAP_PUBLISH_VIA_API,
    InMemoryIdentityProvider,
    RequestVerifier,
    hash_password,
    parse_basic_credentials,
    verify_password,
)
from src.core.encryption import SecretCipher
from src.core.errors import Forbidden, Unauthorized
from src.core.kvstore import MemoryStore
from src.core.signing import SharedSecretVault, sign_payload


def _basic(raw: str) -> str:
    return "Basic " + base64.b64encode(raw.encode()).decode()


class TestPasswordHashing:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("app-password")
        assert hashed != "app-password"
        assert verify_password("app-password", hashed) is True
        assert verify_password("wrong", hashed) is False


class TestParseBasicCredentials:
    def test_valid_header(self) -> None:
        assert parse_basic_credentials(_basic("alice:pa:ss")) == ("alice", "pa:ss")

    @pytest.mark.parametrize(
        "header",
        [
            None,
            "",
            "Bearer abc",
            "Basic",
            "Basic !!!not-base64!!!",
            _basic("no-colon"),
            _basic(":password-only"),
        ],
    )
    def test_missing_or_malformed_header(self, header: str | None) -> None:
        with pytest.raises(Unauthorized):
            parse_basic_credentials(header)


class TestRequestVerifier:
    @pytest.fixture
    def verifier(self, identities: InMemoryIdentityProvider, memory_store: MemoryStore) -> RequestVerifier:
        return RequestVerifier(identities, SharedSecretVault(memory_store, SecretCipher("a", "b")))

    @pytest.mark.asyncio
    async def test_authenticate_publisher(self, verifier: RequestVerifier) -> None:
        identity = await verifier.authenticate(_basic("publisher:publisher-app-password"))
        assert identity.id == "1"
        assert identity.can(CAP_PUBLISH_VIA_API)

    @pytest.mark.asyncio
    async def test_username_is_case_insensitive(self, verifier: RequestVerifier) -> None:
        identity = await verifier.authenticate(_basic("Publisher:publisher-app-password"))
        assert identity.username == "publisher"

    @pytest.mark.asyncio
    async def test_wrong_password_is_unauthorized(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Unauthorized) as exc_info:
            await verifier.authenticate(_basic("publisher:wrong"))
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_user_is_unauthorized(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Unauthorized):
            await verifier.authenticate(_basic("nobody:whatever"))

    @pytest.mark.asyncio
    async def test_missing_capability_is_forbidden(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Forbidden) as exc_info:
            await verifier.authenticate(_basic("subscriber:subscriber-app-password"))
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_manage_capability_required_for_admin_actions(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Forbidden):
            await verifier.authenticate(_basic("publisher:publisher-app-password"), CAP_MANAGE)
        identity = await verifier.authenticate(_basic("admin:admin-app-password"), CAP_MANAGE)
        assert identity.id == "2"

    @pytest.mark.asyncio
    async def test_verify_signature_accepts_valid(self, verifier: RequestVerifier, memory_store: MemoryStore) -> None:
        secret = await SharedSecretVault(memory_store, SecretCipher("a", "b")).get_secret()
        body = b'{"title": "x"}'
        await verifier.verify_signature(body, sign_payload(body, secret))

    @pytest.mark.asyncio
    async def test_verify_signature_rejects_mismatch(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Unauthorized) as exc_info:
            await verifier.verify_signature(b'{"title": "x"}', sign_payload(b'{"title": "x"}', "guess"))
        assert exc_info.value.code == "invalid_signature"

    @pytest.mark.asyncio
    async def test_verify_signature_rejects_missing_header(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Unauthorized) as exc_info:
            await verifier.verify_signature(b'{"title": "x"}', None)
        assert exc_info.value.code == "missing_signature"

    @pytest.mark.asyncio
    async def test_verify_signature_rejects_empty_body(self, verifier: RequestVerifier) -> None:
        with pytest.raises(Unauthorized) as exc_info:
            await verifier.verify_signature(b"", "sha256=abc")
        assert exc_info.value.code == "empty_body"
