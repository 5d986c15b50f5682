"""Shared test fixtures for the PostRelay test suite.

Provides test settings, a controllable clock, the in-memory store and
scheduler, in-memory collaborators, a recording callback receiver, and
a FastAPI test client wired to the same components.
"""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from src.content.memory import InMemoryContentStore
from src.core.auth import CAP_MANAGE, CAP_PUBLISH_POSTS, CAP_PUBLISH_VIA_API, Identity, InMemoryIdentityProvider
from src.core.config import Settings
from src.core.kvstore import MemoryStore
from src.core.signing import SIGNATURE_HEADER, sign_payload
from src.core.tasks.scheduler import LocalScheduler
from src.publishing.media import ImageFetcher
from src.publishing.notifications import OperatorNotifier
from src.publishing.services import PublishingServices, build_services

SITE_URL = "https://blog.example.com"
CALLBACK_URL = "https://hooks.example.com/postrelay"
CALLBACK_KEY = "callback-key-123"

PUBLISHER = ("publisher", "publisher-app-password")
ADMIN = ("admin", "admin-app-password")
SUBSCRIBER = ("subscriber", "subscriber-app-password")
AUTHOR = ("author", "author-app-password")
OTHER_PUBLISHER = ("publisher2", "publisher2-app-password")

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CallbackReceiver:
    """Records outbound callback requests and answers with queued status codes.

    Once the queue of status codes is exhausted, ``default_status`` is used.
    """

    def __init__(self, default_status: int = 200) -> None:
        self.default_status = default_status
        self.statuses: list[int] = []
        self.requests: list[httpx.Request] = []
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status = self.statuses.pop(0) if self.statuses else self.default_status
        return httpx.Response(status, json={"received": True})

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


def image_origin(request: httpx.Request) -> httpx.Response:
    """Serves PNG bytes for GET and a PNG Content-Type for HEAD."""
    if request.url.path.endswith("/missing.png"):
        return httpx.Response(404)
    if request.method == "HEAD":
        return httpx.Response(200, headers={"Content-Type": "image/png"})
    return httpx.Response(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})


def basic_auth(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't connect to real services."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        app_env="testing",
        debug=False,
        store_backend="memory",
        auth_key="test-auth-key",
        nonce_salt="test-nonce-salt",
        callback_url=CALLBACK_URL,
        callback_api_key=CALLBACK_KEY,
        site_url=SITE_URL,
        site_name="PostRelay Test",
        scheduler_enabled=False,
        log_verbosity="all",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def scheduler(clock: FakeClock) -> LocalScheduler:
    return LocalScheduler(clock=clock)


@pytest.fixture(scope="session")
def seeded_identities() -> tuple[InMemoryIdentityProvider, dict[str, Identity]]:
    """Identity provider plus the identities it was seeded with, keyed by username.

    Session-scoped because bcrypt hashing is deliberately slow.
    """
    provider = InMemoryIdentityProvider()
    seeded = [
        provider.add_identity(*PUBLISHER, {CAP_PUBLISH_VIA_API, CAP_PUBLISH_POSTS}, identity_id="1"),
        provider.add_identity(*ADMIN, {CAP_PUBLISH_VIA_API, CAP_PUBLISH_POSTS, CAP_MANAGE}, identity_id="2"),
        provider.add_identity(*SUBSCRIBER, set(), identity_id="3"),
        provider.add_identity(*AUTHOR, {CAP_PUBLISH_POSTS}, identity_id="4"),
        provider.add_identity(*OTHER_PUBLISHER, {CAP_PUBLISH_VIA_API, CAP_PUBLISH_POSTS}, identity_id="5"),
    ]
    return provider, {identity.username: identity for identity in seeded}


@pytest.fixture(scope="session")
def identities(seeded_identities: tuple[InMemoryIdentityProvider, dict[str, Identity]]) -> InMemoryIdentityProvider:
    return seeded_identities[0]


@pytest.fixture
def publisher(seeded_identities: tuple[InMemoryIdentityProvider, dict[str, Identity]]) -> Identity:
    return seeded_identities[1][PUBLISHER[0]]


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore(SITE_URL)


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock(spec=OperatorNotifier)


@pytest.fixture
def receiver() -> CallbackReceiver:
    return CallbackReceiver()


@pytest.fixture
def image_fetcher() -> ImageFetcher:
    return ImageFetcher(transport=httpx.MockTransport(image_origin))


@pytest.fixture
def services(
    test_settings: Settings,
    memory_store: MemoryStore,
    scheduler: LocalScheduler,
    identities: InMemoryIdentityProvider,
    content_store: InMemoryContentStore,
    notifier: AsyncMock,
    receiver: CallbackReceiver,
    image_fetcher: ImageFetcher,
) -> PublishingServices:
    return build_services(
        test_settings,
        kv=memory_store,
        scheduler=scheduler,
        identities=identities,
        content=content_store,
        fetcher=image_fetcher,
        notifier=notifier,
        callback_transport=httpx.MockTransport(receiver),
    )


@pytest.fixture
def drain(scheduler: LocalScheduler) -> Callable[[], Awaitable[int]]:
    """Run sweeps at the current time until nothing more is due."""

    async def _drain(max_rounds: int = 20) -> int:
        total = 0
        for _ in range(max_rounds):
            dispatched = await scheduler.run_due()
            if not dispatched:
                break
            total += dispatched
        return total

    return _drain


@pytest.fixture
def signed_headers(services: PublishingServices) -> Callable[..., Awaitable[dict[str, str]]]:
    """Build Basic auth plus body signature headers for a raw body."""

    async def _headers(body: bytes, credentials: tuple[str, str] = PUBLISHER) -> dict[str, str]:
        secret = await services.vault.get_secret()
        return {
            "Authorization": basic_auth(*credentials),
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(body, secret),
        }

    return _headers


@pytest.fixture
def test_app(test_settings: Settings, services: PublishingServices) -> Any:
    """FastAPI application with injected components.

    ASGITransport does not run the lifespan, so the scheduler loop is not
    started; tests drive the scheduler explicitly.
    """
    from src.api.main import create_app

    return create_app(test_settings, services)


@pytest.fixture
async def client(test_app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Create a mock Redis client."""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.publish = AsyncMock(return_value=0)
    client.pubsub = MagicMock()
    return client
