"""Tests for the publish endpoint and the task callback lookup."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from src.content.memory import InMemoryContentStore
from src.core.errors import SchedulingError
from src.core.kvstore import MemoryStore
from src.core.signing import SIGNATURE_HEADER
from src.core.tasks.scheduler import LocalScheduler
from src.publishing.models import CallbackStatus
from src.publishing.services import PublishingServices

from tests.conftest import ADMIN, OTHER_PUBLISHER, PUBLISHER, SUBSCRIBER, CallbackReceiver, basic_auth

Headers = Callable[..., Awaitable[dict[str, str]]]
Drain = Callable[[], Awaitable[int]]

PUBLISH_URL = "/api/v1/publish-post"


def _body(**fields: Any) -> bytes:
    data: dict[str, Any] = {"title": "Hello", "content": "<p>World</p>"}
    data.update(fields)
    return json.dumps(data).encode()


def _task_keys(memory_store: MemoryStore) -> list[str]:
    return [key for key in memory_store.keys() if key.startswith("task:")]


class TestPublishPost:
    @pytest.mark.asyncio
    async def test_accepted(
        self,
        client: AsyncClient,
        signed_headers: Headers,
        scheduler: LocalScheduler,
        memory_store: MemoryStore,
    ) -> None:
        body = _body(tags=["ai", "news"], categories=["Tech"])

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["message"] == "Post queued for publishing."
        assert _task_keys(memory_store) == [f"task:{data['task_id']}"]
        assert scheduler.pending()[0].args == {"task_id": data["task_id"]}

    @pytest.mark.asyncio
    async def test_end_to_end_publish(
        self,
        client: AsyncClient,
        signed_headers: Headers,
        content_store: InMemoryContentStore,
        receiver: CallbackReceiver,
        drain: Drain,
    ) -> None:
        body = _body(tags=["ai", "news"], categories=["Tech"], post_status="publish")
        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))
        task_id = response.json()["task_id"]

        await drain()

        [doc] = content_store.documents.values()
        assert doc.tags == {"ai", "news"}
        assert content_store.category_names(doc.id) == {"Tech"}
        assert doc.fields.meta["_task_id"] == task_id
        statuses = sorted(payload["status"] for payload in receiver.payloads if payload["task_id"] == task_id)
        assert statuses == ["published", "queued"]

        lookup = await client.get(f"/api/v1/tasks/{task_id}/callback", headers={"Authorization": basic_auth(*PUBLISHER)})
        assert lookup.status_code == 200
        assert lookup.json()["status"] == "published"
        assert lookup.json()["state"] == "DELIVERED"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, client: AsyncClient, memory_store: MemoryStore) -> None:
        response = await client.post(PUBLISH_URL, content=_body())

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"].startswith("Basic")
        assert response.json()["code"] == "missing_credentials"
        assert _task_keys(memory_store) == []

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient, signed_headers: Headers) -> None:
        body = _body()
        headers = await signed_headers(body, ("publisher", "wrong"))

        response = await client.post(PUBLISH_URL, content=body, headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_capability(
        self, client: AsyncClient, signed_headers: Headers, memory_store: MemoryStore
    ) -> None:
        body = _body()

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body, SUBSCRIBER))

        assert response.status_code == 403
        assert _task_keys(memory_store) == []

    @pytest.mark.asyncio
    async def test_bad_signature(self, client: AsyncClient, signed_headers: Headers, memory_store: MemoryStore) -> None:
        body = _body()
        headers = await signed_headers(body)
        headers[SIGNATURE_HEADER] = "sha256=" + "0" * 64

        response = await client.post(PUBLISH_URL, content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_signature"
        assert _task_keys(memory_store) == []

    @pytest.mark.asyncio
    async def test_signature_over_different_body(self, client: AsyncClient, signed_headers: Headers) -> None:
        headers = await signed_headers(_body(title="Original"))

        response = await client.post(PUBLISH_URL, content=_body(title="Tampered"), headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_signature(self, client: AsyncClient) -> None:
        response = await client.post(
            PUBLISH_URL, content=_body(), headers={"Authorization": basic_auth(*PUBLISHER)}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "missing_signature"

    @pytest.mark.asyncio
    async def test_empty_body(self, client: AsyncClient, signed_headers: Headers) -> None:
        headers = await signed_headers(b"")

        response = await client.post(PUBLISH_URL, content=b"", headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "empty_body"

    @pytest.mark.asyncio
    async def test_insecure_hero_image_rejected(
        self,
        client: AsyncClient,
        signed_headers: Headers,
        memory_store: MemoryStore,
        scheduler: LocalScheduler,
    ) -> None:
        body = _body(hero_image_url="http://cdn.example.com/a.png")

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))

        assert response.status_code == 422
        assert response.json()["errors"] == [{"field": "hero_image_url", "message": "Image URL must use HTTPS."}]
        assert _task_keys(memory_store) == []
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_title_too_long(self, client: AsyncClient, signed_headers: Headers) -> None:
        body = _body(title="x" * 201)

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "title"

    @pytest.mark.asyncio
    async def test_invalid_status(self, client: AsyncClient, signed_headers: Headers) -> None:
        body = _body(post_status="archived")

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "post_status"

    @pytest.mark.asyncio
    async def test_malformed_json(self, client: AsyncClient, signed_headers: Headers) -> None:
        body = b"{not json"

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))

        assert response.status_code == 422
        assert response.json()["detail"] == "Validation failed"

    @pytest.mark.asyncio
    async def test_scheduling_failure(
        self,
        client: AsyncClient,
        signed_headers: Headers,
        scheduler: LocalScheduler,
        memory_store: MemoryStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(scheduler, "schedule_once", AsyncMock(side_effect=SchedulingError("redis down")))
        body = _body()

        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to schedule post for publishing."
        assert _task_keys(memory_store) == []


class TestTaskCallbackLookup:
    @pytest.mark.asyncio
    async def test_unknown_task(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/tasks/nope/callback", headers={"Authorization": basic_auth(*ADMIN)})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_credentials(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/tasks/nope/callback")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_queued_state_before_delivery(
        self, client: AsyncClient, services: PublishingServices
    ) -> None:
        record = await services.dispatcher.queue_status("t-1", CallbackStatus.QUEUED, submitted_by="1")

        response = await client.get("/api/v1/tasks/t-1/callback", headers={"Authorization": basic_auth(*PUBLISHER)})

        assert response.status_code == 200
        data = response.json()
        assert data["callback_id"] == record.callback_id
        assert data["status"] == "queued"
        assert data["state"] == "QUEUED"
        assert data["retry_count"] == 0

    @pytest.mark.asyncio
    async def test_other_publisher_cannot_see_task(
        self, client: AsyncClient, signed_headers: Headers, drain: Drain
    ) -> None:
        body = _body()
        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))
        task_id = response.json()["task_id"]
        await drain()

        lookup = await client.get(
            f"/api/v1/tasks/{task_id}/callback", headers={"Authorization": basic_auth(*OTHER_PUBLISHER)}
        )

        assert lookup.status_code == 404

    @pytest.mark.asyncio
    async def test_manager_can_see_any_task(
        self, client: AsyncClient, signed_headers: Headers, drain: Drain
    ) -> None:
        body = _body()
        response = await client.post(PUBLISH_URL, content=body, headers=await signed_headers(body))
        task_id = response.json()["task_id"]
        await drain()

        lookup = await client.get(f"/api/v1/tasks/{task_id}/callback", headers={"Authorization": basic_auth(*ADMIN)})

        assert lookup.status_code == 200
        assert lookup.json()["status"] == "published"
        assert lookup.json()["state"] == "DELIVERED"
