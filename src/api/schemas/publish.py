"""Pydantic response schemas for the publishing and callback routes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class PublishAccepted(BaseModel):
    """Acknowledgment returned once a task is queued."""

    message: str
    task_id: str
    status: str = "queued"


class CallbackStatusResponse(BaseModel):
    """Delivery state of the most advanced callback for a task."""

    task_id: str
    callback_id: str
    status: str
    state: str
    retry_count: int = 0
    timestamp: datetime | None = None
    last_error: str | None = None


class CallbackRetryAccepted(BaseModel):
    message: str
    callback_id: str
    task_id: str
    retry_count: int = 0


class HealthConfig(BaseModel):
    callback_url_configured: bool
    callback_key_configured: bool
    default_post_status: str
    default_post_type: str


class HealthResponse(BaseModel):
    """Unauthenticated liveness and configuration summary."""

    status: str
    version: str
    time: datetime
    config: HealthConfig
    services: dict[str, str] = {}
