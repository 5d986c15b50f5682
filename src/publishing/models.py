"""Domain models for publish tasks and status callbacks.

``PublishRequest`` is the lenient inbound shape; admission validates and
normalizes it into a ``PublishTask``. Tasks and callback records are
stored as JSON in the key-value store.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PostStatus(enum.StrEnum):
    """Target publication status of a document."""

    DRAFT = "draft"
    PENDING = "pending"
    PUBLISH = "publish"


STATUS_ALIASES: dict[str, PostStatus] = {
    "pending-review": PostStatus.PENDING,
    "published": PostStatus.PUBLISH,
}


def parse_post_status(value: str) -> PostStatus | None:
    """Resolve a status or one of its aliases, case-insensitively."""
    key = value.strip().lower()
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    try:
        return PostStatus(key)
    except ValueError:
        return None


class CallbackStatus(enum.StrEnum):
    """Lifecycle stage reported by a status callback."""

    QUEUED = "queued"
    PUBLISHED = "published"
    ERROR = "error"


class CallbackStage(enum.StrEnum):
    """Index slot a callback occupies for its task."""

    QUEUED = "queued"
    FINAL = "final"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PublishRequest(BaseModel):
    """Inbound publish payload before validation."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    content: str | None = None
    excerpt: str | None = None
    hero_image_url: str | None = None
    tags: list[str] | None = None
    categories: list[str] | None = None
    post_status: str | None = None
    post_type: str | None = None
    author_id: str | int | None = None
    external_id: str | int | None = None
    seo_title: str | None = None
    meta_description: str | None = None


class PublishTask(BaseModel):
    """A validated publish request awaiting processing.

    ``media_id`` and ``document_id`` record side effects already performed
    so a re-attempt does not repeat them.
    """

    task_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    content: str
    excerpt: str = ""
    hero_image_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    post_status: PostStatus = PostStatus.DRAFT
    post_type: str = "post"
    author_id: str | None = None
    external_id: str | None = None
    submitted_by: str | None = None
    seo_title: str | None = None
    meta_description: str | None = None
    retry_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    media_id: str | None = None
    document_id: str | None = None
    last_error: str | None = None


class CallbackRecord(BaseModel):
    """A status notification awaiting delivery.

    ``submitted_by`` is the id of the caller that queued the task. It gates
    status lookups and is never sent to the destination.
    """

    callback_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    status: CallbackStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    retry_count: int = Field(default=0, ge=0)
    document_id: str | None = None
    post_url: str | None = None
    edit_url: str | None = None
    error_message: str | None = None
    submitted_by: str | None = None
    last_error: str | None = None

    @property
    def stage(self) -> CallbackStage:
        return CallbackStage.QUEUED if self.status == CallbackStatus.QUEUED else CallbackStage.FINAL

    def to_payload(self) -> dict[str, Any]:
        """JSON body sent to the callback destination. Absent fields are omitted."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"last_error", "submitted_by"})
