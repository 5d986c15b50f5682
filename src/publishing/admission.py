"""Admission of publish requests.

Validation rejects a request before anything is persisted. An accepted
request becomes a ``PublishTask`` that is stored, scheduled for immediate
processing and announced with a ``queued`` callback.
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

import pydantic

from src.content.base import ContentStore
from src.core.auth import CAP_PUBLISH_POSTS, Identity, IdentityProvider
from src.core.config import Settings
from src.core.errors import FieldError, PublishingError, SchedulingError, StoreError, ValidationError
from src.core.tasks.scheduler import Scheduler
from src.publishing.callbacks import CallbackDispatcher
from src.publishing.models import CallbackStatus, PostStatus, PublishRequest, PublishTask, parse_post_status
from src.publishing.sanitizer import sanitize_html, sanitize_terms, sanitize_text
from src.publishing.stores import TaskStore
from src.publishing.worker import PROCESS_TASK_ACTION

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def parse_publish_request(raw_body: bytes) -> PublishRequest:
    """Decode a JSON body into a ``PublishRequest``.

    Raises:
        ValidationError: The body is not JSON or a field has the wrong type.
    """
    try:
        return PublishRequest.model_validate_json(raw_body)
    except pydantic.ValidationError as exc:
        errors = []
        for err in exc.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "body"
            errors.append(FieldError(field, err.get("msg", "Invalid value")))
        raise ValidationError(errors) from exc


class AdmissionService:
    """Validates, persists and schedules publish requests.

    Args:
        settings: Defaults and the task lifetime.
        tasks: Task storage.
        scheduler: Substrate the worker runs on.
        dispatcher: Queues the initial ``queued`` callback.
        content: Consulted for post type checks.
        identities: Consulted for author checks.
    """

    def __init__(
        self,
        settings: Settings,
        tasks: TaskStore,
        scheduler: Scheduler,
        dispatcher: CallbackDispatcher,
        content: ContentStore,
        identities: IdentityProvider,
    ) -> None:
        self._settings = settings
        self._tasks = tasks
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._content = content
        self._identities = identities

    async def validate(self, request: PublishRequest, caller: Identity) -> PublishTask:
        """Normalize ``request`` into a task.

        Raises:
            ValidationError: One or more fields were rejected.
        """
        errors: list[FieldError] = []

        title = sanitize_text(request.title)
        if not title:
            errors.append(FieldError("title", "Title is required."))
        elif len(title) > MAX_TITLE_LENGTH:
            errors.append(FieldError("title", f"Title must be {MAX_TITLE_LENGTH} characters or fewer."))

        content = ""
        if not request.content or not request.content.strip():
            errors.append(FieldError("content", "Content is required."))
        else:
            content = sanitize_html(request.content)
            if not content:
                errors.append(FieldError("content", "Content is empty after removing unsafe markup."))

        hero_image_url = (request.hero_image_url or "").strip() or None
        if hero_image_url:
            error = self._check_image_url(hero_image_url)
            if error:
                errors.append(FieldError("hero_image_url", error))

        post_status = parse_post_status(self._settings.default_post_status) or PostStatus.DRAFT
        if request.post_status is not None and request.post_status.strip():
            parsed = parse_post_status(request.post_status)
            if parsed is None:
                allowed = ", ".join(status.value for status in PostStatus)
                errors.append(FieldError("post_status", f"Invalid post status. Allowed values: {allowed}."))
            else:
                post_status = parsed

        post_type = (request.post_type or "").strip() or self._settings.default_post_type
        error = await self._check_post_type(post_type)
        if error:
            errors.append(FieldError("post_type", error))

        author_id, error = await self._resolve_author(request, caller)
        if error:
            errors.append(FieldError("author_id", error))

        if errors:
            raise ValidationError(errors)

        external_id = sanitize_text(str(request.external_id)) if request.external_id is not None else ""
        return PublishTask(
            title=title,
            content=content,
            excerpt=sanitize_text(request.excerpt),
            hero_image_url=hero_image_url,
            tags=sanitize_terms(request.tags),
            categories=sanitize_terms(request.categories),
            post_status=post_status,
            post_type=post_type,
            author_id=author_id,
            submitted_by=caller.id,
            external_id=external_id or None,
            seo_title=sanitize_text(request.seo_title) or None,
            meta_description=sanitize_text(request.meta_description) or None,
        )

    @staticmethod
    def _check_image_url(url: str) -> str | None:
        try:
            parts = urlsplit(url)
        except ValueError:
            return "Invalid image URL."
        if not parts.scheme or not parts.netloc:
            return "Invalid image URL."
        if parts.scheme.lower() != "https":
            return "Image URL must use HTTPS."
        return None

    async def _check_post_type(self, name: str) -> str | None:
        post_type = await self._content.get_post_type(name)
        if post_type is None:
            return f"Post type '{name}' does not exist."
        if not post_type.public:
            return f"Post type '{name}' is not public."
        return None

    async def _resolve_author(self, request: PublishRequest, caller: Identity) -> tuple[str | None, str | None]:
        """Return ``(author_id, error)``; the caller is the fallback author."""
        if request.author_id is not None and str(request.author_id).strip():
            candidate = str(request.author_id).strip()
        elif self._settings.default_author:
            candidate = self._settings.default_author
        else:
            return caller.id, None

        if candidate == caller.id:
            return candidate, None
        author = await self._identities.get_identity(candidate)
        if author is None:
            return None, f"Author '{candidate}' does not exist."
        if not author.can(CAP_PUBLISH_POSTS):
            return None, f"Author '{candidate}' cannot publish posts."
        return author.id, None

    async def submit(self, request: PublishRequest, caller: Identity) -> PublishTask:
        """Validate, persist and schedule a publish request.

        Raises:
            ValidationError: The request was rejected; nothing was stored.
            SchedulingError: The task could not be stored or scheduled;
                any stored task was removed again.
        """
        task = await self.validate(request, caller)

        try:
            await self._tasks.save(task, self._settings.task_ttl_seconds)
        except StoreError as exc:
            logger.error("Failed to store task %s: %s", task.task_id, exc)
            raise SchedulingError("Failed to schedule post for publishing.") from exc

        try:
            await self._scheduler.schedule_once(0, PROCESS_TASK_ACTION, {"task_id": task.task_id})
        except SchedulingError as exc:
            logger.error("Failed to schedule task %s: %s", task.task_id, exc)
            await self._rollback(task.task_id)
            raise SchedulingError("Failed to schedule post for publishing.") from exc

        try:
            await self._dispatcher.queue_status(task.task_id, CallbackStatus.QUEUED, submitted_by=task.submitted_by)
        except PublishingError:
            logger.exception("Failed to queue initial callback for task %s", task.task_id)

        logger.info("Accepted task %s (%s) from %s", task.task_id, task.title, caller.username)
        return task

    async def _rollback(self, task_id: str) -> None:
        try:
            await self._tasks.delete(task_id)
        except StoreError:
            logger.exception("Failed to remove unscheduled task %s", task_id)
