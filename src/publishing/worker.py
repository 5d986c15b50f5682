"""Publish task worker.

Invoked by the scheduler with a task id. One attempt runs three steps:

1. fetch the hero image (if any) and attach it as media,
2. insert the document,
3. set the primary image, tags and categories and resolve the URLs.

Each step returns a ``StepResult``; the first failure ends the attempt
and the retry logic either re-persists the task and schedules it on the
task backoff table or, once the retry budget is spent or a retry cannot
be scheduled, queues an ``error`` callback, deletes the task and alerts
the operator. Terminal callbacks are queued before the task is deleted.
Media and document ids are recorded on the task as they are created,
so a re-attempt after a late failure does not insert a second document.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from src.content.base import TAXONOMY_CATEGORY, ContentStore, DocumentFields, DocumentUrls
from src.core.config import Settings
from src.core.errors import PublishingError
from src.core.tasks.base import TASK_BACKOFF, BackoffPolicy, TaskStatus
from src.core.tasks.scheduler import Scheduler
from src.publishing.callbacks import CallbackDispatcher
from src.publishing.media import ImageFetcher, ImageFetchError, is_https_url
from src.publishing.models import CallbackStatus, PublishTask
from src.publishing.notifications import OperatorNotifier
from src.publishing.results import StepResult
from src.publishing.stores import TaskStore

logger = logging.getLogger(__name__)

PROCESS_TASK_ACTION = "publish.process_task"

# Tracking metadata keys stamped on every document
META_TASK_ID = "_task_id"
META_PUBLISHED_AT = "_published_at"
META_EXTERNAL_ID = "_external_id"
META_SEO_TITLE = "_seo_title"
META_META_DESCRIPTION = "_meta_description"


class PublishWorker:
    """Runs publish attempts and owns the task retry chain.

    Args:
        settings: Lifetimes and publishing defaults.
        tasks: Task storage; the stored ``retry_count`` is authoritative.
        content: Content store collaborator.
        fetcher: Hero image downloader.
        scheduler: Substrate for backoff re-attempts.
        dispatcher: Receives terminal callbacks.
        notifier: Receives permanent-failure alerts.
        backoff: Retry schedule; defaults to the task backoff table.
    """

    def __init__(
        self,
        settings: Settings,
        tasks: TaskStore,
        content: ContentStore,
        fetcher: ImageFetcher,
        scheduler: Scheduler,
        dispatcher: CallbackDispatcher,
        notifier: OperatorNotifier,
        backoff: BackoffPolicy = TASK_BACKOFF,
    ) -> None:
        self._settings = settings
        self._tasks = tasks
        self._content = content
        self._fetcher = fetcher
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._backoff = backoff

    async def process_task(self, task_id: str) -> TaskStatus | None:
        """Run one publish attempt for ``task_id``.

        Returns:
            The state the task ended in, or None when the task no longer
            exists (already finished, expired, or a duplicate invocation).
        """
        task = await self._tasks.load(task_id)
        if task is None:
            logger.warning("Task %s not found; already processed or expired", task_id)
            return None

        logger.info("Task %s %s (retry %d)", task_id, TaskStatus.PROCESSING, task.retry_count)

        result = await self._attempt(task)
        if result.ok and result.value is not None:
            return await self._finalize(task, result.value)
        return await self._handle_failure(task, result)

    async def _attempt(self, task: PublishTask) -> StepResult[DocumentUrls]:
        try:
            media = await self._fetch_media(task)
            if not media.ok:
                return StepResult.failure(media.error or "")

            document = await self._insert_document(task)
            if not document.ok or document.value is None:
                return StepResult.failure(document.error or "")

            return await self._apply_taxonomy(task, document.value, media.value)
        except Exception as exc:
            logger.exception("Unexpected error while processing task %s", task.task_id)
            return StepResult.failure(f"{type(exc).__name__}: {exc}")

    # ── Steps ────────────────────────────────────────────────────

    async def _fetch_media(self, task: PublishTask) -> StepResult[str]:
        if not task.hero_image_url:
            return StepResult.success(None)
        if task.media_id:
            return StepResult.success(task.media_id)
        if not is_https_url(task.hero_image_url):
            return StepResult.failure("Image URL must use HTTPS.")

        try:
            image = await self._fetcher.fetch(task.hero_image_url)
        except ImageFetchError as exc:
            return StepResult.failure(f"Failed to download hero image: {exc}")

        try:
            media_id = await self._content.attach_media(image.data, image.filename, image.content_type)
        except Exception as exc:
            return StepResult.failure(f"Failed to attach hero image: {exc}")

        task.media_id = media_id
        return StepResult.success(media_id)

    async def _insert_document(self, task: PublishTask) -> StepResult[str]:
        if task.document_id:
            logger.info("Task %s reusing document %s from an earlier attempt", task.task_id, task.document_id)
            return StepResult.success(task.document_id)

        fields = DocumentFields(
            title=task.title,
            content=task.content,
            excerpt=task.excerpt,
            status=str(task.post_status),
            post_type=task.post_type,
            author_id=task.author_id,
            meta=self._tracking_meta(task),
        )
        try:
            doc_id = await self._content.insert_document(fields)
        except Exception as exc:
            return StepResult.failure(f"Failed to create post: {exc}")

        task.document_id = doc_id
        return StepResult.success(doc_id)

    async def _apply_taxonomy(self, task: PublishTask, doc_id: str, media_id: str | None) -> StepResult[DocumentUrls]:
        try:
            if media_id:
                await self._content.set_primary_image(doc_id, media_id)
            if task.tags:
                await self._content.set_tags(doc_id, task.tags)
            names = task.categories or [self._settings.default_category]
            term_ids = await self._content.ensure_taxonomy_terms(names, TAXONOMY_CATEGORY)
            await self._content.set_categories(doc_id, term_ids)
            urls = await self._content.get_document_urls(doc_id)
        except Exception as exc:
            return StepResult.failure(f"Failed to finish post {doc_id}: {exc}")
        return StepResult.success(urls)

    @staticmethod
    def _tracking_meta(task: PublishTask) -> dict[str, str]:
        meta = {
            META_TASK_ID: task.task_id,
            META_PUBLISHED_AT: datetime.now(UTC).isoformat(),
        }
        if task.external_id:
            meta[META_EXTERNAL_ID] = task.external_id
        if task.seo_title:
            meta[META_SEO_TITLE] = task.seo_title
        if task.meta_description:
            meta[META_META_DESCRIPTION] = task.meta_description
        return meta

    # ── Terminal transitions ─────────────────────────────────────

    async def _finalize(self, task: PublishTask, urls: DocumentUrls) -> TaskStatus:
        try:
            await self._dispatcher.queue_status(
                task.task_id,
                CallbackStatus.PUBLISHED,
                document_id=task.document_id,
                urls=urls,
                submitted_by=task.submitted_by,
            )
        except PublishingError as exc:
            logger.error("Failed to queue published callback for task %s: %s", task.task_id, exc)
            return await self._handle_failure(task, StepResult.failure(f"Failed to queue published callback: {exc}"))

        await self._remove(task)
        logger.info("Task %s %s as document %s", task.task_id, TaskStatus.PUBLISHED, task.document_id)
        return TaskStatus.PUBLISHED

    async def _handle_failure(self, task: PublishTask, result: StepResult[DocumentUrls]) -> TaskStatus:
        error = result.error or "Unknown error"
        task.retry_count += 1
        task.last_error = error
        logger.error("Task %s failed (attempt %d, %s): %s", task.task_id, task.retry_count, result.kind, error)

        if result.retryable and not self._backoff.exhausted(task.retry_count):
            delay = self._backoff.delay_for(task.retry_count)
            try:
                await self._tasks.save(task, self._settings.task_ttl_seconds)
                await self._scheduler.schedule_once(delay, PROCESS_TASK_ACTION, {"task_id": task.task_id})
            except PublishingError as exc:
                logger.error("Could not reschedule task %s: %s", task.task_id, exc)
                error = f"{error} (retry could not be scheduled: {exc})"
            else:
                logger.info("Task %s rescheduled in %ds", task.task_id, delay)
                return TaskStatus.FAILED_RETRYING

        try:
            await self._dispatcher.queue_status(
                task.task_id, CallbackStatus.ERROR, error_message=error, submitted_by=task.submitted_by
            )
        except PublishingError:
            logger.exception("Failed to queue error callback for task %s", task.task_id)
        await self._remove(task)
        logger.error("Task %s %s: %s", task.task_id, TaskStatus.FAILED_PERMANENT, error)
        await self._notifier.task_failed(task.task_id, task.title, error)
        return TaskStatus.FAILED_PERMANENT

    async def _remove(self, task: PublishTask) -> None:
        try:
            await self._tasks.delete(task.task_id)
        except PublishingError:
            logger.exception("Failed to delete finished task %s; it will expire", task.task_id)
