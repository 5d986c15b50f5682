"""Status callback queueing and delivery.

Each callback is an independent record with its own retry state. A
delivery attempt POSTs the callback JSON to the configured destination
with a bearer token and an HMAC signature; 2xx deletes the record,
anything else reschedules it on the callback backoff table until the
retry budget is spent, after which the record is dead-lettered and the
operator is notified.

Delivery is at-least-once. Receivers should deduplicate on
``callback_id``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from src.api.version import API_VERSION
from src.content.base import DocumentUrls
from src.core.config import Settings
from src.core.errors import FailureKind, PublishingError
from src.core.signing import SIGNATURE_HEADER, sign_payload
from src.core.tasks.base import CALLBACK_BACKOFF, BackoffPolicy, DeliveryState
from src.core.tasks.scheduler import Scheduler
from src.publishing.models import CallbackRecord, CallbackStage, CallbackStatus
from src.publishing.notifications import OperatorNotifier
from src.publishing.results import StepResult
from src.publishing.stores import CallbackStore

logger = logging.getLogger(__name__)

DELIVER_ACTION = "callbacks.deliver"
USER_AGENT = f"PostRelay/{API_VERSION}"
NOT_CONFIGURED_ERROR = "Callback URL or API key not configured"


@dataclass
class CallbackStatusReport:
    """Delivery state of the most advanced callback for a task."""

    callback_id: str
    task_id: str
    status: CallbackStatus
    state: DeliveryState
    retry_count: int = 0
    timestamp: datetime | None = None
    last_error: str | None = None
    submitted_by: str | None = None


class CallbackDispatcher:
    """Queues, signs and delivers status callbacks.

    Args:
        settings: Destination, key, timeout and lifetime settings.
        store: Callback record storage.
        scheduler: Substrate for immediate and backoff delivery attempts.
        notifier: Receives permanent-failure alerts.
        transport: Optional httpx transport, used by tests.
        backoff: Retry schedule; defaults to the callback backoff table.
    """

    def __init__(
        self,
        settings: Settings,
        store: CallbackStore,
        scheduler: Scheduler,
        notifier: OperatorNotifier,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff: BackoffPolicy = CALLBACK_BACKOFF,
    ) -> None:
        self._settings = settings
        self._store = store
        self._scheduler = scheduler
        self._notifier = notifier
        self._transport = transport
        self._backoff = backoff

    # ── Queueing ─────────────────────────────────────────────────

    async def schedule(self, record: CallbackRecord) -> CallbackRecord:
        """Persist ``record`` with a fresh retry budget and attempt delivery now."""
        record.retry_count = 0
        ttl = self._settings.callback_ttl_seconds
        await self._store.save(record, ttl)
        await self._store.index(record, ttl)
        await self._scheduler.schedule_once(
            0, DELIVER_ACTION, {"callback_id": record.callback_id, "retry_count": 0}
        )
        logger.info("Queued %s callback %s for task %s", record.status, record.callback_id, record.task_id)
        return record

    async def queue_status(
        self,
        task_id: str,
        status: CallbackStatus,
        *,
        document_id: str | None = None,
        urls: DocumentUrls | None = None,
        error_message: str | None = None,
        submitted_by: str | None = None,
    ) -> CallbackRecord:
        """Build and schedule a callback describing ``task_id``'s stage."""
        record = CallbackRecord(
            task_id=task_id,
            status=status,
            document_id=document_id,
            post_url=urls.post_url if urls else None,
            edit_url=urls.edit_url if urls else None,
            error_message=error_message,
            submitted_by=submitted_by,
        )
        return await self.schedule(record)

    # ── Delivery ─────────────────────────────────────────────────

    async def deliver(self, callback_id: str, retry_count: int | None = None) -> DeliveryState | None:
        """Attempt one delivery of ``callback_id``.

        Scheduled attempts carry the ``retry_count`` they were scheduled
        for. The stored record is authoritative: an attempt whose count no
        longer matches was superseded by a manual retry or a duplicate
        execution and is skipped. Direct calls may omit the count.

        Returns:
            The resulting delivery state, or None when the record no
            longer exists or the attempt was superseded.
        """
        record = await self._store.load(callback_id)
        if record is None:
            logger.error("Callback %s not found (attempt %s); already delivered or expired", callback_id, retry_count)
            return None
        if retry_count is not None and record.retry_count != retry_count:
            logger.warning(
                "Skipping superseded attempt %d for callback %s; store holds %d",
                retry_count,
                callback_id,
                record.retry_count,
            )
            return None

        result = await self._send(record)
        if result.ok:
            try:
                await self._store.delete(callback_id)
            except PublishingError:
                logger.exception("Delivered callback %s but could not remove it from the store", callback_id)
            logger.info(
                "Delivered %s callback %s for task %s (attempt %d)",
                record.status,
                callback_id,
                record.task_id,
                record.retry_count,
            )
            return DeliveryState.DELIVERED
        error = result.error or "Unknown delivery error"
        if not result.retryable:
            return await self._discard(record, error)
        return await self._handle_failure(record, error)

    async def _send(self, record: CallbackRecord) -> StepResult[int]:
        if not self._settings.callback_configured:
            return StepResult.failure(NOT_CONFIGURED_ERROR, FailureKind.CONFIGURATION)
        api_key = self._settings.callback_api_key.get_secret_value()
        body = json.dumps(record.to_payload()).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "User-Agent": USER_AGENT,
            SIGNATURE_HEADER: sign_payload(body, api_key),
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.callback_timeout_seconds,
                follow_redirects=False,
                verify=True,
                transport=self._transport,
            ) as client:
                response = await client.post(self._settings.callback_url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            return StepResult.failure(f"{type(exc).__name__}: {exc}", FailureKind.DELIVERY)

        if 200 <= response.status_code < 300:
            return StepResult.success(response.status_code)
        return StepResult.failure(f"HTTP {response.status_code}: {response.text[:500]}", FailureKind.DELIVERY)

    async def _discard(self, record: CallbackRecord, reason: str) -> DeliveryState:
        """Dead-letter a callback whose failure another attempt would not fix."""
        logger.error("%s; discarding callback %s for task %s", reason, record.callback_id, record.task_id)
        record.last_error = reason
        await self._dead_letter(record)
        return DeliveryState.DISCARDED

    async def _handle_failure(self, record: CallbackRecord, error: str) -> DeliveryState:
        record.retry_count += 1
        record.last_error = error
        logger.error(
            "Callback %s for task %s failed (attempt %d): %s",
            record.callback_id,
            record.task_id,
            record.retry_count,
            error,
        )

        if not self._backoff.exhausted(record.retry_count):
            delay = self._backoff.delay_for(record.retry_count)
            try:
                await self._store.save(record, self._settings.callback_ttl_seconds)
                await self._scheduler.schedule_once(
                    delay, DELIVER_ACTION, {"callback_id": record.callback_id, "retry_count": record.retry_count}
                )
            except PublishingError as exc:
                logger.error("Could not reschedule callback %s: %s", record.callback_id, exc)
                error = f"{error} (retry could not be scheduled: {exc})"
                record.last_error = error
            else:
                logger.info("Callback %s rescheduled in %ds", record.callback_id, delay)
                return DeliveryState.RETRY_SCHEDULED

        await self._dead_letter(record)
        logger.error(
            "Callback %s for task %s permanently failed after %d attempts",
            record.callback_id,
            record.task_id,
            record.retry_count,
        )
        await self._notifier.callback_failed(record.task_id, str(record.status), error)
        return DeliveryState.PERMANENTLY_FAILED

    async def _dead_letter(self, record: CallbackRecord) -> None:
        """Move ``record`` from the live store to the failed store."""
        ttl = self._settings.callback_ttl_seconds
        try:
            await self._store.delete(record.callback_id)
            await self._store.save_failed(record, ttl)
        except PublishingError:
            logger.exception("Could not dead-letter callback %s for task %s", record.callback_id, record.task_id)

    # ── Administration ───────────────────────────────────────────

    async def retry_callback(self, callback_id: str) -> CallbackRecord | None:
        """Reset a live or dead-lettered callback and attempt delivery now.

        Returns:
            The rescheduled record, or None when the callback is unknown
            or has expired.
        """
        record = await self._store.load(callback_id)
        if record is None:
            record = await self._store.load_failed(callback_id)
            if record is None:
                logger.warning("Manual retry requested for unknown callback %s", callback_id)
                return None
            await self._store.delete_failed(callback_id)

        record.last_error = None
        await self.schedule(record)
        logger.info("Manual retry scheduled for callback %s (task %s)", callback_id, record.task_id)
        return record

    async def get_callback_status(self, task_id: str) -> CallbackStatusReport | None:
        """Report the most advanced callback for ``task_id``, final stage first."""
        for stage in (CallbackStage.FINAL, CallbackStage.QUEUED):
            entry = await self._store.indexed(task_id, stage)
            if entry is None:
                continue

            record = await self._store.load(entry.callback_id)
            if record is not None:
                state = DeliveryState.RETRY_SCHEDULED if record.retry_count else DeliveryState.QUEUED
                return self._report(record, state)

            failed = await self._store.load_failed(entry.callback_id)
            if failed is not None:
                return self._report(failed, DeliveryState.PERMANENTLY_FAILED)

            return CallbackStatusReport(
                callback_id=entry.callback_id,
                task_id=task_id,
                status=entry.status,
                state=DeliveryState.DELIVERED,
                submitted_by=entry.submitted_by,
            )
        return None

    @staticmethod
    def _report(record: CallbackRecord, state: DeliveryState) -> CallbackStatusReport:
        return CallbackStatusReport(
            callback_id=record.callback_id,
            task_id=record.task_id,
            status=record.status,
            state=state,
            retry_count=record.retry_count,
            timestamp=record.timestamp,
            last_error=record.last_error,
            submitted_by=record.submitted_by,
        )
