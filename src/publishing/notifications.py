"""Operator notifications for permanent failures.

Alerts are published as JSON on the Redis Pub/Sub channel
``{key_prefix}:operator:alerts`` when Redis is in use, and e-mailed to
``operator_email`` when an SMTP host is configured. Notification failures
are logged and never propagate into the retry loops.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from email.message import EmailMessage

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.core.config import Settings
from src.core.redis import operator_alert_channel, publish_event

logger = logging.getLogger(__name__)

ALERT_TASK_FAILED = "task_failed"
ALERT_CALLBACK_FAILED = "callback_failed"


@dataclass
class OperatorAlert:
    """An operator-facing failure summary."""

    kind: str
    subject: str
    body: str
    task_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class OperatorNotifier:
    """Delivers ``OperatorAlert``s over Pub/Sub and e-mail.

    Args:
        settings: Supplies site name, operator address and SMTP details.
        redis_client: Optional client for Pub/Sub fan-out.
        send_mail: Optional synchronous mail sender; defaults to SMTP.
    """

    def __init__(
        self,
        settings: Settings,
        redis_client: aioredis.Redis | None = None,
        send_mail: Callable[[EmailMessage], None] | None = None,
    ) -> None:
        self._settings = settings
        self._redis = redis_client
        self._send_mail = send_mail or self._send_smtp

    async def task_failed(self, task_id: str, title: str, error: str) -> OperatorAlert:
        alert = OperatorAlert(
            kind=ALERT_TASK_FAILED,
            subject=f"[{self._settings.site_name}] Post publishing failed",
            body=(
                "A post failed to publish after multiple attempts.\n\n"
                f"Task ID: {task_id}\n"
                f"Post Title: {title or 'Unknown'}\n"
                f"Error: {error}\n"
            ),
            task_id=task_id,
        )
        await self.notify(alert)
        return alert

    async def callback_failed(self, task_id: str, status: str, error: str) -> OperatorAlert:
        alert = OperatorAlert(
            kind=ALERT_CALLBACK_FAILED,
            subject=f"[{self._settings.site_name}] Status callback failed",
            body=(
                "A status callback failed to send after multiple attempts.\n\n"
                f"Task ID: {task_id or 'Unknown'}\n"
                f"Status: {status or 'Unknown'}\n"
                f"Error: {error}\n"
            ),
            task_id=task_id,
        )
        await self.notify(alert)
        return alert

    async def notify(self, alert: OperatorAlert) -> None:
        if self._redis is not None:
            try:
                await publish_event(self._redis, operator_alert_channel(self._settings), asdict(alert))
            except (RedisError, OSError):
                logger.exception("Failed to publish operator alert for task %s", alert.task_id)

        if self._settings.operator_email and self._settings.smtp_host:
            message = EmailMessage()
            message["Subject"] = alert.subject
            message["From"] = self._settings.smtp_sender
            message["To"] = self._settings.operator_email
            message.set_content(alert.body)
            try:
                await asyncio.to_thread(self._send_mail, message)
            except (smtplib.SMTPException, OSError):
                logger.exception("Failed to e-mail operator alert for task %s", alert.task_id)

        logger.error("%s (task %s)", alert.subject, alert.task_id)

    def _send_smtp(self, message: EmailMessage) -> None:
        with smtplib.SMTP(
            self._settings.smtp_host,
            self._settings.smtp_port,
            timeout=self._settings.smtp_timeout_seconds,
        ) as smtp:
            smtp.send_message(message)
