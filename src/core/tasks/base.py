"""Lifecycle states and retry backoff for scheduled work.

Task lifecycle::

    PENDING → PROCESSING → PUBLISHED
                        ↘ FAILED_RETRYING → PROCESSING  (while retries remain)
                                          ↘ FAILED_PERMANENT

Callback delivery lifecycle::

    QUEUED → SENDING → DELIVERED
                    ↘ RETRY_SCHEDULED → SENDING  (while retries remain)
                                      ↘ PERMANENTLY_FAILED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class TaskStatus(enum.StrEnum):
    """Lifecycle states for a publish task."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PUBLISHED = "PUBLISHED"
    FAILED_RETRYING = "FAILED_RETRYING"
    FAILED_PERMANENT = "FAILED_PERMANENT"


class DeliveryState(enum.StrEnum):
    """Lifecycle states for a status callback delivery."""

    QUEUED = "QUEUED"
    SENDING = "SENDING"
    DELIVERED = "DELIVERED"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"
    DISCARDED = "DISCARDED"


@dataclass(frozen=True)
class BackoffPolicy:
    """Fixed per-attempt delay table with a retry cap.

    Attributes:
        delays: Delay in seconds for attempt 1, 2, ... (1-indexed).
        fallback: Delay used for any attempt beyond the table.
        max_retries: A failure that brings ``retry_count`` to this value
            is permanent.
    """

    delays: tuple[int, ...]
    fallback: int
    max_retries: int

    def delay_for(self, attempt: int) -> int:
        """Return the reschedule delay for a 1-indexed attempt number."""
        if 1 <= attempt <= len(self.delays):
            return self.delays[attempt - 1]
        return self.fallback

    def exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_retries


TASK_BACKOFF = BackoffPolicy(delays=(5, 30, 120), fallback=300, max_retries=3)
CALLBACK_BACKOFF = BackoffPolicy(delays=(60, 300, 900, 3600, 10800), fallback=21600, max_retries=5)
