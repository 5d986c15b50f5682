"""Deferred task execution for the publishing pipeline.

Provides lifecycle enums, backoff tables, and the scheduler substrate
(Redis sorted set or in-process heap) that the worker and callback
dispatcher run on.
"""

from src.core.tasks.base import CALLBACK_BACKOFF, TASK_BACKOFF, BackoffPolicy, DeliveryState, TaskStatus
from src.core.tasks.scheduler import LocalScheduler, RedisScheduler, ScheduledJob, Scheduler, run_scheduler

__all__ = [
    "CALLBACK_BACKOFF",
    "TASK_BACKOFF",
    "BackoffPolicy",
    "DeliveryState",
    "LocalScheduler",
    "RedisScheduler",
    "ScheduledJob",
    "Scheduler",
    "TaskStatus",
    "run_scheduler",
]
