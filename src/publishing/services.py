"""Construction of the publishing components.

Every component is built once at process start and handed its
collaborators explicitly. The scheduler learns its two actions here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
import redis.asyncio as aioredis

from src.content.base import ContentStore
from src.content.memory import InMemoryContentStore
from src.core.auth import (
    CAP_MANAGE,
    CAP_PUBLISH_POSTS,
    CAP_PUBLISH_VIA_API,
    IdentityProvider,
    InMemoryIdentityProvider,
    RequestVerifier,
)
from src.core.config import Settings
from src.core.encryption import SecretCipher
from src.core.kvstore import KeyValueStore, MemoryStore, RedisStore
from src.core.signing import SharedSecretVault
from src.core.tasks.scheduler import LocalScheduler, RedisScheduler, Scheduler
from src.publishing.admission import AdmissionService
from src.publishing.callbacks import DELIVER_ACTION, CallbackDispatcher
from src.publishing.media import ImageFetcher
from src.publishing.notifications import OperatorNotifier
from src.publishing.stores import CallbackStore, TaskStore
from src.publishing.worker import PROCESS_TASK_ACTION, PublishWorker

logger = logging.getLogger(__name__)


@dataclass
class PublishingServices:
    """The wired component graph."""

    settings: Settings
    kv: KeyValueStore
    scheduler: Scheduler
    identities: IdentityProvider
    content: ContentStore
    vault: SharedSecretVault
    verifier: RequestVerifier
    tasks: TaskStore
    callback_store: CallbackStore
    notifier: OperatorNotifier
    dispatcher: CallbackDispatcher
    worker: PublishWorker
    admission: AdmissionService
    redis_client: aioredis.Redis | None = None


def build_services(
    settings: Settings,
    *,
    kv: KeyValueStore,
    scheduler: Scheduler,
    identities: IdentityProvider,
    content: ContentStore,
    redis_client: aioredis.Redis | None = None,
    fetcher: ImageFetcher | None = None,
    notifier: OperatorNotifier | None = None,
    callback_transport: httpx.AsyncBaseTransport | None = None,
) -> PublishingServices:
    """Wire the components around the given store, scheduler and collaborators."""
    vault = SharedSecretVault(kv, SecretCipher.from_settings(settings))
    tasks = TaskStore(kv)
    callback_store = CallbackStore(kv)
    notifier = notifier or OperatorNotifier(settings, redis_client)
    fetcher = fetcher or ImageFetcher(
        download_timeout=settings.image_download_timeout_seconds,
        probe_timeout=settings.image_probe_timeout_seconds,
    )
    dispatcher = CallbackDispatcher(settings, callback_store, scheduler, notifier, transport=callback_transport)
    worker = PublishWorker(settings, tasks, content, fetcher, scheduler, dispatcher, notifier)
    admission = AdmissionService(settings, tasks, scheduler, dispatcher, content, identities)

    scheduler.register(PROCESS_TASK_ACTION, worker.process_task)
    scheduler.register(DELIVER_ACTION, dispatcher.deliver)

    return PublishingServices(
        settings=settings,
        kv=kv,
        scheduler=scheduler,
        identities=identities,
        content=content,
        vault=vault,
        verifier=RequestVerifier(identities, vault),
        tasks=tasks,
        callback_store=callback_store,
        notifier=notifier,
        dispatcher=dispatcher,
        worker=worker,
        admission=admission,
        redis_client=redis_client,
    )


def create_dev_identities(settings: Settings) -> InMemoryIdentityProvider:
    """Identity provider seeded with the configured development publisher."""
    identities = InMemoryIdentityProvider()
    username = settings.dev_publisher_username
    password = settings.dev_publisher_password.get_secret_value()
    if username and password:
        identities.add_identity(
            username,
            password,
            {CAP_PUBLISH_VIA_API, CAP_PUBLISH_POSTS, CAP_MANAGE},
            identity_id="1",
        )
        logger.info("Seeded development publisher %s", username)
    else:
        logger.warning("No development publisher configured; every publish request will be rejected")
    return identities


def create_backends(
    settings: Settings,
    redis_client: aioredis.Redis | None = None,
) -> tuple[KeyValueStore, Scheduler]:
    """Select the key-value store and scheduler named by ``store_backend``."""
    if settings.store_backend == "redis":
        if redis_client is None:
            raise ValueError("store_backend=redis requires a Redis client")
        kv: KeyValueStore = RedisStore(redis_client, settings.key_prefix)
        scheduler: Scheduler = RedisScheduler(
            redis_client,
            settings.key_prefix,
            batch_size=settings.scheduler_batch_size,
            lock_ttl=settings.scheduler_lock_ttl_seconds,
        )
        return kv, scheduler
    return MemoryStore(), LocalScheduler(batch_size=settings.scheduler_batch_size)


def create_services(
    settings: Settings,
    redis_client: aioredis.Redis | None = None,
    *,
    identities: IdentityProvider | None = None,
    content: ContentStore | None = None,
) -> PublishingServices:
    """Build the full component graph from settings.

    Without explicit collaborators the in-memory identity provider and
    content store are used.
    """
    kv, scheduler = create_backends(settings, redis_client)
    return build_services(
        settings,
        kv=kv,
        scheduler=scheduler,
        identities=identities or create_dev_identities(settings),
        content=content or InMemoryContentStore(settings.site_url),
        redis_client=redis_client if settings.store_backend == "redis" else None,
    )
