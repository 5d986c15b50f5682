"""Show or rotate the shared request signing secret.

Publishing clients need this secret to compute ``X-PostRelay-Signature``.
Showing it generates one if none exists yet; rotating invalidates the
previous secret immediately.

Usage:
    python -m scripts.signing_secret show
    python -m scripts.signing_secret rotate
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from src.core.config import get_settings
from src.core.encryption import SecretCipher
from src.core.kvstore import RedisStore
from src.core.redis import create_redis_client, verify_redis_connectivity
from src.core.signing import SharedSecretVault

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)


async def main(action: str) -> int:
    settings = get_settings()
    if settings.store_backend != "redis":
        logger.error("The in-memory store is per-process; use STORE_BACKEND=redis")
        return 1

    redis_client = create_redis_client(settings)
    try:
        if not await verify_redis_connectivity(redis_client):
            logger.error("Redis is not reachable at %s", settings.redis_url)
            return 1
        vault = SharedSecretVault(RedisStore(redis_client, settings.key_prefix), SecretCipher.from_settings(settings))
        secret = await vault.rotate() if action == "rotate" else await vault.get_secret()
    finally:
        await redis_client.aclose()

    print(secret)
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Manage the PostRelay signing secret")
    parser.add_argument("action", choices=["show", "rotate"])
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.action)))
