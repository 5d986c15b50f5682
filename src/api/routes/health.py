"""Health check endpoint.

Unauthenticated. Reports the service version, the server time, whether
callbacks are configured, the publishing defaults and store reachability.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from src.api.deps import get_services
from src.api.schemas.publish import HealthConfig, HealthResponse
from src.api.version import API_VERSION
from src.core.errors import StoreError
from src.publishing.services import PublishingServices

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/api/v1/health", response_model=HealthResponse)
async def health_check(services: PublishingServices = Depends(get_services)) -> HealthResponse:
    """Check that the service is up.

    Returns:
        JSON object of the form::

            {
                "status": "ok",
                "version": "1.0.0",
                "time": "...",
                "config": {
                    "callback_url_configured": true,
                    "callback_key_configured": false,
                    "default_post_status": "draft",
                    "default_post_type": "post"
                },
                "services": {"store": "up" | "down"}
            }
    """
    settings = services.settings

    try:
        store_up = await services.kv.ping()
    except (StoreError, ConnectionError, OSError):
        store_up = False
    if not store_up:
        logger.warning("Store health check failed")

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        time=datetime.now(UTC),
        config=HealthConfig(
            callback_url_configured=bool(settings.callback_url),
            callback_key_configured=bool(settings.callback_api_key.get_secret_value()),
            default_post_status=settings.default_post_status,
            default_post_type=settings.default_post_type,
        ),
        services={"store": "up" if store_up else "down"},
    )
