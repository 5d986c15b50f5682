"""Callback administration routes.

Provides:
- POST /api/v1/callbacks/{callback_id}/retry   (manage capability; immediate re-delivery)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.deps import get_services, require_manager
from src.api.schemas.publish import CallbackRetryAccepted
from src.core.auth import Identity
from src.publishing.services import PublishingServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/callbacks", tags=["callbacks"])


@router.post("/{callback_id}/retry", response_model=CallbackRetryAccepted, status_code=status.HTTP_202_ACCEPTED)
async def retry_callback(
    callback_id: str,
    identity: Identity = Depends(require_manager),
    services: PublishingServices = Depends(get_services),
) -> CallbackRetryAccepted:
    """Reset a callback's retry budget and attempt delivery now.

    Works for callbacks still retrying and for permanently failed ones.
    """
    record = await services.dispatcher.retry_callback(callback_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Callback {callback_id} not found or expired",
        )
    logger.info("User %s retried callback %s", identity.username, callback_id)
    return CallbackRetryAccepted(
        message="Callback scheduled for delivery.",
        callback_id=record.callback_id,
        task_id=record.task_id,
        retry_count=record.retry_count,
    )
