"""Publishing API routes.

Provides:
- POST /api/v1/publish-post               (Basic auth + body signature; queues a task)
- GET  /api/v1/tasks/{task_id}/callback   (callback delivery state for a task)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.api.deps import get_services, require_publisher
from src.api.schemas.publish import CallbackStatusResponse, PublishAccepted
from src.core.auth import CAP_MANAGE, Identity
from src.core.signing import SIGNATURE_HEADER
from src.publishing.admission import parse_publish_request
from src.publishing.services import PublishingServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["publishing"])


@router.post("/publish-post", response_model=PublishAccepted, status_code=status.HTTP_202_ACCEPTED)
async def publish_post(
    request: Request,
    identity: Identity = Depends(require_publisher),
    services: PublishingServices = Depends(get_services),
) -> PublishAccepted:
    """Queue a post for asynchronous publishing.

    The signature header must carry ``sha256=<hex>``, the HMAC of the
    exact raw body under the shared signing secret.
    """
    raw_body = await request.body()
    await services.verifier.verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER))

    publish_request = parse_publish_request(raw_body)
    task = await services.admission.submit(publish_request, identity)

    return PublishAccepted(
        message="Post queued for publishing.",
        task_id=task.task_id,
        status="queued",
    )


@router.get("/tasks/{task_id}/callback", response_model=CallbackStatusResponse)
async def get_task_callback(
    task_id: str,
    identity: Identity = Depends(require_publisher),
    services: PublishingServices = Depends(get_services),
) -> CallbackStatusResponse:
    """Report the delivery state of a task's latest callback.

    Only the caller that submitted the task, or a manager, may see it;
    anyone else gets the same 404 as for an unknown task.
    """
    report = await services.dispatcher.get_callback_status(task_id)
    if report is not None and report.submitted_by != identity.id and not identity.can(CAP_MANAGE):
        logger.warning("%s denied callback status for task %s", identity.username, task_id)
        report = None
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No callback found for task {task_id}",
        )
    return CallbackStatusResponse(
        task_id=report.task_id,
        callback_id=report.callback_id,
        status=str(report.status),
        state=str(report.state),
        retry_count=report.retry_count,
        timestamp=report.timestamp,
        last_error=report.last_error,
    )
