"""Shared FastAPI dependencies.

Components are built once by the application lifespan (or injected by
tests) and read from ``app.state``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request

from src.core.auth import CAP_MANAGE, CAP_PUBLISH_VIA_API, Identity
from src.publishing.services import PublishingServices


def get_services(request: Request) -> PublishingServices:
    """Return the component graph stored on the application."""
    return request.app.state.services


def require_capability(capability: str) -> Callable[..., Awaitable[Identity]]:
    """Build a dependency that authenticates the caller and checks ``capability``."""

    async def _authenticated(
        request: Request,
        services: PublishingServices = Depends(get_services),
    ) -> Identity:
        identity = await services.verifier.authenticate(request.headers.get("authorization"), capability)
        request.state.identity = identity
        return identity

    return _authenticated


require_publisher = require_capability(CAP_PUBLISH_VIA_API)
require_manager = require_capability(CAP_MANAGE)
