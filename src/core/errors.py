"""Error taxonomy shared by the admission path, the worker and the dispatcher.

HTTP-facing errors carry the status code the API maps them to; the
failure kinds label step results inside the retry loops and never reach
the original caller.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class FailureKind(enum.StrEnum):
    """Classification of a failed worker or dispatcher step."""

    TRANSIENT_STEP = "transient_step"
    DELIVERY = "delivery"
    CONFIGURATION = "configuration"

    @property
    def retryable(self) -> bool:
        """Configuration failures repeat identically until an operator intervenes."""
        return self is not FailureKind.CONFIGURATION


class PublishingError(Exception):
    """Base class for all PostRelay errors."""

    status_code: int = 500


class AuthError(PublishingError):
    """Missing or invalid credentials or signature."""

    status_code = 401

    def __init__(self, message: str, *, code: str = "unauthorized") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class Unauthorized(AuthError):
    """Credentials or signature missing, malformed, or rejected."""

    status_code = 401


class Forbidden(AuthError):
    """Authenticated identity lacks the required capability."""

    status_code = 403

    def __init__(self, message: str, *, code: str = "insufficient_permissions") -> None:
        super().__init__(message, code=code)


@dataclass(frozen=True)
class FieldError:
    """A single rejected input field."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class ValidationError(PublishingError):
    """Malformed publish request. Raised before anything is persisted."""

    status_code = 422

    def __init__(self, errors: list[FieldError]) -> None:
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors))
        self.errors = errors


class SchedulingError(PublishingError):
    """The scheduling substrate is unavailable."""

    status_code = 500


class StoreError(PublishingError):
    """The key-value store could not be read or written."""

    status_code = 500