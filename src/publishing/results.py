"""Explicit step results for the worker and dispatcher retry loops."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from src.core.errors import FailureKind

T = TypeVar("T")


@dataclass(frozen=True)
class StepResult(Generic[T]):
    """Outcome of one fallible step: a value, or an error and its kind."""

    value: T | None = None
    error: str | None = None
    kind: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        """Whether the retry boundary may schedule another attempt."""
        return self.kind is None or self.kind.retryable

    @classmethod
    def success(cls, value: T | None = None) -> StepResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, kind: FailureKind = FailureKind.TRANSIENT_STEP) -> StepResult[T]:
        return cls(error=error, kind=kind)
