"""Explicit success/failure container for gateway and store reads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class FetchResult(Generic[T]):
    """Outcome of a remote read: either a value or a failure description."""

    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> "FetchResult[T]":
        return cls(value=value, error=None)

    @classmethod
    def failure(cls, error: str) -> "FetchResult[T]":
        return cls(value=None, error=error or "unknown error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        """Return the value when the read succeeded, otherwise ``default``."""

        if self.error is not None or self.value is None:
            return default
        return self.value
