from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from .constants import TaskboardError

T = TypeVar("T")


class FailureReason(str, Enum):
    NETWORK = "network"        # store unreachable or connection dropped
    VALIDATION = "validation"  # store rejected the payload
    NOT_FOUND = "not_found"    # no row matched
    STORE = "store"            # any other store-reported or malformed response


class StoreError(TaskboardError):
    """A failed store call, carrying why it failed."""

    def __init__(self, reason: FailureReason, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is not None:
            return f"[{self.reason.value}] {self.status} - {self.message}"
        return f"[{self.reason.value}] {self.message}"


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    data: Optional[T] = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "StoreResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, reason: FailureReason, message: str, status: Optional[int] = None) -> "StoreResult[T]":
        return cls(error=StoreError(reason, message, status))

    def unwrap(self) -> Optional[T]:
        """Return the payload, or raise the StoreError of a failed call."""
        if self.error is not None:
            raise self.error
        return self.data
