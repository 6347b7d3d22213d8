"""Error taxonomy for the lending lifecycle.

Services raise subclasses of ``LendingError``. The ``LibrarySystem`` facade
turns them into ``Outcome`` values so callers always get a typed result.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    INELIGIBLE = "ineligible"
    LIMIT_EXCEEDED = "limit_exceeded"
    ALREADY_BORROWED = "already_borrowed"
    VALIDATION = "validation"
    INTERNAL = "internal"


class LendingError(Exception):
    """Base exception for lending errors."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LendingError):
    """Referenced book, user, loan or fine is missing or inactive."""

    kind = ErrorKind.NOT_FOUND


class IneligibleError(LendingError):
    """A business rule blocks the operation (e.g. no copies left)."""

    kind = ErrorKind.INELIGIBLE


class LimitExceededError(LendingError):
    """Borrower already holds max_books loans."""

    kind = ErrorKind.LIMIT_EXCEEDED


class AlreadyBorrowedError(LendingError):
    """Borrower already has an open loan for this book."""

    kind = ErrorKind.ALREADY_BORROWED


class ValidationError(LendingError):
    kind = ErrorKind.VALIDATION


class InternalError(LendingError):
    """A store write failed or the stores disagree with each other."""

    kind = ErrorKind.INTERNAL


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    kind: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Outcome[T]":
        return cls(kind=kind, message=message)

    def unwrap(self) -> T:
        if not self.ok:
            raise error_for(self.kind, self.message)
        return self.value  # type: ignore[return-value]


def error_for(kind: ErrorKind, message: str) -> LendingError:
    for cls in (
        NotFoundError,
        IneligibleError,
        LimitExceededError,
        AlreadyBorrowedError,
        ValidationError,
    ):
        if cls.kind is kind:
            return cls(message)
    return InternalError(message)
