"""Typed results returned by the service facade.

Each operation returns ``Ok(value)`` or ``Err(error)``; the error keeps its
structured fields so callers can branch on ``Err.kind``.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from .errors import ErrorKind, ModerationError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: ModerationError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


Result = Ok[T] | Err
