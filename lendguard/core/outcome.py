"""
Explicit success / failure return for expected outcomes.

Login and token checks fail routinely (wrong password, locked account,
expired token). Those results come back as an Outcome so callers must look
at `ok` or `error`; only the HTTP layer turns a failure into a raised error.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from lendguard.core.errors import LendGuardError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[LendGuardError] = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: LendGuardError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
