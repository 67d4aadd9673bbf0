"""Typed result for best-effort ledger steps.

A step either succeeded (``ok``) or failed softly: the failure has already
been logged and the caller should carry on.  Hard failures are exceptions
from :mod:`app.errors`, never an ``Outcome``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    error: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def is_soft_failure(self) -> bool:
        return self.error is not None

    @classmethod
    def ok(cls, value: T | None = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def soft_failure(cls, error: str) -> "Outcome[T]":
        return cls(error=error)
