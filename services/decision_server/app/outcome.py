"""Fail-open decision results.

Verification and compensation always produce a usable value. When a rule
raises, the operation returns its designated fallback instead of an error,
and the outcome records that the fallback branch was taken.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger("decision_server.outcome")

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T
    fallback: bool = False
    error: str | None = None

    @classmethod
    def decided(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fell_back(cls, value: T, error: str) -> "Outcome[T]":
        return cls(value=value, fallback=True, error=error)


def run_fail_open(label: str, fn: Callable[[], T], fallback: Callable[[], T]) -> Outcome[T]:
    try:
        return Outcome.decided(fn())
    except Exception as exc:
        logger.exception("fail_open_fallback operation=%s error=%s", label, exc)
        return Outcome.fell_back(fallback(), str(exc))
