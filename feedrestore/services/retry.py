"""
Retry policy for listing and download requests.

The policy is a small state machine independent of any transport. Each
Attempt(n) either ends in Success or moves on to Attempt(n + 1); a failure on
the last attempt, or a failure that is not worth retrying, ends in Exhausted.

The first attempt may be served from the disk cache; every later attempt
forces a fresh fetch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterator, Tuple, Type

from feedrestore.domain.errors import TransportError

DEFAULT_MAX_ATTEMPTS = 3

# Errors worth another attempt. Everything else propagates immediately.
RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (TransportError,)


def next_freshness(attempt: int, normal: timedelta) -> timedelta:
    """
    Freshness window for a zero-based attempt number.
    """
    if attempt == 0:
        return normal
    return timedelta(0)


@dataclass(frozen=True)
class Attempt:
    number: int

    def freshness(self, normal: timedelta) -> timedelta:
        return next_freshness(self.number, normal)


@dataclass(frozen=True)
class Success:
    attempts: int


@dataclass(frozen=True)
class Exhausted:
    attempts: int
    error: BaseException


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def attempts(self) -> Iterator[Attempt]:
        for number in range(self.max_attempts):
            yield Attempt(number)

    def is_final(self, attempt: Attempt) -> bool:
        return attempt.number >= self.max_attempts - 1

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        return isinstance(error, RETRYABLE_ERRORS)

    def on_failure(self, attempt: Attempt, error: BaseException):
        """
        Next state after ``attempt`` failed with ``error``: either the
        following Attempt or Exhausted. Non-retryable errors exhaust at once.
        """
        if not self.is_retryable(error) or self.is_final(attempt):
            return Exhausted(attempts=attempt.number + 1, error=error)
        return Attempt(attempt.number + 1)

    def on_success(self, attempt: Attempt) -> Success:
        return Success(attempts=attempt.number + 1)
