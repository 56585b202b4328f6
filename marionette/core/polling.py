from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from marionette.core.errors import InvalidQueryError, MarionetteError, ProviderError

logger = logging.getLogger("marionette.polling")

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    INVALID_QUERY = "invalid_query"
    PROVIDER = "provider"


# Substrings of driver error messages, matched case-insensitively.
PROVIDER_FAILURE_MARKERS: tuple[str, ...] = (
    "target page, context or browser has been closed",
    "target closed",
    "browser has been closed",
    "browser has disconnected",
    "connection closed",
    "page has been closed",
)

INVALID_QUERY_MARKERS: tuple[str, ...] = (
    "is not a valid selector",
    "not a valid xpath expression",
    "unexpected token",
    "unknown engine",
    "syntaxerror",
)


@dataclass(frozen=True)
class PollPolicy:
    timeout_ms: int = 10_000
    interval_ms: int = 100
    fail_fast_on_invalid_query: bool = True
    provider_failure_markers: tuple[str, ...] = PROVIDER_FAILURE_MARKERS
    invalid_query_markers: tuple[str, ...] = INVALID_QUERY_MARKERS

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {self.interval_ms}")

    def with_timeout(self, timeout_ms: int) -> "PollPolicy":
        return PollPolicy(
            timeout_ms=timeout_ms,
            interval_ms=self.interval_ms,
            fail_fast_on_invalid_query=self.fail_fast_on_invalid_query,
            provider_failure_markers=self.provider_failure_markers,
            invalid_query_markers=self.invalid_query_markers,
        )

    def classify(self, exc: BaseException) -> FailureKind:
        if isinstance(exc, ProviderError):
            return FailureKind.PROVIDER
        if isinstance(exc, InvalidQueryError):
            return FailureKind.INVALID_QUERY if self.fail_fast_on_invalid_query else FailureKind.TRANSIENT
        message = str(exc).lower()
        if any(marker in message for marker in self.provider_failure_markers):
            return FailureKind.PROVIDER
        if self.fail_fast_on_invalid_query and any(marker in message for marker in self.invalid_query_markers):
            return FailureKind.INVALID_QUERY
        return FailureKind.TRANSIENT


@dataclass(frozen=True)
class PollResult(Generic[T]):
    satisfied: bool
    value: Optional[T]
    attempts: int
    elapsed_ms: float
    last_error: str | None = None


Probe = Callable[[], Awaitable[tuple[bool, Optional[T]]]]


async def poll_until(
    probe: Probe[T],
    policy: PollPolicy,
    query: str = "",
    clock: Clock = monotonic_ms,
    sleep: Sleep = asyncio.sleep,
) -> PollResult[T]:
    """Run ``probe`` once per interval until it reports success or time runs out.

    The first probe runs immediately. Transient errors end only the current
    iteration; provider failures raise ``ProviderError`` and malformed queries
    raise ``InvalidQueryError``.
    """
    start = clock()
    attempts = 0
    last_error: str | None = None

    while clock() - start < policy.timeout_ms:
        attempts += 1
        try:
            done, value = await probe()
            if done:
                return PollResult(
                    satisfied=True,
                    value=value,
                    attempts=attempts,
                    elapsed_ms=clock() - start,
                    last_error=last_error,
                )
        except MarionetteError as exc:
            kind = policy.classify(exc)
            if kind is not FailureKind.TRANSIENT:
                raise
            last_error = str(exc)
        except Exception as exc:
            kind = policy.classify(exc)
            if kind is FailureKind.PROVIDER:
                raise ProviderError(str(exc)) from exc
            if kind is FailureKind.INVALID_QUERY:
                raise InvalidQueryError(query, str(exc)) from exc
            last_error = str(exc)
            logger.debug(f"[Poll] Transient error on attempt {attempts} for '{query}': {exc}")

        await sleep(policy.interval_ms / 1000.0)

    return PollResult(
        satisfied=False,
        value=None,
        attempts=attempts,
        elapsed_ms=clock() - start,
        last_error=last_error,
    )
