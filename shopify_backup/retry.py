"""Rate-limited, retrying execution of remote calls."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar
import asyncio
import errno
import logging
import re
import threading
import time

from aiohttp import ServerDisconnectedError

from .errors import Failure, HTTPStatusError, TransportError

__all__ = (
    "DEFAULT_RETRYABLE_STATUSES",
    "SHARED_LIMITER",
    "RetryPolicy",
    "RateLimiter",
    "Executor",
    "classify",
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT})
THROTTLED = re.compile(r"throttl|exceeded|maximum number of retries", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES
    # throttling gets its own, higher ceiling whatever max_retries says
    throttle_max_retries: int = 5
    throttle_base_delay: float = 4.0

    def ceiling(self, failure: Failure) -> int:
        if failure is Failure.THROTTLED:
            return max(self.max_retries, self.throttle_max_retries)
        return self.max_retries

    def delay(self, failure: Failure, attempt: int, retry_after: float | None) -> float:
        if retry_after:
            return retry_after + 0.5

        base = (
            self.throttle_base_delay
            if failure is Failure.THROTTLED
            else self.base_delay
        )
        return min(base * 2**attempt, self.max_delay)


@dataclass(slots=True)
class RateLimiter:
    """Keeps at least min_interval seconds between calls from any caller.

    Each wait() reserves the next free slot under a mutex and then sleeps
    until it comes up, so callers on other threads or tasks queue behind it.
    """

    min_interval: float = 3.0
    clock: Clock = time.monotonic
    sleep: Sleep = asyncio.sleep
    _last: float | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def reserve(self) -> float:
        with self._lock:
            now = self.clock()
            slot = now if self._last is None else max(now, self._last + self.min_interval)
            self._last = slot
            return slot - now

    async def wait(self) -> None:
        if delay := self.reserve():
            await self.sleep(delay)

    def touch(self) -> None:
        with self._lock:
            self._last = self.clock()


SHARED_LIMITER = RateLimiter()


def classify(exc: BaseException, policy: RetryPolicy) -> Failure:
    # throttling beats status: a throttled 429 gets the throttle ceiling
    if THROTTLED.search(str(exc)):
        return Failure.THROTTLED

    if isinstance(exc, HTTPStatusError):
        if exc.status in policy.retryable_statuses:
            return Failure.STATUS
        return Failure.FATAL

    if isinstance(exc, (ConnectionResetError, TimeoutError, ServerDisconnectedError)):
        return Failure.NETWORK
    if isinstance(exc, OSError) and exc.errno in RETRYABLE_ERRNOS:
        return Failure.NETWORK

    return Failure.FATAL


@dataclass(slots=True)
class Executor:
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    limiter: RateLimiter = field(default_factory=lambda: SHARED_LIMITER)
    sleep: Sleep = asyncio.sleep

    async def execute(
        self,
        thunk: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        policy = policy or self.policy

        attempt = 0
        while True:
            await self.limiter.wait()
            try:
                return await thunk()
            except Exception as e:
                failure = classify(e, policy)

                if failure is Failure.FATAL:
                    raise

                ceiling = policy.ceiling(failure)
                if attempt >= ceiling:
                    raise TransportError(failure, attempt + 1, e) from e

                delay = policy.delay(failure, attempt, getattr(e, "retry_after", None))
                logger.warning(
                    "Retry %d/%d after %.1fs%s: %s",
                    attempt + 1,
                    ceiling,
                    delay,
                    " (throttled)" if failure is Failure.THROTTLED else "",
                    e,
                )
                await self.sleep(delay)
                self.limiter.touch()

            attempt += 1
