"""
Backoff Policy

One reusable retry policy applied uniformly to turn exchanges with the
model and to every tool executor's remote calls.

Delay for attempt n (0-indexed) is base_delay * multiplier ** n, capped at
max_delay, plus up to `jitter` fraction of random spread. The retry loop
itself is tenacity's AsyncRetrying.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from google.genai import errors as genai_errors
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from brandforge.core.exceptions import TransientRemoteError


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def is_transient_error(exc: BaseException) -> bool:
    """Classify an exception as a transient remote failure."""
    if isinstance(exc, (TransientRemoteError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, genai_errors.ServerError):
        return True
    if isinstance(exc, genai_errors.APIError):
        return getattr(exc, "code", None) in RETRYABLE_STATUS_CODES
    return False


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Bounded exponential backoff with jitter.

    max_attempts counts the first try, so max_attempts=3 means one call plus
    at most two retries.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 20.0
    jitter: float = 0.25

    @classmethod
    def from_settings(cls, settings, max_attempts: int) -> "BackoffPolicy":
        return cls(
            max_attempts=max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (0-indexed)."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter and delay > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.get_delay(retry_state.attempt_number - 1)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "operation",
        is_retryable: Callable[[BaseException], bool] = is_transient_error,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run `operation` until it succeeds, fails permanently, or attempts run out.

        Each try is bounded by `timeout` seconds when given. Non-retryable
        errors are raised immediately; the last retryable error is raised
        once the attempts are exhausted.
        """

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "[Backoff] %s attempt %d/%d failed (%s); retrying in %.2fs",
                label, retry_state.attempt_number, self.max_attempts,
                retry_state.outcome.exception(), retry_state.next_action.sleep,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )
        tries = 0
        try:
            async for attempt in retrying:
                tries = attempt.retry_state.attempt_number
                with attempt:
                    if timeout is not None:
                        return await asyncio.wait_for(operation(), timeout=timeout)
                    return await operation()
        except Exception as e:
            if tries > 1:
                logger.warning("[Backoff] %s failed after %d attempt(s): %s", label, tries, e)
            raise
