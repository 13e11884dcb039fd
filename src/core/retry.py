"""Retry policy shared by credential cleanup, media download, and reconnects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _always(error: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed or exponential delay.

    ``retry_on`` decides whether an error is retryable at all; anything it
    rejects is re-raised immediately, as is the error of the final attempt.
    """

    max_attempts: int = 3
    delay: float = 1.0
    backoff: float = 1.0
    retry_on: Callable[[BaseException], bool] = _always
    name: str = "operation"

    def delays(self) -> list[float]:
        """Return the sleep before each retry (one entry per retry)."""

        wait = self._wait()
        values = []
        for attempt in range(1, max(self.max_attempts, 1)):
            state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
            state.attempt_number = attempt
            values.append(float(wait(state)))
        return values

    def _wait(self):
        if self.backoff > 1.0 and self.delay > 0:
            return wait_exponential(multiplier=self.delay, exp_base=self.backoff)
        return wait_fixed(self.delay)

    def _retryable(self, error: BaseException) -> bool:
        return isinstance(error, Exception) and self.retry_on(error)

    def _log_retry(self, state: RetryCallState) -> None:
        LOGGER.warning(
            "%s failed (attempt %s/%s): %s; retrying in %.1fs",
            self.name,
            state.attempt_number,
            self.max_attempts,
            state.outcome.exception(),
            state.next_action.sleep if state.next_action else 0.0,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        before_retry: Optional[Callable[[BaseException, int], Awaitable[None]]] = None,
    ) -> T:
        failures: list[BaseException] = []

        def record_failure(state: RetryCallState) -> None:
            failures.append(state.outcome.exception())
            self._log_retry(state)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=self._wait(),
            retry=retry_if_exception(self._retryable),
            before_sleep=record_failure,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if before_retry is not None and failures:
                    await before_retry(failures[-1], len(failures))
                return await operation()
        raise RuntimeError(f"{self.name} finished without a result")
