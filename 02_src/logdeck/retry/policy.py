"""Exponential-backoff retry for transient failures."""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, TypeVar

from ..errors import Timeout, is_transient
from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters. Delays and budget are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 0.1
    multiplier: float = 2.0
    max_delay: float = 10.0
    budget: float | None = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delays(self) -> list[float]:
        """Sleep durations between consecutive attempts."""
        result = []
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            result.append(min(delay, self.max_delay))
            delay *= self.multiplier
        return result


class IRetryPolicy(Protocol):
    """Runs idempotent operations with backoff."""

    async def retry(self, operation: Operation, config: RetryConfig | None = None):
        """Run operation, retrying transient failures."""
        ...


class RetryPolicy:
    """Retries only failures classified as transient.

    Operations must be idempotent: a call that timed out may still have
    reached the backend, so it can be executed more than once.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        classify: Callable[[BaseException], bool] = is_transient,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._classify = classify
        self._clock = clock

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def retry(self, operation: Operation[T], config: RetryConfig | None = None) -> T:
        """Run operation, retrying transient failures.

        The last error is re-raised unchanged when attempts or the overall
        budget run out. Non-transient errors propagate on the first failure.
        An attempt still running when the budget runs out is cancelled and
        reported as Timeout.
        """
        cfg = config or self._config
        delays = cfg.delays()
        deadline = None if cfg.budget is None else self._clock() + cfg.budget

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(operation, deadline)
            except Exception as e:
                if not self._classify(e):
                    raise
                if attempt >= cfg.max_attempts:
                    logger.warning(
                        "Giving up after %d attempts: %s", attempt, e
                    )
                    raise

                delay = delays[attempt - 1]
                if deadline is not None and self._clock() + delay > deadline:
                    logger.warning(
                        "Retry budget of %.2fs exhausted after %d attempts: %s",
                        cfg.budget,
                        attempt,
                        e,
                    )
                    raise

                logger.info(
                    "Attempt %d/%d failed: %s. Retrying in %.3fs",
                    attempt,
                    cfg.max_attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)

    async def _attempt(self, operation: Operation[T], deadline: float | None) -> T:
        if deadline is None:
            return await operation()
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise Timeout("Retry budget exhausted before the attempt started")
        try:
            return await asyncio.wait_for(operation(), timeout=remaining)
        except asyncio.TimeoutError:
            raise Timeout(
                f"Attempt did not finish within the {remaining:.2f}s left of the retry budget"
            ) from None
