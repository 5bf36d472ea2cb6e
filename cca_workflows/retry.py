#!/usr/bin/env python3
"""
Bounded retry with exponential backoff.

One RetryPolicy is built from the configuration and shared by the
rate-limit and transient-error paths of the API client.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry settings plus the loop that applies them"""
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 60.0
    factor: float = 2.0
    jitter: float = 0.1
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(max_attempts=config.max_retries + 1, base_delay=config.retry_base_delay)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)"""
        delay = min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)
        if self.jitter and delay:
            delay += random.uniform(0, self.jitter * delay)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Callable[[Exception], bool],
        describe: str = "operation",
        on_retry: Optional[Callable[[int, Exception], None]] = None
    ) -> T:
        """Await operation(), retrying retryable failures up to max_attempts.

        The last error is re-raised with its `attempts` attribute set.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                if not is_retryable(e) or attempt >= self.max_attempts:
                    if hasattr(e, "attempts"):
                        e.attempts = attempt
                    if attempt > 1:
                        logging.error(f"{describe} failed after {attempt} attempt(s): {e}")
                    raise

                delay = self.backoff(attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    delay = max(delay, min(float(retry_after), self.max_delay))
                logging.warning(
                    f"{describe} failed ({e}); retry {attempt}/{self.max_attempts - 1} in {delay:.2f}s"
                )
                if on_retry:
                    on_retry(attempt, e)
                await self.sleep(delay)
                continue

            if attempt > 1:
                logging.info(f"{describe} succeeded after {attempt - 1} retries")
            return result
