#!/usr/bin/env python3
"""
Request admission against the local rate budget and the remote GitHub quota.

A single asyncio.Lock guards the counters, so concurrent workers can never
both take the last slot of a window.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .exceptions import RateLimitError


WINDOW_SECONDS = 60
HARD_FLOOR = 10
MAX_RESET_WAIT = 3600
LOW_QUOTA_DELAY = 1.0


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class RateBudget:
    """Tracks requests used in the current window and the remote quota"""

    def __init__(
        self,
        requests_per_minute: int,
        burst_size: int = 0,
        delay: float = 0.0,
        buffer: int = 100,
        max_wait: float = MAX_RESET_WAIT,
        low_quota_delay: float = LOW_QUOTA_DELAY,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.delay = delay
        self.buffer = buffer
        self.max_wait = max_wait
        self.low_quota_delay = low_quota_delay
        self.clock = clock
        self.sleep = sleep

        self.used_in_window = 0
        self.window_reset_at: Optional[float] = None
        self.remote_limit: Optional[int] = None
        self.remote_remaining: Optional[int] = None
        self.remote_reset: Optional[int] = None
        self.remote_used: Optional[int] = None

        self.warnings = 0
        self.throttled = 0
        self.deferred = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config) -> "RateBudget":
        return cls(
            requests_per_minute=config.rate_limit_requests_per_minute,
            burst_size=config.rate_limit_burst_size,
            delay=config.rate_limit_delay,
            buffer=config.rate_limit_buffer,
            low_quota_delay=config.retry_base_delay or LOW_QUOTA_DELAY,
        )

    @property
    def ceiling(self) -> int:
        return self.requests_per_minute + self.burst_size

    def _roll_window(self, now: float):
        if self.window_reset_at is None or now >= self.window_reset_at:
            self.used_in_window = 0
            self.window_reset_at = now + WINDOW_SECONDS

    def _remote_wait(self, now: float, endpoint: Optional[str]) -> float:
        """Seconds to wait for the remote quota to reset, 0 if we may proceed"""
        if self.remote_remaining is None or self.remote_remaining >= HARD_FLOOR:
            return 0.0
        if self.remote_reset is None:
            return 0.0
        wait = self.remote_reset - now
        if wait <= 0:
            # Remote window rolled over; the old numbers no longer apply
            self.remote_remaining = None
            return 0.0
        if wait > self.max_wait:
            raise RateLimitError(
                f"only {self.remote_remaining} requests remain and the quota resets in {wait:.0f}s",
                endpoint=endpoint,
                retry_after=wait,
                retryable=False,
            )
        return wait

    async def acquire(self, endpoint: Optional[str] = None) -> float:
        """Wait until one more request may be sent; returns seconds spent waiting.

        Raises:
            RateLimitError: if the remote quota is exhausted for longer than max_wait
        """
        waited = 0.0
        while True:
            async with self._lock:
                now = self.clock()
                wait = self._remote_wait(now, endpoint)
                if wait <= 0:
                    self._roll_window(now)
                    if self.used_in_window < self.ceiling:
                        delay = self.delay if self.used_in_window >= self.requests_per_minute else 0.0
                        if self.remote_remaining is not None:
                            if self.remote_remaining < self.buffer:
                                self.warnings += 1
                                delay = max(delay, self.delay, self.low_quota_delay)
                                logging.warning(
                                    f"GitHub API rate limit approaching: "
                                    f"{self.remote_remaining} requests remaining"
                                )
                            self.remote_remaining -= 1
                        self.used_in_window += 1
                        if delay > 0:
                            self.throttled += 1
                        break
                    wait = self.window_reset_at - now
                    logging.info(
                        f"Local rate budget of {self.ceiling} requests used, "
                        f"waiting {wait:.1f}s for the next window"
                    )
                else:
                    logging.warning(
                        f"Rate limit almost exhausted. Waiting {wait:.0f}s for reset..."
                    )
                self.deferred += 1

            await self.sleep(wait)
            waited += wait

        if delay > 0:
            await self.sleep(delay)
            waited += delay
        return waited

    def update_from_headers(self, headers: Mapping[str, str]):
        """Refresh the remote quota view from X-RateLimit-* response headers"""
        remaining = int_or_none(header_value(headers, "X-RateLimit-Remaining"))
        if remaining is None:
            return
        self.remote_remaining = remaining
        limit = int_or_none(header_value(headers, "X-RateLimit-Limit"))
        reset = int_or_none(header_value(headers, "X-RateLimit-Reset"))
        used = int_or_none(header_value(headers, "X-RateLimit-Used"))
        if limit is not None:
            self.remote_limit = limit
        if reset is not None:
            self.remote_reset = reset
        if used is not None:
            self.remote_used = used

    def update_from_payload(self, payload: Dict[str, Any]):
        """Refresh the remote quota view from a /rate_limit response body"""
        resources = payload.get("resources") if isinstance(payload, dict) else None
        core = (resources or {}).get("core") or (payload or {}).get("rate")
        if not isinstance(core, dict):
            return
        remaining = int_or_none(core.get("remaining"))
        if remaining is None:
            return
        self.remote_remaining = remaining
        self.remote_limit = int_or_none(core.get("limit"))
        self.remote_reset = int_or_none(core.get("reset"))
        self.remote_used = int_or_none(core.get("used"))

    def snapshot(self) -> Dict[str, Any]:
        return {
            "used_in_window": self.used_in_window,
            "window_reset_at": self.window_reset_at,
            "requests_per_minute": self.requests_per_minute,
            "burst_size": self.burst_size,
            "remote_limit": self.remote_limit,
            "remote_remaining": self.remote_remaining,
            "remote_reset": self.remote_reset,
            "remote_used": self.remote_used,
            "warnings": self.warnings,
            "throttled": self.throttled,
            "deferred": self.deferred,
        }
