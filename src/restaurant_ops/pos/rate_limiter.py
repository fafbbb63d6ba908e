"""Token bucket rate limiter for the Square API.

Square allows 100 requests per 10 seconds per access token. The default
here is 80 per 10 seconds, leaving headroom for timing variation and for
other apps using the same merchant token.

Each connection gets its own bucket. Buckets start full, refill
continuously, and can be paused after a 429 response.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

import structlog

from src.restaurant_ops.config import Settings, get_settings

logger = structlog.get_logger(__name__)


@dataclass
class TokenBucket:
    tokens: float
    last_refill: float
    paused_until: float | None = None


class RateLimiter:
    """Per-connection token bucket.

    Args:
        max_requests: Bucket capacity (requests per window).
        window_ms: Window length in milliseconds.
        clock: Monotonic clock in seconds.
        sleep: Coroutine function taking seconds; defaults to asyncio.sleep.
    """

    def __init__(
        self,
        max_requests: int = 80,
        window_ms: int = 10000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        if max_requests <= 0 or window_ms <= 0:
            raise ValueError("max_requests and window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        # tokens per millisecond
        self.refill_rate = max_requests / window_ms
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._buckets: dict[Hashable, TokenBucket] = {}
        self.stats = {"total_requests": 0, "total_waits": 0, "total_rate_limit_errors": 0}

        logger.info(
            "rate_limiter_initialized",
            max_requests=max_requests,
            window_ms=window_ms,
            refill_rate=self.refill_rate,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RateLimiter:
        settings = settings or get_settings()
        return cls(
            max_requests=settings.SQUARE_RATE_LIMIT_MAX_REQUESTS,
            window_ms=settings.SQUARE_RATE_LIMIT_WINDOW_MS,
        )

    def _now_ms(self) -> float:
        return self._clock() * 1000

    async def acquire_token(self, connection_id: Hashable) -> bool:
        """Wait until a token is available for ``connection_id`` and consume it."""
        bucket = self._get_bucket(connection_id)

        if bucket.paused_until is not None:
            wait_ms = bucket.paused_until - self._now_ms()
            if wait_ms > 0:
                logger.warning("rate_limiter_paused", connection_id=connection_id, wait_ms=wait_ms)
                await self._sleep(wait_ms / 1000)
            bucket.paused_until = None

        self._refill(bucket)

        if bucket.tokens < 1:
            self.stats["total_waits"] += 1
            while bucket.tokens < 1:
                wait_ms = math.ceil((1 - bucket.tokens) / self.refill_rate)
                logger.debug(
                    "rate_limiter_waiting",
                    connection_id=connection_id,
                    wait_ms=wait_ms,
                    current_tokens=bucket.tokens,
                )
                await self._sleep(wait_ms / 1000)
                self._refill(bucket)

        bucket.tokens -= 1
        self.stats["total_requests"] += 1
        return True

    def handle_rate_limit_error(self, connection_id: Hashable, retry_after_ms: float | None = None) -> None:
        """Empty and pause the bucket after a 429 from Square."""
        bucket = self._get_bucket(connection_id)
        bucket.tokens = 0
        bucket.last_refill = self._now_ms()
        pause_ms = retry_after_ms or self.window_ms
        bucket.paused_until = self._now_ms() + pause_ms
        self.stats["total_rate_limit_errors"] += 1

        logger.warning(
            "square_rate_limit_exceeded",
            connection_id=connection_id,
            pause_ms=pause_ms,
            retry_after_ms=retry_after_ms,
        )

    def get_bucket_status(self, connection_id: Hashable) -> dict[str, Any] | None:
        bucket = self._buckets.get(connection_id)
        if bucket is None:
            return None
        self._refill(bucket)
        return {
            "tokens": bucket.tokens,
            "max_tokens": self.max_requests,
            "percent_full": bucket.tokens / self.max_requests * 100,
            "is_paused": bucket.paused_until is not None and self._now_ms() < bucket.paused_until,
            "paused_until": bucket.paused_until,
        }

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats, "active_buckets": len(self._buckets)}

    def reset_stats(self) -> None:
        self.stats = {"total_requests": 0, "total_waits": 0, "total_rate_limit_errors": 0}

    def clear(self, connection_id: Hashable | None = None) -> None:
        """Drop one bucket, or all of them when no id is given."""
        if connection_id is None:
            self._buckets.clear()
        else:
            self._buckets.pop(connection_id, None)

    def _get_bucket(self, connection_id: Hashable) -> TokenBucket:
        bucket = self._buckets.get(connection_id)
        if bucket is None:
            bucket = TokenBucket(tokens=self.max_requests, last_refill=self._now_ms())
            self._buckets[connection_id] = bucket
        return bucket

    def _refill(self, bucket: TokenBucket) -> None:
        now = self._now_ms()
        elapsed = now - bucket.last_refill
        if elapsed > 0:
            bucket.tokens = min(self.max_requests, bucket.tokens + elapsed * self.refill_rate)
            bucket.last_refill = now
