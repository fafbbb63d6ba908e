"""Retry policy for outbound Square API calls.

Implements exponential backoff with jitter for transient failures, on top
of tenacity's AsyncRetrying loop.

Retryable errors:
- HTTP 429, 500, 502, 503, 504
- Network errors: ECONNRESET, ETIMEDOUT, ENOTFOUND, ECONNREFUSED, EPIPE

Everything else (400, 401, 403, 404, other 4xx, programming errors) fails
on the first attempt. 401 is handled by the token refresh flow, not here.

Backoff formula: min(max_delay, base_delay * 2^attempt + uniform(0, jitter)).
With base=1000ms and jitter=1000ms the three retries wait 1-2s, 2-3s and
4-5s. Wrapped operations must be idempotent or read-only.
"""

from __future__ import annotations

import asyncio
import errno
import random
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from src.restaurant_ops.config import Settings, get_settings
from src.restaurant_ops.pos.errors import SquareApiError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})
DEFAULT_RETRYABLE_ERROR_CODES: frozenset[str] = frozenset(
    {"ECONNRESET", "ETIMEDOUT", "ENOTFOUND", "ECONNREFUSED", "EPIPE"}
)


@dataclass
class RetryStats:
    """Counters owned by a single RetryPolicy instance."""

    total_attempts: int = 0
    total_retries: int = 0
    total_successes: int = 0
    total_failures: int = 0
    retries_by_status_code: dict[str, int] = field(default_factory=dict)


def _status_code_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _network_code_of(error: BaseException) -> str | None:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    # ConnectTimeout is both a timeout and a connect failure; timeout wins
    if isinstance(error, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(error, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(error, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    if isinstance(error, OSError) and error.errno:
        return errno.errorcode.get(error.errno)
    return None


class RetryPolicy:
    """Exponential-backoff retry wrapper with error classification and stats.

    Each instance owns its statistics. Call sites that want shared
    counters must share the instance explicitly.

    Args:
        max_retries: Retries after the initial attempt (total attempts is
            max_retries + 1).
        base_delay_ms: Delay before the first retry, doubled per retry.
        max_delay_ms: Upper bound for any single delay.
        jitter_ms: Upper bound of the uniform random jitter added to each delay.
        retryable_status_codes: HTTP status codes that trigger a retry.
        retryable_error_codes: Network error codes that trigger a retry.
        sleep: Coroutine function taking seconds; defaults to asyncio.sleep.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: float = 1000,
        max_delay_ms: float = 30000,
        jitter_ms: float = 1000,
        retryable_status_codes: Iterable[int] | None = None,
        retryable_error_codes: Iterable[str] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_ms = jitter_ms
        self.retryable_status_codes = frozenset(
            DEFAULT_RETRYABLE_STATUS_CODES if retryable_status_codes is None else retryable_status_codes
        )
        self.retryable_error_codes = frozenset(
            DEFAULT_RETRYABLE_ERROR_CODES if retryable_error_codes is None else retryable_error_codes
        )
        self._sleep = sleep or asyncio.sleep
        self.stats = RetryStats()

        logger.info(
            "retry_policy_initialized",
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            retryable_status_codes=sorted(self.retryable_status_codes),
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> RetryPolicy:
        """Build a policy from the SQUARE_RETRY_* settings."""
        settings = settings or get_settings()
        options: dict[str, Any] = {
            "max_retries": settings.SQUARE_MAX_RETRIES,
            "base_delay_ms": settings.SQUARE_RETRY_BASE_DELAY_MS,
            "max_delay_ms": settings.SQUARE_RETRY_MAX_DELAY_MS,
            "jitter_ms": settings.SQUARE_RETRY_JITTER_MS,
        }
        options.update(overrides)
        return cls(**options)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds, fails terminally, or retries run out.

        Args:
            operation: Zero-argument callable returning an awaitable.
            context: Extra fields for log events (e.g. method, connection_id).

        Returns:
            The operation's result.

        Raises:
            Exception: The original error from the last attempt.
        """
        context = context or {}
        max_attempts = self.max_retries + 1

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._make_before_sleep(context, max_attempts),
            sleep=self._sleep,
            reraise=True,
        )

        attempt_number = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    self.stats.total_attempts += 1
                    result = await operation()
        except Exception as exc:
            self.stats.total_failures += 1
            logger.error(
                "square_call_failed",
                **context,
                attempt=attempt_number,
                total_attempts=max_attempts,
                is_retryable=self.is_retryable(exc),
                error=self.serialize_error(exc),
            )
            raise

        self.stats.total_successes += 1
        if attempt_number > 1:
            logger.info(
                "square_call_succeeded_after_retry",
                **context,
                attempt=attempt_number,
                total_attempts=max_attempts,
            )
        return result

    def is_retryable(self, error: BaseException) -> bool:
        """Classify an error as transient (retry) or terminal (raise)."""
        status_code = _status_code_of(error)
        if status_code is not None:
            return status_code in self.retryable_status_codes

        network_code = _network_code_of(error)
        if network_code is not None:
            return network_code in self.retryable_error_codes

        return False

    def calculate_backoff(self, attempt: int) -> float:
        """Delay in milliseconds before retry number ``attempt`` (0-based)."""
        exponential = self.base_delay_ms * (2**attempt)
        jitter = random.uniform(0, self.jitter_ms) if self.jitter_ms > 0 else 0
        return min(self.max_delay_ms, exponential + jitter)

    def serialize_error(self, error: BaseException) -> dict[str, Any]:
        """Stable diagnostic dict for logging. Never used for control flow."""
        if isinstance(error, SquareApiError):
            first = error.first_error
            return {
                "type": type(error).__name__,
                "status_code": error.status_code,
                "message": str(error),
                "category": first.get("category"),
                "code": first.get("code"),
                "detail": first.get("detail"),
            }
        return {
            "type": type(error).__name__,
            "message": str(error),
            "code": _network_code_of(error),
        }

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of the counters plus derived rates."""
        stats = self.stats
        if stats.total_attempts > 0:
            success_rate = f"{stats.total_successes / stats.total_attempts * 100:.2f}%"
        else:
            success_rate = "N/A"
        if stats.total_failures > 0:
            avg_retries = f"{stats.total_retries / stats.total_failures:.2f}"
        else:
            avg_retries = "0"
        return {
            "total_attempts": stats.total_attempts,
            "total_retries": stats.total_retries,
            "total_successes": stats.total_successes,
            "total_failures": stats.total_failures,
            "retries_by_status_code": dict(stats.retries_by_status_code),
            "success_rate": success_rate,
            "avg_retries_per_failure": avg_retries,
        }

    def reset_stats(self) -> None:
        self.stats = RetryStats()

    # ── tenacity hooks ───────────────────────────────────────────────────────

    def _wait(self, retry_state: RetryCallState) -> float:
        # tenacity sleeps in seconds; attempt_number is 1 after the first failure
        return self.calculate_backoff(retry_state.attempt_number - 1) / 1000

    def _make_before_sleep(
        self, context: dict[str, Any], max_attempts: int
    ) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            self.stats.total_retries += 1

            status_code = _status_code_of(error) if error is not None else None
            if status_code is not None:
                key = str(status_code)
                self.stats.retries_by_status_code[key] = self.stats.retries_by_status_code.get(key, 0) + 1

            delay_s = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                "square_call_retrying",
                **context,
                attempt=retry_state.attempt_number,
                total_attempts=max_attempts,
                retry_in_ms=round(delay_s * 1000),
                error=self.serialize_error(error) if error is not None else None,
            )

        return before_sleep
