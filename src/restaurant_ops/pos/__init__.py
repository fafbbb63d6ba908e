"""Square POS integration: retry policy, rate limiter, and REST client.

Exports:
    RetryPolicy: Exponential backoff with jitter and error classification.
    RetryStats: Counters owned by a RetryPolicy.
    RateLimiter: Per-connection token bucket.
    SquareApiError: Non-2xx response from Square.
    SquareClient: Read-only async client for the Square REST API.
"""

from __future__ import annotations

from src.restaurant_ops.pos.errors import SquareApiError
from src.restaurant_ops.pos.rate_limiter import RateLimiter
from src.restaurant_ops.pos.retry import RetryPolicy, RetryStats
from src.restaurant_ops.pos.square_client import SquareClient

__all__ = [
    "RateLimiter",
    "RetryPolicy",
    "RetryStats",
    "SquareApiError",
    "SquareClient",
]
