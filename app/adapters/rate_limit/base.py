"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so the counting strategy can change without touching the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at_ms: UNIX epoch milliseconds when the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def check_rate_limit(
        self,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> RateLimitDecision:
        """Count one request for identifier and decide whether it may proceed.

        Args:
            identifier: Caller identity (IP address, user id, namespaced key).
            limit: Maximum requests per window.
            window_seconds: Window length in seconds.

        Returns:
            RateLimitDecision describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    async def undo(self, identifier: str) -> None:
        """Give back one request previously counted for identifier."""
        raise NotImplementedError
