"""Fixed-window, multi-tier rate limiting.

Two layers share the ``limits`` storage engine:

- ``limiter``: the slowapi global per-IP limit applied by middleware to every route.
- ``rate_limiter``: per-operation tiers (login, register, refresh, password reset,
  API key) keyed by whatever identifies the caller for that operation.

Windows are aligned to wall-clock boundaries: the window start is part of the
bucket key, so a 1/minute tier resets at every full minute rather than one
minute after the first hit.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from limits import RateLimitItem, parse_many
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from braidarr.config.settings import settings
from braidarr.shared.errors.exceptions import RateLimitExceededException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of admitting one request."""

    allowed: bool
    retry_after: int = 0
    tier: str | None = None


class RateLimiter:
    """Per-operation fixed-window counters over a ``limits`` storage backend.

    Args:
        tiers: Operation name mapped to limits notation, tiers separated by ``;``
               (e.g. ``{"login": "5/minute;20/hour"}``)
        storage_uri: ``limits`` storage URI (``memory://``, ``redis://host:6379``, ...)
        clock: Returns the current time in epoch seconds
        enabled: When False every request is admitted

    """

    def __init__(
        self,
        tiers: dict[str, str],
        storage_uri: str = "memory://",
        clock: Callable[[], float] = time.time,
        enabled: bool = True,
    ):
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._tiers: dict[str, list[RateLimitItem]] = {op: parse_many(rule) for op, rule in tiers.items()}
        self._clock = clock
        self.enabled = enabled

    def tiers_for(self, operation: str) -> list[RateLimitItem]:
        """Configured tiers for an operation class."""
        try:
            return self._tiers[operation]
        except KeyError:
            raise ValueError(f"Unknown rate limit operation: {operation}") from None

    def check(self, operation: str, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and report whether it is admitted.

        Each tier is incremented in turn; the first exhausted tier rejects the
        request and later tiers are left untouched.
        """
        tiers = self.tiers_for(operation)
        if not self.enabled:
            return RateLimitDecision(allowed=True)

        now = self._clock()
        for item in tiers:
            window = item.get_expiry()
            window_start = int(now // window) * window
            if not self._strategy.hit(item, operation, key, str(window_start)):
                retry_after = max(1, math.ceil(window_start + window - now))
                return RateLimitDecision(allowed=False, retry_after=retry_after, tier=str(item))

        return RateLimitDecision(allowed=True)

    def admit(self, operation: str, key: str) -> None:
        """Count one request and raise if any tier is exhausted.

        Raises:
            RateLimitExceededException: With the seconds until the exhausted window resets

        """
        decision = self.check(operation, key)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {operation} ({decision.tier}), retry in {decision.retry_after}s")
            raise RateLimitExceededException(retry_after=decision.retry_after)

    def reset(self) -> None:
        """Clear every counter."""
        self._storage.reset()


# Per-operation limiter used by the auth and API key layers
rate_limiter = RateLimiter(
    tiers=settings.rate_limit_tiers,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)

# Global per-IP limit enforced by SlowAPIMiddleware
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_global],
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)
