"""Request rate limiting on top of ``limits`` (the engine slowapi uses).

Fixed one-minute windows keyed by client IP and request path. The counter
storage comes from a URI: ``memory://`` keeps counts in this process,
``redis://host:port/db`` shares them across instances.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from limits import RateLimitItem, parse
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

AUTH_PATH_PREFIX = "/api/auth/"


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int = 0

    @property
    def reset_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, timezone.utc).isoformat()

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_iso,
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitService:
    """Counts requests per (client, path) with a stricter limit on auth endpoints."""

    def __init__(
        self,
        storage_uri: str = "memory://",
        default_limit: str = "100/minute",
        auth_limit: str = "20/minute",
    ):
        self._storage = storage_from_string(storage_uri)
        self._limiter = FixedWindowRateLimiter(self._storage)
        self._default = parse(default_limit)
        self._auth = parse(auth_limit)

    def limit_for(self, path: str) -> RateLimitItem:
        return self._auth if path.startswith(AUTH_PATH_PREFIX) else self._default

    def check(self, client_id: str, path: str) -> RateLimitDecision:
        """Count one request and report whether it is within the limit."""
        item = self.limit_for(path)
        allowed = self._limiter.hit(item, client_id, path)
        reset_at, remaining = self._limiter.get_window_stats(item, client_id, path)
        retry_after = 0 if allowed else max(1, math.ceil(reset_at - time.time()))
        if not allowed:
            logger.info("Rate limit hit: client=%s path=%s limit=%s", client_id, path, item)
        return RateLimitDecision(
            allowed=allowed,
            limit=item.amount,
            remaining=max(0, remaining),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def reset(self) -> None:
        self._storage.reset()
