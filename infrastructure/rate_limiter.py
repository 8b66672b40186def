"""
Fixed-window request limits on top of the ``limits`` package.

One RateLimiter is built per app in the lifespan. Each scope has its own limit
and counts requests per client IP across every route guarded by that scope,
so six auth endpoints share one budget.

Counters live in whatever ``limits`` storage RATE_LIMIT_STORAGE_URI names;
the in-memory default is per process.
"""

from __future__ import annotations

import math
import time

from limits import RateLimitItem, parse
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from config import AppSettings
from errors import RateLimitError
from shared.logging import get_logger

log = get_logger(__name__)

SCOPE_AUTH = "auth"
SCOPE_LOGOUT = "logout"

_MESSAGES = {
    SCOPE_AUTH: "Too many authentication attempts. Please try again later.",
    SCOPE_LOGOUT: "Too many logout attempts. Please try again later.",
}


class RateLimiter:
    def __init__(self, settings: AppSettings) -> None:
        self.enabled = settings.rate_limit.rate_limit_enabled
        self.trust_proxy_headers = settings.rate_limit.trust_proxy_headers
        self._limits: dict[str, RateLimitItem] = {
            SCOPE_AUTH: parse(settings.auth_rate_limit),
            SCOPE_LOGOUT: parse(settings.rate_limit.logout_rate_limit),
        }
        self._strategy = FixedWindowRateLimiter(
            storage_from_string(settings.rate_limit.rate_limit_storage_uri)
        )

    def hit(self, scope: str, key: str) -> None:
        """Count one request by *key* against *scope*.

        Raises RateLimitError, carrying the seconds until the window resets,
        once the scope's limit is exhausted.
        """
        if not self.enabled:
            return
        limit = self._limits[scope]
        if self._strategy.hit(limit, scope, key):
            return

        stats = self._strategy.get_window_stats(limit, scope, key)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        log.warning(
            "rate_limit_exceeded",
            scope=scope,
            client_ip=key,
            limit=str(limit),
            retry_after=retry_after,
        )
        raise RateLimitError(_MESSAGES[scope], retry_after=retry_after)
