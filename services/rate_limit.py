"""Per-user check-in throttling on top of the `limits` rate limiting engine."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger(__name__)

NAMESPACE = 'check-in'


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int  # seconds until the oldest hit leaves the window


class CheckInRateLimiter:
    """Sliding-window counter keyed by user id.

    With the default ``memory://`` storage the counters live in this process
    only and are lost on restart; point ``storage_uri`` at a shared backend
    to enforce the limit across workers.
    """

    def __init__(self, limit: str = '10/minute', storage_uri: str = 'memory://'):
        self.limit_value = limit
        self.item = parse(limit)
        self.storage = storage_from_string(storage_uri)
        self.strategy = MovingWindowRateLimiter(self.storage)

    def configure(self, limit: str):
        if limit != self.limit_value:
            self.limit_value = limit
            self.item = parse(limit)

    def check(self, identifier) -> RateLimitResult:
        key = str(identifier)
        allowed = self.strategy.hit(self.item, NAMESPACE, key)
        reset_time, remaining = self.strategy.get_window_stats(self.item, NAMESPACE, key)
        reset_in = max(1, math.ceil(reset_time - time.time()))
        if not allowed:
            logger.info('Check-in rate limit hit: user=%s retry_in=%ss', key, reset_in)
        return RateLimitResult(allowed=allowed, remaining=max(0, remaining), reset_in=reset_in)

    def reset(self):
        self.storage.reset()
