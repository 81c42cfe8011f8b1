"""Per-client sliding-window rate limiting"""

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, Dict, Optional

from userforge.utils.config import RateLimitRule
from userforge.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: int

    @property
    def retry_after(self) -> int:
        return self.reset_after


class RateLimiter:
    """
    Sliding-window limiter keyed by client.

    Each key keeps the timestamps of its hits inside the current window.
    All reads and writes happen under one lock, so concurrent requests from
    the same client can never both take the last slot.
    """

    def __init__(self, rule: RateLimitRule, name: str = "api", clock: Optional[Callable[[], float]] = None):
        self.rule = rule
        self.name = name
        self._clock = clock or time.monotonic
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = self._clock()
        self.lock = Lock()

    def __len__(self) -> int:
        """Number of clients currently tracked"""
        with self.lock:
            return len(self._hits)

    def _prune(self, key: str, now: float) -> Deque[float]:
        """Drop expired hits for ``key``; a key left with no hits is forgotten"""
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        window_start = now - self.rule.window_seconds
        while hits and hits[0] <= window_start:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        """Evict idle clients, at most once per window"""
        if now - self._last_sweep < self.rule.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            self._prune(key, now)

    def _reset_after(self, hits: Deque[float], now: float) -> int:
        if not hits:
            return self.rule.window_seconds
        return max(1, math.ceil(hits[0] + self.rule.window_seconds - now))

    def hit(self, key: str) -> RateLimitDecision:
        """
        Count one request for ``key``.

        Returns:
            Decision for this request. Rejected requests are not counted.
        """
        with self.lock:
            now = self._clock()
            self._sweep(now)
            hits = self._prune(key, now)

            if len(hits) >= self.rule.max_requests:
                decision = RateLimitDecision(
                    allowed=False,
                    limit=self.rule.max_requests,
                    remaining=0,
                    reset_after=self._reset_after(hits, now),
                )
                logger.warning("Rate limit exceeded", limiter=self.name, client=key, retry_after=decision.reset_after)
                return decision

            hits.append(now)
            self._hits[key] = hits
            return RateLimitDecision(
                allowed=True,
                limit=self.rule.max_requests,
                remaining=self.rule.max_requests - len(hits),
                reset_after=self._reset_after(hits, now),
            )

    def release(self, key: str) -> None:
        """Refund the newest hit for ``key`` (skip_successful rules)"""
        with self.lock:
            hits = self._hits.get(key)
            if hits:
                hits.pop()
            if hits is not None and not hits:
                del self._hits[key]

    def get_statistics(self) -> Dict[str, int]:
        """Number of hits currently inside the window, per client"""
        with self.lock:
            now = self._clock()
            stats = {}
            for key in list(self._hits):
                count = len(self._prune(key, now))
                if count:
                    stats[key] = count
            return stats
