"""
Fixed-window rate limiter for Gateway service.

A window opens the first time a client is seen, or on the first check after
the previous window's reset instant. Every check inside an open window is
counted; once the ceiling is reached further checks are refused, echoing the
same reset instant, until the window rolls over. There is no mid-window
replenishment, so a burst straddling a boundary can admit up to twice the
nominal rate.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request

from shared.logging import get_logger

from ..domain.clock import Clock, epoch_millis


@dataclass
class RateBucket:
    """Request count for one client inside its current window."""

    client_key: str
    count: int
    window_reset_at: int


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single rate-limit check."""

    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_at: int
    now: int

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds until the window resets (at least 1)."""
        return max(1, math.ceil((self.reset_at - self.now) / 1000))

    @property
    def reset_in_seconds(self) -> int:
        return max(0, math.ceil((self.reset_at - self.now) / 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "current_count": self.count,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "reset_in_seconds": self.reset_in_seconds,
        }


class FixedWindowRateLimiter:
    """In-process per-client fixed-window request counter."""

    def __init__(self, max_requests: int = 30, window_ms: int = 60_000, clock: Clock = epoch_millis):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, RateBucket] = {}
        self.logger = get_logger("gateway.rate_limiter")

    @staticmethod
    def make_key(origin: str, credential: Optional[str]) -> str:
        """Compose the bucket key from network origin and credential."""
        return f"{origin}:{credential or 'anonymous'}"

    def check(self, client_key: str) -> RateLimitDecision:
        """Count one attempt for ``client_key`` and decide whether it may proceed."""
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(client_key)

            if bucket is None or now > bucket.window_reset_at:
                bucket = RateBucket(client_key=client_key, count=0, window_reset_at=now + self.window_ms)
                self._buckets[client_key] = bucket

            if bucket.count >= self.max_requests:
                decision = RateLimitDecision(
                    allowed=False,
                    limit=self.max_requests,
                    count=bucket.count,
                    remaining=0,
                    reset_at=bucket.window_reset_at,
                    now=now,
                )
            else:
                bucket.count += 1
                decision = RateLimitDecision(
                    allowed=True,
                    limit=self.max_requests,
                    count=bucket.count,
                    remaining=self.max_requests - bucket.count,
                    reset_at=bucket.window_reset_at,
                    now=now,
                )

        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_key,
                current_count=decision.count,
                limit=decision.limit,
                reset_at=decision.reset_at,
            )
        return decision

    def status(self, client_key: str) -> Dict[str, Any]:
        """Current bucket state without counting an attempt."""
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(client_key)
            if bucket is None or now > bucket.window_reset_at:
                count, reset_at = 0, now + self.window_ms
            else:
                count, reset_at = bucket.count, bucket.window_reset_at

        return {
            "current_count": count,
            "limit": self.max_requests,
            "remaining": max(0, self.max_requests - count),
            "reset_at": reset_at,
        }

    def reset(self, client_key: str) -> bool:
        """Drop the bucket for ``client_key``; True if one existed."""
        with self._lock:
            existed = self._buckets.pop(client_key, None) is not None
        if existed:
            self.logger.info("Rate limit reset", client_id=client_key)
        return existed

    def prune(self) -> int:
        """Forget buckets whose window has passed."""
        with self._lock:
            now = self._clock()
            stale = [key for key, bucket in self._buckets.items() if now > bucket.window_reset_at]
            for key in stale:
                del self._buckets[key]
        return len(stale)

    @property
    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)


def get_client_ip(request: Request) -> str:
    """Extract the caller IP from standard headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if isinstance(forwarded_for, str) and forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if isinstance(real_ip, str) and real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"
