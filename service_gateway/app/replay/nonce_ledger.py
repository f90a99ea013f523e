"""
Nonce ledger for replay protection.

A TTL set: each accepted nonce stays resident until its expiry, and while
resident any request bearing it is refused. Expirations live in a min-heap
drained under the same lock as ``accept`` so cleanup can never interleave
with a check on the same nonce.
"""

from __future__ import annotations

import heapq
import threading
from typing import Dict, List, Optional, Tuple

from shared.logging import get_logger

from ..domain.clock import Clock, epoch_millis

DEFAULT_TOLERANCE_MS = 5 * 60 * 1000


class NonceLedger:
    """Thread-safe, self-expiring record of recently seen nonces."""

    def __init__(self, tolerance_ms: int = DEFAULT_TOLERANCE_MS, clock: Clock = epoch_millis):
        if tolerance_ms <= 0:
            raise ValueError("tolerance_ms must be positive")
        self.tolerance_ms = tolerance_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._expires_at: Dict[str, int] = {}
        self._heap: List[Tuple[int, str]] = []
        self.logger = get_logger("gateway.nonce_ledger")

    def is_fresh(self, timestamp: int, now: Optional[int] = None) -> bool:
        """True when ``timestamp`` lies within ``now ± tolerance`` (inclusive)."""
        if now is None:
            now = self._clock()
        return abs(now - timestamp) <= self.tolerance_ms

    def accept(self, nonce: str, timestamp: Optional[int] = None) -> bool:
        """Record ``nonce`` and return True, or return False if it is resident.

        The entry lives until ``max(now, timestamp) + tolerance``: a replay
        carries the same signed timestamp, so the nonce must outlast every
        instant at which that timestamp could still pass the freshness check.
        """
        with self._lock:
            now = self._clock()
            self._evict_expired(now)

            if nonce in self._expires_at:
                self.logger.warning("Replay detected", nonce=nonce[:8])
                return False

            anchor = now if timestamp is None else max(now, timestamp)
            expires_at = anchor + self.tolerance_ms
            self._expires_at[nonce] = expires_at
            heapq.heappush(self._heap, (expires_at, nonce))
            return True

    def contains(self, nonce: str) -> bool:
        with self._lock:
            self._evict_expired(self._clock())
            return nonce in self._expires_at

    def sweep(self) -> int:
        """Evict every expired nonce; returns how many were removed."""
        with self._lock:
            evicted = self._evict_expired(self._clock())
        if evicted:
            self.logger.debug("Nonce sweep", evicted=evicted)
        return evicted

    @property
    def size(self) -> int:
        with self._lock:
            self._evict_expired(self._clock())
            return len(self._expires_at)

    def clear(self) -> None:
        with self._lock:
            self._expires_at.clear()
            self._heap.clear()

    def _evict_expired(self, now: int) -> int:
        # Caller holds self._lock. An entry is still resident at exactly expires_at.
        evicted = 0
        while self._heap and self._heap[0][0] < now:
            expires_at, nonce = heapq.heappop(self._heap)
            if self._expires_at.get(nonce) == expires_at:
                del self._expires_at[nonce]
                evicted += 1
        return evicted
