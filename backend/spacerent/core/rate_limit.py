"""
Per-key sliding-window rate limiter (in-process).

Used to bound token-balance RPC cost from entry and eligibility checks: each
wallet gets `limit` checks per `window_seconds` per bucket.
"""
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateCheck:
    allowed: bool
    retry_after_ms: int = 0


class RateLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: float,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._monotonic = monotonic
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()
        self._last_prune = monotonic()

    def check(self, bucket: str, key: str) -> RateCheck:
        """Record one hit for (bucket, key) if under the limit."""
        now = self._monotonic()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_prune >= self.window_seconds:
                self._prune(cutoff)
                self._last_prune = now
            hits = self._hits.setdefault((bucket, key), deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                retry_after = hits[0] + self.window_seconds - now
                return RateCheck(allowed=False, retry_after_ms=max(0, int(retry_after * 1000)))
            hits.append(now)
            return RateCheck(allowed=True)

    def _prune(self, cutoff: float) -> None:
        """Drop keys whose newest hit is outside the window. Caller holds the lock."""
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
