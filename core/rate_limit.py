"""
Request admission ledger: at most `limit` requests per caller address per fixed window.
State lives on the RateLimiter instance (inject one per server/app) and is guarded by a lock,
so admission is safe from event-loop tasks and from worker threads alike.
Nothing in the CLI calls it: it is meant to be consumed by an HTTP layer that fronts
analyze_all: call check() once per request and answer 429 with the resetTime when refused.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from core import constants

logger = logging.getLogger("mailposture.rate_limit")

TOO_MANY_REQUESTS = "Too many requests. Please try again later."


@dataclass
class _Entry:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter per address. clock returns seconds (time.time by default)."""

    def __init__(
        self,
        limit: int = constants.RATE_LIMIT_REQUESTS,
        window: float = constants.RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = int(limit)
        self.window = float(window)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def check(self, address: str) -> dict[str, Any]:
        """
        Admit or deny one request from address.
        Allowed: {allowed: True, remaining}. Denied: {allowed: False, error, resetTime} (epoch ms).
        """
        address = address or "unknown"
        now = self._clock()
        with self._lock:
            entry = self._entries.get(address)
            if entry is None or now > entry.reset_at:
                self._entries[address] = _Entry(count=1, reset_at=now + self.window)
                return {"allowed": True, "remaining": self.limit - 1}
            if entry.count >= self.limit:
                logger.debug("Rate limit hit for %s (%d requests)", address, entry.count)
                return {
                    "allowed": False,
                    "error": TOO_MANY_REQUESTS,
                    "resetTime": int(entry.reset_at * 1000),
                }
            entry.count += 1
            return {"allowed": True, "remaining": self.limit - entry.count}

    def sweep(self) -> int:
        """Evict entries whose window has expired. Returns the number evicted."""
        now = self._clock()
        with self._lock:
            expired = [addr for addr, e in self._entries.items() if now > e.reset_at]
            for addr in expired:
                del self._entries[addr]
        if expired:
            logger.debug("Rate limiter swept %d expired entr%s", len(expired), "y" if len(expired) == 1 else "ies")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def run_sweeper(self, interval: float = constants.RATE_LIMIT_SWEEP_SECONDS) -> None:
        """Sweep on a fixed interval until cancelled; independent of request traffic."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()
