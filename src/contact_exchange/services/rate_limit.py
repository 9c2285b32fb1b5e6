"""Fixed-window rate limiting for hit submissions."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from contact_exchange.domain.errors import RateLimitedError
from contact_exchange.services.exchange_store import utcnow


class RateLimiter(Protocol):
    """Interface for per-key submission limits."""

    def check(self, key: str) -> None:
        """Count one request for the key; raise RateLimitedError when over."""


@dataclass
class _WindowEntry:
    count: int
    expires_at: datetime


@dataclass
class InMemoryRateLimiter(RateLimiter):
    """Process-local rate limiter with expiring counters."""

    limit: int
    window_seconds: int
    clock: Callable[[], datetime] = field(default=utcnow)
    _entries: dict[str, _WindowEntry] = field(default_factory=dict, repr=False)

    def check(self, key: str) -> None:
        """Count a request and raise once the window's limit is exceeded."""
        now = self.clock()
        entry = self._entries.get(key)
        if entry is None or now >= entry.expires_at:
            self._prune(now)
            entry = _WindowEntry(
                count=0, expires_at=now + timedelta(seconds=self.window_seconds)
            )
            self._entries[key] = entry
        entry.count += 1
        if entry.count > self.limit:
            raise RateLimitedError(
                f"Rate limit exceeded; retry after {entry.expires_at.isoformat()}"
            )

    def _prune(self, now: datetime) -> None:
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            self._entries.pop(key, None)
