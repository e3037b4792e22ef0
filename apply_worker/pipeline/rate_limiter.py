"""Per-domain request spacing.

Each registrable domain (last two hostname labels) has a minimum interval
between requests. wait_for_slot() sleeps until that interval has passed
since the last request to the same domain; different domains never wait on
each other. State lives on the instance, one limiter per worker process.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

from apply_worker.core.config import RateLimitConfig

logger = logging.getLogger(__name__)

UNKNOWN_DOMAIN = "unknown"


@dataclass(frozen=True)
class RateLimitStatus:
    can_request: bool
    wait_s: float


def registrable_domain(url: str) -> str:
    """'boards.greenhouse.io' -> 'greenhouse.io'. Unparsable URLs map to 'unknown'."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return UNKNOWN_DOMAIN
    if not host:
        return UNKNOWN_DOMAIN
    labels = host.lower().split(".")
    return ".".join(labels[-2:])


class RateLimiter:
    """Enforces a minimum interval between requests to the same domain."""

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        config = config or RateLimitConfig()
        self._default_interval = config.default_interval_s
        self._intervals: dict[str, float] = dict(config.domain_intervals)
        self._last_request: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._request_count = 0

    def interval_for(self, domain: str) -> float:
        return self._intervals.get(domain, self._default_interval)

    def _wait_needed(self, domain: str, now: float) -> float:
        last = self._last_request.get(domain)
        if last is None:
            return 0.0
        return max(0.0, self.interval_for(domain) - (now - last))

    async def wait_for_slot(self, url: str) -> float:
        """Block until a request to ``url``'s domain is allowed. Returns seconds waited."""
        domain = registrable_domain(url)
        lock = self._locks.setdefault(domain, asyncio.Lock())
        async with lock:
            wait_s = self._wait_needed(domain, time.monotonic())
            if wait_s > 0:
                logger.info("Rate limiting %s: waiting %.1fs", domain, wait_s)
                await asyncio.sleep(wait_s)
            self._last_request[domain] = time.monotonic()
            self._request_count += 1
        return wait_s

    def get_status(self, url: str) -> RateLimitStatus:
        domain = registrable_domain(url)
        wait_s = self._wait_needed(domain, time.monotonic())
        return RateLimitStatus(can_request=wait_s == 0.0, wait_s=wait_s)

    def set_domain_limit(self, domain: str, interval_s: float) -> None:
        if interval_s < 0:
            msg = "interval_s must not be negative"
            raise ValueError(msg)
        self._intervals[domain.lower()] = interval_s

    def clear(self) -> None:
        """Forget all request history. Interval overrides are kept."""
        self._last_request.clear()
        self._request_count = 0

    def get_stats(self) -> dict[str, object]:
        return {
            "domains": sorted(self._last_request),
            "total_requests": self._request_count,
        }
