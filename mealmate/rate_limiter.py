"""
Outbound request pacing for recipe scraping.

Each `RequestRateLimiter` enforces three rules before letting a request
start: at most `max_concurrent` requests in flight, at most `burst_limit`
starts inside the trailing `burst_window`, and at least `min_delay` seconds
between consecutive starts. Waiters are served in arrival order.

`DomainRateLimiter` keeps one limiter per site so a slow, heavily-protected
site doesn't hold up requests to others.
"""

import dataclasses
import logging
import random
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass

from mealmate import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimiterConfig:
    min_delay: float = 2.0       # seconds between request starts
    max_concurrent: int = 2      # requests in flight
    burst_limit: int = 5         # starts allowed per burst window
    burst_window: float = 60.0   # seconds


class RequestRateLimiter:
    """Blocking, thread-safe limiter for outbound requests."""

    def __init__(self, config: RateLimiterConfig | None = None):
        self.config = config or RateLimiterConfig()
        self._cond = threading.Condition()
        self._last_request_time: float | None = None
        self._active_requests = 0
        self._waiters: deque[object] = deque()
        self._history: deque[float] = deque()

        logger.info("Rate limiter initialized", extra={"limiter_config": dataclasses.asdict(self.config)})

    def _cleanup_history(self, now: float) -> None:
        cutoff = now - self.config.burst_window
        while self._history and self._history[0] <= cutoff:
            self._history.popleft()

    def _required_wait(self, now: float, ticket: object) -> float | None:
        """Seconds until `ticket` may start, or None if it must wait for a notify."""
        if not self._waiters or self._waiters[0] is not ticket:
            return None
        if self._active_requests >= self.config.max_concurrent:
            return None

        wait = 0.0
        self._cleanup_history(now)
        if len(self._history) >= self.config.burst_limit:
            wait = max(wait, self.config.burst_window - (now - self._history[0]))

        if self._last_request_time is not None:
            wait = max(wait, self.config.min_delay - (now - self._last_request_time))

        return max(0.0, wait)

    def wait_for_next_request(self) -> None:
        """Block until the next request is allowed to start, then record it."""
        ticket = object()
        with self._cond:
            self._waiters.append(ticket)
            try:
                while True:
                    wait = self._required_wait(time.monotonic(), ticket)
                    if wait is None:
                        logger.debug("Concurrent request limit reached, queuing request")
                        self._cond.wait()
                    elif wait > 0:
                        logger.debug("Delaying request", extra={"wait_s": round(wait, 3)})
                        self._cond.wait(timeout=wait)
                    else:
                        break
            finally:
                self._waiters.remove(ticket)
                # The next waiter in line may now be at the head
                self._cond.notify_all()

            now = time.monotonic()
            self._last_request_time = now
            self._active_requests += 1
            self._history.append(now)

            logger.debug(
                "Request allowed",
                extra={
                    "active_requests": self._active_requests,
                    "queue_length": len(self._waiters),
                    "recent_requests": len(self._history),
                },
            )

    def complete_request(self) -> None:
        """Mark a request as finished, freeing its concurrency slot."""
        with self._cond:
            self._active_requests = max(0, self._active_requests - 1)
            logger.debug(
                "Request completed",
                extra={"active_requests": self._active_requests, "queue_length": len(self._waiters)},
            )
            self._cond.notify_all()

    @contextmanager
    def slot(self):
        """Hold a request slot for the duration of the block."""
        self.wait_for_next_request()
        try:
            yield
        finally:
            self.complete_request()

    def get_stats(self) -> dict:
        with self._cond:
            self._cleanup_history(time.monotonic())
            return {
                "active_requests": self._active_requests,
                "queue_length": len(self._waiters),
                "recent_requests": len(self._history),
                "config": dataclasses.asdict(self.config),
            }

    def update_config(self, **changes) -> None:
        with self._cond:
            self.config = dataclasses.replace(self.config, **changes)
            logger.info("Rate limiter configuration updated", extra={"limiter_config": dataclasses.asdict(self.config)})
            self._cond.notify_all()

    def reset(self) -> None:
        """Forget request history and in-flight counts.

        Threads already waiting stay queued and are re-evaluated.
        """
        with self._cond:
            self._last_request_time = None
            self._active_requests = 0
            self._history.clear()
            self._cond.notify_all()
        logger.info("Rate limiter reset")

    @staticmethod
    def add_jitter(delay: float, jitter_percent: float = 0.1) -> float:
        jitter = delay * jitter_percent * random.uniform(-1.0, 1.0)
        return max(0.0, delay + jitter)

    @staticmethod
    def get_adaptive_delay(base_delay: float, success_rate: float) -> float:
        """Back off when recent requests to a site have been failing."""
        if success_rate < 0.5:
            return base_delay * 2
        if success_rate < 0.7:
            return base_delay * 1.5
        return base_delay


HIGH_TRAFFIC_SITES = ["allrecipes.com", "foodnetwork.com", "food.com", "epicurious.com"]
MEDIUM_TRAFFIC_SITES = ["bonappetit.com", "seriouseats.com", "tasty.co", "delish.com"]

HIGH_TRAFFIC_CONFIG = RateLimiterConfig(min_delay=3.0, max_concurrent=1, burst_limit=3)
MEDIUM_TRAFFIC_CONFIG = RateLimiterConfig(min_delay=2.0, max_concurrent=2, burst_limit=5)
DEFAULT_SITE_CONFIG = RateLimiterConfig(min_delay=1.5, max_concurrent=2, burst_limit=7)


class DomainRateLimiter:
    """Lazily created per-domain limiters, tuned by how aggressive the site is."""

    def __init__(self):
        self._limiters: dict[str, RequestRateLimiter] = {}
        self._lock = threading.Lock()

    @staticmethod
    def config_for(domain: str) -> RateLimiterConfig:
        if any(site in domain for site in HIGH_TRAFFIC_SITES):
            return HIGH_TRAFFIC_CONFIG
        if any(site in domain for site in MEDIUM_TRAFFIC_SITES):
            return MEDIUM_TRAFFIC_CONFIG
        return DEFAULT_SITE_CONFIG

    def get_limiter(self, domain: str) -> RequestRateLimiter:
        with self._lock:
            limiter = self._limiters.get(domain)
            if limiter is None:
                limiter = RequestRateLimiter(self.config_for(domain))
                self._limiters[domain] = limiter
                logger.info("Created rate limiter for domain", extra={"domain": domain})
            return limiter

    def get_all_stats(self) -> dict[str, dict]:
        with self._lock:
            limiters = dict(self._limiters)
        return {domain: limiter.get_stats() for domain, limiter in limiters.items()}


# Bounds how many pages are being parsed at once across all sites
global_rate_limiter = RequestRateLimiter(
    RateLimiterConfig(min_delay=0.0, max_concurrent=config.MAX_CONCURRENT_PARSERS, burst_limit=60, burst_window=60.0)
)
domain_rate_limiter = DomainRateLimiter()
