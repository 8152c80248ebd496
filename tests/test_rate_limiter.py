import threading
import time

import pytest

from mealmate.rate_limiter import (
    DEFAULT_SITE_CONFIG,
    HIGH_TRAFFIC_CONFIG,
    MEDIUM_TRAFFIC_CONFIG,
    DomainRateLimiter,
    RateLimiterConfig,
    RequestRateLimiter,
)


def _limiter(**overrides) -> RequestRateLimiter:
    settings = {"min_delay": 0.0, "max_concurrent": 5, "burst_limit": 100, "burst_window": 60.0}
    settings.update(overrides)
    return RequestRateLimiter(RateLimiterConfig(**settings))


class TestRequestRateLimiter:
    def test_min_delay_between_starts(self):
        limiter = _limiter(min_delay=0.1)

        start = time.monotonic()
        with limiter.slot():
            pass
        with limiter.slot():
            pass

        assert time.monotonic() - start >= 0.09

    def test_first_request_is_not_delayed(self):
        limiter = _limiter(min_delay=5.0)

        start = time.monotonic()
        limiter.wait_for_next_request()

        assert time.monotonic() - start < 1.0
        assert limiter.get_stats()["active_requests"] == 1

    def test_concurrency_limit_queues_requests(self):
        limiter = _limiter(max_concurrent=1)
        started = threading.Event()

        limiter.wait_for_next_request()

        def second_request():
            limiter.wait_for_next_request()
            started.set()

        worker = threading.Thread(target=second_request)
        worker.start()

        assert not started.wait(timeout=0.2)
        assert limiter.get_stats()["queue_length"] == 1

        limiter.complete_request()
        assert started.wait(timeout=2.0)
        worker.join(timeout=2.0)
        assert limiter.get_stats()["active_requests"] == 1

    def test_burst_window(self):
        limiter = _limiter(burst_limit=2, burst_window=0.3)

        start = time.monotonic()
        for _ in range(3):
            with limiter.slot():
                pass

        assert time.monotonic() - start >= 0.25

    def test_slot_released_on_error(self):
        limiter = _limiter()

        with pytest.raises(ValueError):
            with limiter.slot():
                raise ValueError("fetch failed")

        assert limiter.get_stats()["active_requests"] == 0

    def test_complete_request_never_goes_negative(self):
        limiter = _limiter()
        limiter.complete_request()
        assert limiter.get_stats()["active_requests"] == 0

    def test_stats(self):
        limiter = _limiter()
        with limiter.slot():
            stats = limiter.get_stats()

        assert stats["active_requests"] == 1
        assert stats["recent_requests"] == 1
        assert stats["queue_length"] == 0
        assert stats["config"]["max_concurrent"] == 5

    def test_update_config(self):
        limiter = _limiter()
        limiter.update_config(max_concurrent=1, min_delay=0.5)

        assert limiter.config.max_concurrent == 1
        assert limiter.config.min_delay == 0.5
        assert limiter.config.burst_limit == 100

    def test_reset(self):
        limiter = _limiter()
        limiter.wait_for_next_request()

        limiter.reset()

        stats = limiter.get_stats()
        assert stats["active_requests"] == 0
        assert stats["recent_requests"] == 0

    def test_add_jitter_stays_within_bounds(self):
        for _ in range(50):
            assert 0.9 <= RequestRateLimiter.add_jitter(1.0) <= 1.1

    def test_adaptive_delay(self):
        assert RequestRateLimiter.get_adaptive_delay(2.0, 0.4) == 4.0
        assert RequestRateLimiter.get_adaptive_delay(2.0, 0.6) == 3.0
        assert RequestRateLimiter.get_adaptive_delay(2.0, 0.9) == 2.0


class TestDomainRateLimiter:
    def test_config_by_site_traffic(self):
        assert DomainRateLimiter.config_for("allrecipes.com") == HIGH_TRAFFIC_CONFIG
        assert DomainRateLimiter.config_for("seriouseats.com") == MEDIUM_TRAFFIC_CONFIG
        assert DomainRateLimiter.config_for("myblog.example") == DEFAULT_SITE_CONFIG

    def test_one_limiter_per_domain(self):
        limiters = DomainRateLimiter()

        assert limiters.get_limiter("allrecipes.com") is limiters.get_limiter("allrecipes.com")
        assert limiters.get_limiter("allrecipes.com") is not limiters.get_limiter("tasty.co")

    def test_all_stats(self):
        limiters = DomainRateLimiter()
        limiters.get_limiter("tasty.co")

        stats = limiters.get_all_stats()

        assert list(stats) == ["tasty.co"]
        assert stats["tasty.co"]["config"]["min_delay"] == MEDIUM_TRAFFIC_CONFIG.min_delay
