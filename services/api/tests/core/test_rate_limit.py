"""Tests for token-bucket rate limiting."""

import pytest

from services.api.src.safesnap.core import rate_limit
from services.api.src.safesnap.core.rate_limit import (
    GENERAL_API,
    LOGIN_ATTEMPTS,
    RateLimiter,
    RateLimitPolicy,
    TokenBucket,
    per_minute,
)

FIVE_PER_MINUTE = RateLimitPolicy("TEST", 5, 5, 60)


class TestTokenBucket:
    def test_starts_full(self):
        bucket = TokenBucket(FIVE_PER_MINUTE, now=0.0)
        assert bucket.available(0.0) == 5

    def test_consume_takes_cost(self):
        bucket = TokenBucket(FIVE_PER_MINUTE, now=0.0)
        assert bucket.consume(3, 0.0) is True
        assert bucket.available(0.0) == 2

    def test_consume_more_than_available_fails_without_taking(self):
        bucket = TokenBucket(FIVE_PER_MINUTE, now=0.0)
        assert bucket.consume(6, 0.0) is False
        assert bucket.available(0.0) == 5

    def test_refill_is_per_full_period(self):
        bucket = TokenBucket(FIVE_PER_MINUTE, now=0.0)
        bucket.consume(5, 0.0)
        assert bucket.available(59.9) == 0
        assert bucket.available(60.0) == 5

    def test_refill_caps_at_capacity(self):
        bucket = TokenBucket(FIVE_PER_MINUTE, now=0.0)
        bucket.consume(1, 0.0)
        assert bucket.available(600.0) == 5

    def test_seconds_until_refill(self):
        bucket = TokenBucket(FIVE_PER_MINUTE, now=0.0)
        bucket.consume(5, 0.0)
        assert bucket.seconds_until_refill(20.0) == pytest.approx(40.0)


class TestRateLimiter:
    def test_capacity_then_denied(self, rate_limiter):
        results = [rate_limiter.is_allowed("k", FIVE_PER_MINUTE) for _ in range(6)]
        assert results == [True, True, True, True, True, False]

    def test_remaining_decreases_monotonically(self, rate_limiter):
        seen = []
        for _ in range(5):
            rate_limiter.is_allowed("k", FIVE_PER_MINUTE)
            seen.append(rate_limiter.remaining("k", FIVE_PER_MINUTE))
        assert seen == [4, 3, 2, 1, 0]

    def test_allowed_again_after_refill(self, rate_limiter, clock):
        for _ in range(5):
            rate_limiter.is_allowed("k", FIVE_PER_MINUTE)
        assert rate_limiter.is_allowed("k", FIVE_PER_MINUTE) is False

        clock.advance(60)
        assert rate_limiter.is_allowed("k", FIVE_PER_MINUTE) is True

    def test_keys_are_independent(self, rate_limiter):
        for _ in range(5):
            rate_limiter.is_allowed("a", FIVE_PER_MINUTE)
        assert rate_limiter.is_allowed("a", FIVE_PER_MINUTE) is False
        assert rate_limiter.is_allowed("b", FIVE_PER_MINUTE) is True

    def test_policies_are_independent_for_same_key(self, rate_limiter):
        for _ in range(5):
            rate_limiter.is_allowed("k", FIVE_PER_MINUTE)
        assert rate_limiter.is_allowed("k", GENERAL_API) is True

    def test_cost_consumes_multiple_tokens(self, rate_limiter):
        tokens = per_minute("TOKENS", 1000)
        assert rate_limiter.is_allowed("svc", tokens, cost=800) is True
        assert rate_limiter.is_allowed("svc", tokens, cost=300) is False
        assert rate_limiter.remaining("svc", tokens) == 200

    def test_time_until_refill_none_while_tokens_left(self, rate_limiter):
        assert rate_limiter.time_until_refill("k", FIVE_PER_MINUTE) is None

    def test_time_until_refill_when_empty(self, rate_limiter, clock):
        for _ in range(5):
            rate_limiter.is_allowed("k", FIVE_PER_MINUTE)
        clock.advance(15)
        assert rate_limiter.time_until_refill("k", FIVE_PER_MINUTE) == pytest.approx(45)

    def test_login_attempts_wait_full_window(self, rate_limiter, clock):
        for _ in range(5):
            assert rate_limiter.is_allowed("ip:1.2.3.4:login", LOGIN_ATTEMPTS)
        clock.advance(3 * 60)
        assert rate_limiter.is_allowed("ip:1.2.3.4:login", LOGIN_ATTEMPTS) is False
        clock.advance(12 * 60)
        assert rate_limiter.is_allowed("ip:1.2.3.4:login", LOGIN_ATTEMPTS) is True

    def test_clear_drops_all_buckets_for_key(self, rate_limiter):
        for _ in range(5):
            rate_limiter.is_allowed("k", FIVE_PER_MINUTE)
        rate_limiter.is_allowed("k", GENERAL_API)
        rate_limiter.is_allowed("other", GENERAL_API)

        assert rate_limiter.clear("k") == 2
        assert rate_limiter.remaining("k", FIVE_PER_MINUTE) == 5

    def test_idle_bucket_starts_fresh(self, clock):
        limiter = RateLimiter(idle_ttl_s=100, clock=clock)
        slow = RateLimitPolicy("SLOW", 1, 1, 10_000)
        assert limiter.is_allowed("k", slow) is True
        assert limiter.is_allowed("k", slow) is False

        clock.advance(101)
        assert limiter.is_allowed("k", slow) is True

    def test_cleanup_evicts_idle_buckets(self, clock):
        limiter = RateLimiter(idle_ttl_s=100, clock=clock)
        limiter.is_allowed("a", FIVE_PER_MINUTE)
        clock.advance(50)
        limiter.is_allowed("b", FIVE_PER_MINUTE)
        clock.advance(60)

        assert limiter.cleanup() == 1
        assert limiter.stats()["cached_buckets"] == 1

    def test_cache_is_bounded(self, clock):
        limiter = RateLimiter(max_buckets=3, clock=clock)
        for key in ("a", "b", "c", "d"):
            limiter.is_allowed(key, FIVE_PER_MINUTE)
        assert limiter.stats()["cached_buckets"] == 3

    def test_stats_lists_named_policies(self, rate_limiter):
        stats = rate_limiter.stats()
        assert stats["max_buckets"] == rate_limit.MAX_CACHED_BUCKETS
        assert stats["policies"]["INCIDENT_CREATION"]["capacity"] == 10
        assert stats["policies"]["VISION_API"]["refill_period_s"] == 3600


class TestKeys:
    def test_user_key(self):
        assert rate_limit.user_key("a@b.com", "openai") == "user:a@b.com:openai"

    def test_ip_key(self):
        assert rate_limit.ip_key("10.0.0.1", "api") == "ip:10.0.0.1:api"

    def test_per_minute(self):
        policy = per_minute("X", 20)
        assert (policy.capacity, policy.refill_tokens, policy.refill_period_s) == (20, 20, 60)
