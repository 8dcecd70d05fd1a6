# pulse_backend/tests/unit/test_rate_limiter.py
"""Unit tests for the fixed-window rate limiter."""
import json

import pytest
from starlette.requests import Request

from pulse_backend.middleware.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitResult,
    get_rate_limit_key,
    rate_limit_exceeded_response,
    rate_limit_headers,
)


def make_request(headers=None, client=("10.0.0.1", 51000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestFixedWindowRateLimiter:
    """Test window counting."""

    def test_first_request_opens_window(self, limiter):
        result = limiter.check_rate_limit("user:1")
        assert result == RateLimitResult(allowed=True, remaining=2, reset_in_ms=60_000, limit=3)

    def test_limit_exhausted(self, limiter, clock):
        """The request after max_requests is rejected until the window resets."""
        for expected_remaining in (2, 1, 0):
            assert limiter.check_rate_limit("user:1").remaining == expected_remaining
        clock.advance(10_000)
        result = limiter.check_rate_limit("user:1")
        assert result.allowed is False
        assert result.remaining == 0
        assert result.reset_in_ms == 50_000

    def test_five_per_minute(self, clock):
        """Checkout budget: remaining counts down 4..0, the sixth call waits for the window."""
        limiter = FixedWindowRateLimiter(max_requests=5, window_ms=60_000, clock=clock)
        assert [limiter.check_rate_limit("user:1").remaining for _ in range(5)] == [4, 3, 2, 1, 0]
        clock.advance(1)
        sixth = limiter.check_rate_limit("user:1")
        assert sixth.allowed is False
        assert 0 < sixth.reset_in_ms <= 60_000
        clock.advance(60_000)
        assert limiter.check_rate_limit("user:1").remaining == 4

    def test_rejected_requests_do_not_extend_window(self, limiter, clock):
        for _ in range(5):
            limiter.check_rate_limit("user:1")
        clock.advance(59_999)
        assert limiter.check_rate_limit("user:1").allowed is False
        clock.advance(1)
        result = limiter.check_rate_limit("user:1")
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_in_ms == 60_000

    def test_identities_are_independent(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("user:1")
        assert limiter.check_rate_limit("user:1").allowed is False
        assert limiter.check_rate_limit("user:2").allowed is True

    def test_expired_windows_collected_past_threshold(self, clock):
        """Past gc_threshold tracked identities, expired windows are dropped."""
        limiter = FixedWindowRateLimiter(max_requests=1, window_ms=1_000, gc_threshold=2, clock=clock)
        for identity in ("a", "b", "c"):
            limiter.check_rate_limit(identity)
        assert limiter.tracked_identities() == 3
        clock.advance(1_000)
        limiter.check_rate_limit("d")
        assert limiter.tracked_identities() == 1

    def test_live_windows_survive_collection(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=1, window_ms=1_000, gc_threshold=2, clock=clock)
        for identity in ("a", "b", "c"):
            limiter.check_rate_limit(identity)
        limiter.check_rate_limit("d")
        assert limiter.tracked_identities() == 4
        assert limiter.check_rate_limit("a").allowed is False

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("user:1")
        limiter.reset()
        assert limiter.check_rate_limit("user:1").allowed is True

    @pytest.mark.parametrize("max_requests,window_ms", [(0, 1_000), (1, 0)])
    def test_invalid_configuration(self, max_requests, window_ms):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(max_requests=max_requests, window_ms=window_ms)


class TestRateLimitResponses:
    """Test headers and 429 bodies."""

    def test_retry_after_is_at_least_one_second(self):
        assert RateLimitResult(False, 0, 0, 5).retry_after_seconds == 1
        assert RateLimitResult(False, 0, 1_001, 5).retry_after_seconds == 2

    def test_headers(self):
        headers = rate_limit_headers(RateLimitResult(True, 4, 1_500, 5))
        assert headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "2",
        }

    def test_exceeded_response(self):
        response = rate_limit_exceeded_response(RateLimitResult(False, 0, 42_300, 5))
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "43"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = json.loads(response.body)
        assert body["retryAfter"] == 43
        assert "Rate limit exceeded" in body["error"]


class TestRateLimitKey:
    """Test caller identification."""

    def test_authenticated_user_wins(self):
        request = make_request({"x-forwarded-for": "1.2.3.4"})
        assert get_rate_limit_key(request, "user-1") == "user:user-1"

    def test_cloudflare_header_first(self):
        request = make_request({"cf-connecting-ip": "9.9.9.9", "x-real-ip": "8.8.8.8"})
        assert get_rate_limit_key(request) == "ip:9.9.9.9"

    def test_real_ip_before_forwarded_for(self):
        request = make_request({"x-real-ip": "8.8.8.8", "x-forwarded-for": "1.2.3.4"})
        assert get_rate_limit_key(request) == "ip:8.8.8.8"

    def test_first_forwarded_for_address(self):
        request = make_request({"x-forwarded-for": "1.2.3.4, 10.0.0.2"})
        assert get_rate_limit_key(request) == "ip:1.2.3.4"

    def test_falls_back_to_client_host(self):
        assert get_rate_limit_key(make_request()) == "ip:10.0.0.1"

    def test_unknown_client(self):
        assert get_rate_limit_key(make_request(client=None)) == "ip:unknown"
