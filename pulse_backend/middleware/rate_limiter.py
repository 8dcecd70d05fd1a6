# pulse_backend/middleware/rate_limiter.py
"""
Rate limiting.

- FixedWindowRateLimiter: per-identity fixed-window counter used inside the
  billing endpoints and by the category middleware.
- RateLimitMiddleware: per-user / per-IP limits by endpoint category.

Counters live in process memory. In a horizontally scaled deployment each
instance enforces its own budget.
"""
import math
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..utils.clock import Clock, now_ms
from ..utils.logger import log_structured


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_ms: int
    limit: int

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.reset_in_ms / 1000))


@dataclass
class _Window:
    count: int
    reset_time: int


class FixedWindowRateLimiter:
    """In-memory fixed-window limiter keyed by caller identity."""

    def __init__(self, max_requests: int, window_ms: int, gc_threshold: int = 1000,
                 clock: Clock = now_ms, name: str = "default"):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.gc_threshold = gc_threshold
        self.name = name
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def _cleanup_expired(self, now: int) -> int:
        """Remove windows whose reset time has passed to bound memory."""
        expired = [key for key, window in self._windows.items() if now >= window.reset_time]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def check_rate_limit(self, identity: str) -> RateLimitResult:
        """
        Count one request for identity.

        Returns:
            RateLimitResult; allowed=False is a normal outcome the caller
            turns into a 429 response.
        """
        with self._lock:
            now = self._clock()

            if len(self._windows) > self.gc_threshold:
                self._cleanup_expired(now)

            window = self._windows.get(identity)
            if window is None or now >= window.reset_time:
                self._windows[identity] = _Window(count=1, reset_time=now + self.window_ms)
                return RateLimitResult(
                    allowed=True,
                    remaining=self.max_requests - 1,
                    reset_in_ms=self.window_ms,
                    limit=self.max_requests,
                )

            if window.count >= self.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_in_ms=window.reset_time - now,
                    limit=self.max_requests,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - window.count,
                reset_in_ms=window.reset_time - now,
                limit=self.max_requests,
            )

    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """X-RateLimit-* headers; reset is seconds until the window resets."""
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": str(math.ceil(result.reset_in_ms / 1000)),
    }


def rate_limit_exceeded_response(
    result: RateLimitResult,
    message: str = "Rate limit exceeded. Please try again later.",
) -> JSONResponse:
    """Build the 429 response for a rejected request."""
    retry_after = result.retry_after_seconds
    headers = rate_limit_headers(result)
    headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=429,
        content={"error": message, "retryAfter": retry_after},
        headers=headers,
    )


def get_rate_limit_key(request: Request, user_id: Optional[str] = None) -> str:
    """user:<id> when authenticated, otherwise ip:<address>."""
    if user_id:
        return f"user:{user_id}"

    cf_connecting_ip = request.headers.get("cf-connecting-ip")
    real_ip = request.headers.get("x-real-ip")
    forwarded_for = request.headers.get("x-forwarded-for")

    ip_address = cf_connecting_ip or real_ip
    if not ip_address and forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    if not ip_address:
        ip_address = request.client.host if request.client else "unknown"
    return f"ip:{ip_address}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Category rate limiting for the API.
    Market data routes get their own budget; everything else shares "general".
    """

    EXEMPT_PATHS = ("/health", "/api/subscriptions")
    # Read-only health surface; provider event reports stay limited
    EXEMPT_READ_PATHS = ("/api/system/providers", "/api/system/providers/stream")

    def __init__(self, app, limiters: Dict[str, FixedWindowRateLimiter]):
        super().__init__(app)
        if "general" not in limiters:
            raise ValueError("RateLimitMiddleware needs a 'general' limiter")
        self.limiters = limiters

    def _category(self, path: str) -> str:
        if path.startswith("/api/market") and "market_data" in self.limiters:
            return "market_data"
        return "general"

    def _is_exempt(self, request: Request) -> bool:
        """CORS preflight, health checks, billing (own limiters) and health reads."""
        path = request.url.path
        if request.method == "OPTIONS" or path.startswith(self.EXEMPT_PATHS):
            return True
        return request.method == "GET" and path.rstrip("/") in self.EXEMPT_READ_PATHS

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request):
            return await call_next(request)

        category = self._category(request.url.path)
        user_id = getattr(request.state, "user_id", None)
        key = get_rate_limit_key(request, user_id)
        result = self.limiters[category].check_rate_limit(f"{category}:{key}")

        if not result.allowed:
            log_structured("rate_limit_exceeded", {"key": key, "category": category,
                                                   "reset_in_ms": result.reset_in_ms}, level="WARNING")
            return rate_limit_exceeded_response(
                result, f"Rate limit exceeded ({category}). Please try again later."
            )

        response = await call_next(request)
        for header, value in rate_limit_headers(result).items():
            response.headers[header] = value
        return response
