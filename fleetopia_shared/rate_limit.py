import os
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

try:
    import redis  # type: ignore
except ImportError:  # pragma: no cover
    redis = None  # type: ignore


WINDOW_SECONDS = 60
# Paths that never count against a client's budget
UNLIMITED_PATHS = ("/health", "/metrics")


def _int_override(name: str, fallback: int) -> int:
    try:
        return int(os.getenv(name, str(fallback)))
    except ValueError:
        return fallback


def _rate_limited(retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": {"code": "rate_limited", "message": "Too many requests", "details": {"retry_after": retry_after}}},
        headers={"Retry-After": str(retry_after)},
    )


class _LimiterBase(BaseHTTPMiddleware):
    """Shared budget rules: tighter on /auth, boosted for bearer-token clients."""

    def __init__(self, app, limit_per_minute: int = 60, auth_boost: int = 2, prefix: str = "rl", exempt_otp: bool = True):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute
        self.auth_boost = auth_boost
        self.prefix = prefix
        self.exempt_otp = exempt_otp

    def _key(self, request: Request) -> str:
        auth = request.headers.get("authorization")
        if auth:
            return f"{self.prefix}:token:{auth[-24:]}"
        client = request.client.host if request.client else "unknown"
        return f"{self.prefix}:ip:{client}"

    def _exempt(self, request: Request) -> bool:
        path = request.url.path
        if path in UNLIMITED_PATHS:
            return True
        if not self.exempt_otp or os.getenv("ENV", "dev").lower() != "dev":
            return False
        return path.startswith("/auth/") and os.getenv("RL_EXEMPT_OTP", "true").lower() == "true"

    def _budget(self, request: Request) -> int:
        base = _int_override("RL_LIMIT_PER_MINUTE_OVERRIDE", self.limit_per_minute)
        if request.url.path.startswith("/auth/"):
            base = min(base, 20)
        if request.headers.get("authorization"):
            base *= _int_override("RL_AUTH_BOOST_OVERRIDE", self.auth_boost)
        return base


class SlidingWindowLimiter(_LimiterBase):
    """Per-process limiter; fine for a single dev instance only."""

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self.store: Dict[str, Deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if self._exempt(request) or os.getenv("RL_TEST_DISABLE", "false").lower() == "true":
            return await call_next(request)
        now = time.time()
        dq = self.store[self._key(request)]
        while dq and now - dq[0] > WINDOW_SECONDS:
            dq.popleft()
        if len(dq) >= self._budget(request):
            return _rate_limited(max(1, int(WINDOW_SECONDS - (now - dq[0]))))
        dq.append(now)
        return await call_next(request)


class RedisRateLimiter(_LimiterBase):
    """Fixed one-minute windows shared across instances; fails open without Redis."""

    def __init__(self, app, redis_url: str, **kwargs):
        super().__init__(app, **kwargs)
        self.redis = None
        if redis is not None:
            try:
                self.redis = redis.from_url(redis_url, decode_responses=True)
            except (ValueError, redis.RedisError):
                self.redis = None

    async def dispatch(self, request: Request, call_next):
        if self._exempt(request) or self.redis is None:
            return await call_next(request)
        now = int(time.time())
        key = f"{self._key(request)}:{now // WINDOW_SECONDS}"
        try:
            count = self.redis.incr(key)
            if count == 1:
                self.redis.expire(key, WINDOW_SECONDS + 10)
        except redis.RedisError:
            return await call_next(request)
        if count > self._budget(request):
            return _rate_limited(WINDOW_SECONDS - (now % WINDOW_SECONDS))
        return await call_next(request)
