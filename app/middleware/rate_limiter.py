"""
Rate limiting middleware for the API.

Fixed-window counters in Redis, one per client address and budget:
- every request under the API prefix counts against the general budget
- write requests (POST/PUT/PATCH/DELETE) also count against a smaller
  write budget

The window starts with the first request of a client and lasts
RATE_LIMIT_WINDOW_SECONDS. If Redis is unavailable requests are allowed
and the failure is logged.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

import redis.asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import RateLimitExceeded


logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset(["POST", "PUT", "PATCH", "DELETE"])


@dataclass
class RateLimitConfig:
    """Request budget for one window."""

    requests_per_window: int = 100
    window_seconds: int = 15 * 60
    key_prefix: str = "ratelimit"


def default_config() -> RateLimitConfig:
    return RateLimitConfig(
        requests_per_window=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        key_prefix="ratelimit:api",
    )


def write_config() -> RateLimitConfig:
    return RateLimitConfig(
        requests_per_window=settings.RATE_LIMIT_WRITE_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        key_prefix="ratelimit:write",
    )


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_after: int
    limit: int


class RateLimiter:
    """Fixed-window rate limiter backed by Redis INCR/TTL/EXPIRE."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        config: Optional[RateLimitConfig] = None,
    ):
        self._redis = redis_client
        self._config = config or RateLimitConfig()

    def _build_key(self, identifier: str, config: RateLimitConfig) -> str:
        return f"{config.key_prefix}:{identifier}"

    async def check_rate_limit(
        self,
        identifier: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Count one request for ``identifier`` and report whether it is allowed."""
        config = config or self._config
        key = self._build_key(identifier, config)

        try:
            pipe = self._redis.pipeline()
            pipe.incr(key)
            pipe.ttl(key)
            current_count, ttl = await pipe.execute()

            # First hit of a window (or a key that lost its TTL)
            if ttl is None or ttl < 0:
                await self._redis.expire(key, config.window_seconds)
                ttl = config.window_seconds

            return RateLimitResult(
                allowed=current_count <= config.requests_per_window,
                remaining=max(0, config.requests_per_window - current_count),
                reset_after=ttl,
                limit=config.requests_per_window,
            )

        except Exception as e:
            logger.error(
                "Rate limit Redis error (allowing request): %s", e,
                extra={"identifier": identifier, "key": key},
            )
            return RateLimitResult(
                allowed=True,
                remaining=-1,
                reset_after=config.window_seconds,
                limit=config.requests_per_window,
            )


_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """Lazily create the process-wide limiter and its Redis client."""
    global _rate_limiter

    if _rate_limiter is None:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        _rate_limiter = RateLimiter(redis_client=redis_client, config=default_config())

    return _rate_limiter


async def close_rate_limiter() -> None:
    global _rate_limiter

    if _rate_limiter is not None:
        await _rate_limiter._redis.aclose()
        _rate_limiter = None


def get_client_ip(request: Request) -> str:
    """X-Real-IP, then the first X-Forwarded-For entry, then the peer address."""
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


def _rate_limit_headers(result: RateLimitResult) -> dict:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_after),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the general budget to every API request and the write budget
    to write requests. Rejected requests get a 429 with Retry-After.

    Usage:
        app.add_middleware(RateLimitMiddleware)
    """

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self._limiter = limiter

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED or not request.url.path.startswith(settings.API_PREFIX):
            return await call_next(request)

        identifier = get_client_ip(request)
        limiter = self._limiter or await get_rate_limiter()

        budgets: List[RateLimitConfig] = [default_config()]
        if request.method in WRITE_METHODS:
            budgets.append(write_config())

        results = []
        for config in budgets:
            result = await limiter.check_rate_limit(identifier, config)
            if not result.allowed:
                logger.warning(
                    "Rate limit exceeded for %s on %s %s",
                    identifier, request.method, request.url.path
                )
                exc = RateLimitExceeded(retry_after=result.reset_after, limit=result.limit)
                headers = _rate_limit_headers(result)
                headers["Retry-After"] = str(result.reset_after)
                return JSONResponse(
                    status_code=exc.status_code,
                    content=exc.to_dict(),
                    headers=headers,
                )
            results.append(result)

        response = await call_next(request)

        # Report the tighter of the budgets that applied; none if Redis was unreachable
        if all(r.remaining >= 0 for r in results):
            tightest = min(results, key=lambda r: r.remaining)
            response.headers.update(_rate_limit_headers(tightest))
        return response
