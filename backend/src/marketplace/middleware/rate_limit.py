"""Rate limiting middleware using a Redis sliding window."""

import hashlib
import logging
import random
import time
from typing import Callable

from fastapi import Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from marketplace.core.redis import get_redis

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP and per-token request limits, one atomic Lua call per check.

    Requests pass through untouched while Redis is unreachable.
    """

    RATE_LIMIT_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local request_id = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, 0, now - window)

    if redis.call('ZCARD', key) < limit then
        redis.call('ZADD', key, now, request_id)
        redis.call('EXPIRE', key, window + 1)
        return {1, 0}
    end

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local retry_after = 1
    if oldest and #oldest >= 2 then
        retry_after = math.max(1, math.ceil(oldest[2] + window - now))
    end
    return {0, retry_after}
    """

    # Scrapes and health probes are never limited
    EXEMPT_PATHS = ("/health", "/metrics")

    def __init__(self, app, user_limit: int = 10, ip_limit: int = 100):
        super().__init__(app)
        self.user_limit = user_limit
        self.ip_limit = ip_limit
        self._rate_limit_script = None

    def _get_rate_limit_script(self, redis):
        if self._rate_limit_script is None:
            self._rate_limit_script = redis.register_script(self.RATE_LIMIT_SCRIPT)
        return self._rate_limit_script

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        checks = [(f"ratelimit:ip:{client_ip}", self.ip_limit, "Too many requests from this IP")]

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token_hash = hashlib.sha256(auth_header[7:].encode()).hexdigest()[:16]
            checks.append(
                (f"ratelimit:user:{token_hash}", self.user_limit, "Too many requests for this user")
            )

        try:
            redis = await get_redis()
            for key, limit, message in checks:
                allowed, retry_after = await self._check_rate_limit(redis, key, limit)
                if not allowed:
                    return JSONResponse(
                        status_code=429,
                        content={"detail": {"code": "RATE_LIMITED", "message": message}},
                        headers={"Retry-After": str(retry_after)},
                    )
        except RedisError as e:
            logger.warning(f"Rate limiting skipped, Redis unavailable: {e}")

        return await call_next(request)

    async def _check_rate_limit(
        self, redis, key: str, limit: int, window: int = 1
    ) -> tuple[bool, int]:
        """Check and count one request against ``key``.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        now = time.time()
        request_id = f"{now}:{random.randint(0, 999999)}"

        script = self._get_rate_limit_script(redis)
        result = await script(keys=[key], args=[now, window, limit, request_id])
        return bool(result[0]), int(result[1])
