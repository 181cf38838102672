"""
Redis-based Rate Limiter using Token Bucket Algorithm.

Supports per-client rate limiting with separate scopes:
- ai: learning path generation and market insights
- api: authentication endpoints
Uses Redis for distributed state across multiple backend instances.
"""

import time
import redis.asyncio as redis
from typing import Optional, Tuple
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting scopes."""
    ai_limit: int = 5              # requests per ai window
    ai_window_seconds: int = 60    # 1 minute window
    api_limit: int = 50            # requests per api window
    api_window_seconds: int = 900  # 15 minute window


class RateLimiter:
    """
    Token Bucket Rate Limiter backed by Redis.

    Keys used:
    - rate_limit:{scope}:{client_id}:tokens  → remaining tokens
    - rate_limit:{scope}:{client_id}:last    → last request timestamp
    """

    def __init__(
        self,
        redis_url: str,
        config: Optional[RateLimitConfig] = None,
        client: Optional[redis.Redis] = None
    ):
        self.redis_url = redis_url
        self.config = config or RateLimitConfig()
        self._client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Initialize Redis connection."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        # Test connection
        await self._client.ping()
        logger.info("Rate limiter connected to Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_limits_for_scope(self, scope: str) -> Tuple[int, int]:
        """Get (limit, window_seconds) for a scope."""
        if scope == "ai":
            return self.config.ai_limit, self.config.ai_window_seconds
        return self.config.api_limit, self.config.api_window_seconds

    @staticmethod
    def _keys(client_id: str, scope: str) -> Tuple[str, str]:
        return (
            f"rate_limit:{scope}:{client_id}:tokens",
            f"rate_limit:{scope}:{client_id}:last",
        )

    async def _current_tokens(self, client_id: str, scope: str, now: float) -> float:
        limit, window = self._get_limits_for_scope(scope)
        tokens_key, last_key = self._keys(client_id, scope)

        pipe = self._client.pipeline()
        pipe.get(tokens_key)
        pipe.get(last_key)
        results = await pipe.execute()

        current_tokens = float(results[0]) if results[0] else float(limit)
        last_time = float(results[1]) if results[1] else now

        # Gradual refill
        time_passed = max(0.0, now - last_time)
        return min(limit, current_tokens + time_passed * (limit / window))

    async def check_rate_limit(
        self,
        client_id: str,
        scope: str = "ai"
    ) -> Tuple[bool, int, int]:
        """
        Check if a request is allowed under the rate limit.

        Args:
            client_id: User id or client address
            scope: 'ai' or 'api'

        Returns:
            Tuple of (allowed, remaining_tokens, reset_in_seconds)
        """
        if not self._client:
            raise RuntimeError("Rate limiter not connected. Call connect() first.")

        limit, window = self._get_limits_for_scope(scope)
        now = time.time()
        new_tokens = await self._current_tokens(client_id, scope, now)

        if new_tokens >= 1:
            new_tokens -= 1
            allowed = True
            reset_in = 0
        else:
            allowed = False
            reset_in = max(1, int((1 - new_tokens) * (window / limit)))

        tokens_key, last_key = self._keys(client_id, scope)
        pipe = self._client.pipeline()
        pipe.set(tokens_key, str(new_tokens), ex=window * 2)
        pipe.set(last_key, str(now), ex=window * 2)
        await pipe.execute()

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {client_id} (scope={scope}, limit={limit}/{window}s)"
            )

        return allowed, max(0, int(new_tokens)), reset_in

    async def get_quota_status(
        self,
        client_id: str,
        scope: str = "ai"
    ) -> dict:
        """
        Get current quota status for a client.

        Returns dict with:
        - remaining: tokens left
        - limit: max tokens per window
        - reset_in_seconds: seconds until the bucket is full again
        """
        if not self._client:
            raise RuntimeError("Rate limiter not connected")

        limit, window = self._get_limits_for_scope(scope)
        current = await self._current_tokens(client_id, scope, time.time())

        tokens_needed = limit - current
        reset_in = int(tokens_needed * (window / limit)) if tokens_needed > 0 else 0

        return {
            "remaining": max(0, int(current)),
            "limit": limit,
            "window_seconds": window,
            "reset_in_seconds": reset_in,
            "scope": scope
        }

    async def reset_client(self, client_id: str, scope: str = "ai") -> None:
        """Reset rate limit for a client (admin function)."""
        if not self._client:
            raise RuntimeError("Rate limiter not connected")

        await self._client.delete(*self._keys(client_id, scope))
        logger.info(f"Reset rate limit for {client_id} (scope={scope})")


# Global instance (initialized on startup)
rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    if rate_limiter is None:
        raise RuntimeError("Rate limiter not initialized")
    return rate_limiter


async def init_rate_limiter(redis_url: str, config: Optional[RateLimitConfig] = None) -> RateLimiter:
    """Initialize the global rate limiter."""
    global rate_limiter
    limiter = RateLimiter(redis_url, config)
    await limiter.connect()
    rate_limiter = limiter
    return rate_limiter


async def close_rate_limiter() -> None:
    """Close the global rate limiter."""
    global rate_limiter
    if rate_limiter:
        await rate_limiter.close()
        rate_limiter = None
