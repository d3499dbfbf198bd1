"""
Fixed-window rate limiting for write endpoints.

Counters live in Redis under `rl:{table}:{endpoint}:{user}:{window}` and are
bumped with INCR, so concurrent requests never lose an increment. The key
expires with its window.
"""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

import redis.asyncio as redis
import structlog

from tenantgate.core.errors import OrgError
from tenantgate_shared.schemas.common import ErrorCode

log = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitConfig:
    max: int
    window_ms: int

    def __post_init__(self):
        if self.max < 1 or self.window_ms < 1:
            raise ValueError("rate limit max and window_ms must be positive")


class RateLimiter:
    """Counts operations per (identity, endpoint) in fixed windows."""

    def __init__(
        self,
        get_client: Callable[[], Awaitable[redis.Redis]],
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._get_client = get_client
        self.enabled = enabled
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def hit(
        self, config: RateLimitConfig, table: str, endpoint: str, user_id: uuid.UUID
    ) -> int:
        """Count one operation; returns the remaining budget or raises RATE_LIMITED."""
        if not self.enabled:
            return config.max

        now = self._now_ms()
        window = now // config.window_ms
        key = f"rl:{table}:{endpoint}:{user_id}:{window}"

        client = await self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.pexpire(key, config.window_ms, nx=True)
            count, _ = await pipe.execute()

        if count > config.max:
            reset_ms = (window + 1) * config.window_ms - now
            retry_after = max(1, math.ceil(reset_ms / 1000))
            log.warning(
                "rate_limit.exceeded",
                table=table,
                endpoint=endpoint,
                user_id=str(user_id),
                limit=config.max,
                retry_after=retry_after,
            )
            raise OrgError(
                ErrorCode.RATE_LIMITED,
                headers={"Retry-After": str(retry_after)},
                retry_after=retry_after,
                limit=config.max,
                remaining=0,
            )
        return config.max - count
