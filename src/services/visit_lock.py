"""
Per-visit serialization of inbound survey turns.

Each turn is a read-modify-write of the stored conversation, so two
replies for the same visit must not be processed at once. A single API
process uses in-memory asyncio locks; with ``REDIS_URL`` set, a Redis
lock keyed by visit ID covers every worker sharing that Redis.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Protocol

import redis.asyncio as aioredis

from src.config import get_settings
from src.logging_config import get_logger

logger = get_logger(__name__)

VISIT_LOCK_KEY = "survey:visit-lock:{}"


class VisitLocks(Protocol):
    def hold(self, visit_id: str) -> AbstractAsyncContextManager[None]:
        ...


class LocalVisitLocks:
    """asyncio.Lock per visit ID, for a single process."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, visit_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(visit_id, asyncio.Lock())
        self._holders[visit_id] = self._holders.get(visit_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[visit_id] -= 1
            if self._holders[visit_id] == 0:
                del self._holders[visit_id]
                del self._locks[visit_id]

    def __len__(self) -> int:
        return len(self._locks)


class RedisVisitLocks:
    """Redis lock per visit ID, shared by every process using the same Redis."""

    def __init__(self, redis_url: str, timeout: int) -> None:
        self._redis = aioredis.from_url(redis_url, decode_responses=True)
        self._timeout = timeout

    @asynccontextmanager
    async def hold(self, visit_id: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            VISIT_LOCK_KEY.format(visit_id),
            timeout=self._timeout,
            blocking_timeout=self._timeout,
        )
        async with lock:
            yield

    async def close(self) -> None:
        await self._redis.close()


def build_visit_locks() -> LocalVisitLocks | RedisVisitLocks:
    settings = get_settings()
    if settings.redis_url:
        logger.info("visit_locks_redis", url=settings.redis_url)
        return RedisVisitLocks(settings.redis_url, settings.visit_lock_timeout_seconds)
    return LocalVisitLocks()
