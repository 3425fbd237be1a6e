"""
Redis-backed ledger store.

Maps the LedgerStore primitives one-to-one onto Redis commands:
plain keys for records, a sorted set for the recency index and INCR for the
lifetime counter. Redis provides the per-command atomicity the ledger relies on.
"""
import logging
from contextlib import contextmanager
from typing import List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from agentskan.domain.exceptions import PersistenceUnavailableException

logger = logging.getLogger(__name__)


@contextmanager
def _backend_errors(operation: str):
    try:
        yield
    except (RedisError, OSError) as e:
        raise PersistenceUnavailableException(f"Redis {operation} failed: {e}") from e


class RedisLedgerStore:

    def __init__(self, url: Optional[str] = None, client: Optional[aioredis.Redis] = None):
        if client is None and not url:
            raise ValueError("Either a Redis URL or a client is required.")
        self._redis: aioredis.Redis = client or aioredis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        with _backend_errors("GET"):
            return await self._redis.get(key)

    async def set(self, key: str, value: str) -> None:
        with _backend_errors("SET"):
            await self._redis.set(key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _backend_errors("DEL"):
            return await self._redis.delete(*keys)

    async def zadd(self, index: str, member: str, score: float) -> None:
        with _backend_errors("ZADD"):
            await self._redis.zadd(index, {member: score})

    async def zrange(self, index: str, start: int, stop: int, desc: bool = False) -> List[str]:
        with _backend_errors("ZRANGE"):
            return list(await self._redis.zrange(index, start, stop, desc=desc))

    async def zremrangebyrank(self, index: str, start: int, stop: int) -> int:
        with _backend_errors("ZREMRANGEBYRANK"):
            return await self._redis.zremrangebyrank(index, start, stop)

    async def zcard(self, index: str) -> int:
        with _backend_errors("ZCARD"):
            return await self._redis.zcard(index)

    async def incr(self, key: str) -> int:
        with _backend_errors("INCR"):
            return await self._redis.incr(key)

    async def get_counter(self, key: str) -> int:
        with _backend_errors("GET"):
            raw = await self._redis.get(key)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.warning(f"Counter {key} holds a non-integer value: {raw!r}")
            return 0

    async def close(self) -> None:
        await self._redis.aclose()
