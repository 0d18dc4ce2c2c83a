"""Read-through cache for computed progress stats.

Keys are ``stats:{user_id}:{question_set_id}`` for per-set stats and
``stats:{user_id}:*all*`` for the all-sets view.  Every committed write
for a user calls ``invalidate_user`` from the ingestion commit hook, and
each entry also carries a TTL so a missed invalidation heals itself.

A reader can finish computing after a write has already invalidated the
user.  To keep it from caching what it read before that write, each
user has a generation counter: ``invalidate_user`` bumps it, readers
tag entries with the generation they saw before computing, and an entry
whose tag is not the current generation is a miss.

Cache trouble never fails a request: Redis errors are logged and treated
as a miss.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Protocol, runtime_checkable

from redis.exceptions import RedisError

from quiz_progress.db.redis import redis_pool
from quiz_progress.models.progress import ProgressStats

logger = logging.getLogger(__name__)

ALL_SETS = "*all*"

# Outlives any entry TTL, so a counter that expires and restarts at 0
# cannot revive an entry tagged with an old 0.
GENERATION_TTL_SECONDS = 86400


def stats_key(user_id: str, question_set_id: str | None = None) -> str:
    return f"stats:{user_id}:{question_set_id or ALL_SETS}"


def user_pattern(user_id: str) -> str:
    return f"stats:{user_id}:*"


def generation_key(user_id: str) -> str:
    return f"statsgen:{user_id}"


def encode_stats(stats: ProgressStats, generation: int = 0) -> str:
    data = asdict(stats)
    if stats.last_activity is not None:
        data["last_activity"] = stats.last_activity.isoformat()
    return json.dumps({"generation": generation, "stats": data})


def decode_stats(raw: str) -> tuple[ProgressStats, int]:
    """Returns the stats and the generation they were computed under."""
    entry = json.loads(raw)
    data = entry["stats"]
    if data.get("last_activity"):
        data["last_activity"] = datetime.fromisoformat(data["last_activity"])
    return ProgressStats(**data), entry["generation"]


@runtime_checkable
class StatsCache(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g. 'stats:u1:*')."""
        ...

    async def generation(self, user_id: str) -> int | None:
        """Current generation for the user, or None if it cannot be read."""
        ...

    async def invalidate_user(self, user_id: str) -> None:
        """Bump the user's generation, then drop their entries."""
        ...


class InMemoryStatsCache:
    """In-memory cache for dev and tests, no TTL enforcement.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._generations: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]

    async def generation(self, user_id: str) -> int | None:
        return self._generations.get(user_id, 0)

    async def invalidate_user(self, user_id: str) -> None:
        self._generations[user_id] = self._generations.get(user_id, 0) + 1
        await self.delete_pattern(user_pattern(user_id))

    def clear(self) -> None:
        self._store.clear()
        self._generations.clear()


class RedisStatsCache:
    """Redis-backed cache shared by every API instance."""

    # Namespaced apart from the pub/sub channels on the same server.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(f"{self._PREFIX}{key}")
        except RedisError:
            logger.warning("Stats cache read failed for %s", key, exc_info=True)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except RedisError:
            logger.warning("Stats cache write failed for %s", key, exc_info=True)

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN rather than KEYS: cursor-based, never blocks the server.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break

    async def generation(self, user_id: str) -> int | None:
        try:
            raw = await self._redis.get(f"{self._PREFIX}{generation_key(user_id)}")
        except RedisError:
            logger.warning("Stats generation read failed for %s", user_id, exc_info=True)
            return None
        return int(raw) if raw is not None else 0

    async def invalidate_user(self, user_id: str) -> None:
        key = f"{self._PREFIX}{generation_key(user_id)}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, GENERATION_TTL_SECONDS)
            await pipe.execute()
        await self.delete_pattern(user_pattern(user_id))


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    stats_cache: StatsCache = RedisStatsCache(redis_pool)
else:
    stats_cache = InMemoryStatsCache()
