import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Set, Tuple

import redis.asyncio as redis

from ..config.settings import TeamsSettings

logger = logging.getLogger(__name__)


class TagCache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, tags: Iterable[str], ttl: Optional[int] = None) -> None: ...

    async def invalidate_tags(self, tags: Iterable[str]) -> None: ...


async def remember(
    cache: TagCache,
    key: str,
    tags: Iterable[str],
    loader: Callable[[], Awaitable[Any]],
    ttl: Optional[int] = None,
) -> Any:
    cached = await cache.get(key)
    if cached is not None:
        return cached
    value = await loader()
    await cache.set(key, value, tags, ttl)
    return value


class InMemoryTagCache:
    def __init__(self, default_ttl: Optional[int] = None) -> None:
        self.default_ttl = default_ttl
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and expires < time.monotonic():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, tags: Iterable[str], ttl: Optional[int] = None) -> None:
        ttl = ttl if ttl is not None else self.default_ttl
        async with self._lock:
            self._entries[key] = (value, time.monotonic() + ttl if ttl else None)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    async def invalidate_tags(self, tags: Iterable[str]) -> None:
        async with self._lock:
            for tag in tags:
                for key in self._tags.pop(tag, set()):
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTagCache:
    """JSON values under ``{prefix}:key:{key}``; each tag is a Redis set of keys."""

    def __init__(self, settings: TeamsSettings, client: Optional[redis.Redis] = None):
        self.prefix = settings.CACHE_PREFIX
        self.default_ttl = settings.CACHE_TTL_SECONDS
        self.url = settings.REDIS_URL
        self._client = client
        self._lock = asyncio.Lock()

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = redis.from_url(self.url, encoding="utf-8", decode_responses=True)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}:key:{key}"

    def _tag(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    async def get(self, key: str) -> Optional[Any]:
        r = await self.get_client()
        raw = await r.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, tags: Iterable[str], ttl: Optional[int] = None) -> None:
        r = await self.get_client()
        ttl = ttl if ttl is not None else self.default_ttl
        async with r.pipeline(transaction=True) as pipe:
            pipe.set(self._key(key), json.dumps(value, default=str), ex=ttl or None)
            for tag in tags:
                pipe.sadd(self._tag(tag), key)
            await pipe.execute()

    async def invalidate_tags(self, tags: Iterable[str]) -> None:
        r = await self.get_client()
        for tag in tags:
            keys = await r.smembers(self._tag(tag))
            if keys:
                await r.delete(*[self._key(k) for k in keys])
            await r.delete(self._tag(tag))
            logger.debug(f"Invalidated {len(keys)} cached entries for tag {tag}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_cache(settings: TeamsSettings) -> TagCache:
    if settings.CACHE_BACKEND == "redis":
        return RedisTagCache(settings)
    return InMemoryTagCache(default_ttl=settings.CACHE_TTL_SECONDS)
