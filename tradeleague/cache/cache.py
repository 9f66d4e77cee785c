"""Read-through cache for candle chart reads.

Entries expire through the TTL set on write; there is no sweeper. Any Valkey
failure degrades to a miss so charts are served straight from the database.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Union

from tradeleague.core.config import settings
from tradeleague.core.logging import get_logger

from .client import get_valkey_client


logger = get_logger("cache")

CACHE_PREFIX = "tradeleague"
CACHE_VERSION = "v1"


def cache_key(*parts: Union[str, int, float], prefix: str = "cache") -> str:
    """
    Build a namespaced key. Colons inside parts are flattened.

    Usage:
        cache_key("005930", "2026-10-16", prefix="chart")
        -> "tradeleague:v1:chart:005930:2026-10-16"
    """
    flattened = [str(part).replace(":", "_") for part in parts]
    return f"{CACHE_PREFIX}:{CACHE_VERSION}:{prefix}:{':'.join(flattened)}"


class Cache:
    """JSON documents under one key prefix."""

    def __init__(self, prefix: str = "cache", default_ttl: int | None = None):
        self.prefix = prefix
        self.default_ttl = default_ttl or settings.cache_default_ttl

    async def get_or_set(
        self,
        key: Union[str, tuple],
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """Return the cached document, or build it with ``factory`` and store it.

        Exceptions raised by ``factory`` propagate and nothing is stored.
        """
        parts = key if isinstance(key, tuple) else (key,)
        full_key = cache_key(*parts, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            raw = await client.get(full_key)
        except Exception as e:
            logger.warning(f"Cache read failed for {full_key}: {e}")
            return await factory()

        if raw is not None:
            return json.loads(raw)

        value = await factory()
        if value is not None:
            try:
                await client.set(full_key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
            except Exception as e:
                logger.warning(f"Cache write failed for {full_key}: {e}")
        return value

    async def invalidate(self, *parts: Union[str, int, float]) -> int:
        """Drop every entry whose key starts with ``parts`` (all entries if empty)."""
        pattern = cache_key(*parts, prefix=self.prefix) + ":*" if parts else cache_key("*", prefix=self.prefix)
        removed = 0
        try:
            client = await get_valkey_client()
            async for key in client.scan_iter(match=pattern, count=500):
                removed += await client.delete(key)
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {pattern}: {e}")
        return removed
