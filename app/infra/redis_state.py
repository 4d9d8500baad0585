from __future__ import annotations

import logging
import os
from functools import lru_cache

from redis import Redis

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
VIEW_CACHE_PREFIX = "view:"


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


class RedisViewCache:
    """Cached admin views keyed as ``view:<path>[:suffix]``."""

    def __init__(self, client: Redis | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Redis:
        return self._client if self._client is not None else get_redis()

    def key(self, path: str, suffix: str | None = None) -> str:
        base = f"{VIEW_CACHE_PREFIX}{path}"
        return f"{base}:{suffix}" if suffix else base

    def get(self, path: str, suffix: str | None = None) -> str | None:
        value = self.client.get(self.key(path, suffix))
        return value if isinstance(value, str) else None

    def put(self, path: str, value: str, *, suffix: str | None = None, ttl_seconds: int = 300) -> None:
        self.client.set(self.key(path, suffix), value, ex=ttl_seconds)

    def invalidate(self, path: str) -> None:
        base = self.key(path)
        keys = [base, *self.client.scan_iter(match=f"{base}:*")]
        removed = self.client.delete(*keys)
        logger.debug("invalidated %s cached view keys under %s", removed, base)
