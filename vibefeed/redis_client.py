"""Redis connection for the best-effort ranking caches.

Every cache read and write in vibefeed tolerates Redis being down, so the client
gets short socket timeouts: a slow Redis must degrade to a cache miss instead of
stalling the feed request behind it.
"""

from typing import Any

import redis.asyncio as redis

RedisClient = redis.Redis

_DEFAULT_SOCKET_TIMEOUT_S: float = 0.5


def get_redis_client(redis_url: str, **kwargs: Any) -> RedisClient:
    kwargs.setdefault("socket_timeout", _DEFAULT_SOCKET_TIMEOUT_S)
    kwargs.setdefault("socket_connect_timeout", _DEFAULT_SOCKET_TIMEOUT_S)
    return redis.from_url(redis_url, decode_responses=True, **kwargs)


async def close_redis_client(client: RedisClient) -> None:
    await client.aclose()
