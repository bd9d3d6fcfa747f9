"""Redis client construction for the short-link service.

How to Use
===========
**Step 1 — Create on startup**::
    client = create_redis(settings.REDIS_URL)

**Step 2 — Cleanup on shutdown**::
    await close_redis(client)

Key Behaviours
===============
- One client per process, owned by the service manager and injected everywhere.
- UTF-8 encoding with decode_responses for string operations.
- Socket timeouts keep a hung Redis from stalling the redirect path.
"""

import redis.asyncio as redis

__all__ = ["close_redis", "create_redis"]


def create_redis(url: str, socket_timeout: float = 1.0) -> redis.Redis:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


async def close_redis(client: redis.Redis | None) -> None:
    if client is not None:
        await client.aclose()
