"""Shared Redis client.

The API uses Redis for three optional things: per-IP rate limiting, pushing
new notifications to connected clients, and per-address email throttling.
None of them are required, so callers that can degrade use
``get_redis_or_none()``.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


def user_channel(user_id: int) -> str:
    """Pub/sub channel the WebSocket gateway listens on for one user."""
    return f"ws:user:{user_id}"


async def init_redis(url: str | None) -> None:
    """Connect to Redis. An empty URL leaves the client unset."""
    global _client  # noqa: PLW0603
    if not url:
        _client = None
        return
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
        health_check_interval=30,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Return the client. Raises RuntimeError before ``init_redis``."""
    if _client is None:
        msg = "Redis is not configured"
        raise RuntimeError(msg)
    return _client


def get_redis_or_none() -> redis.Redis | None:
    return _client
