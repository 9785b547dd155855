"""
Redis client utilities for basecore.

Provides lazy-initialized asyncio Redis clients to avoid import-time
connections, plus thin helpers around the stream commands used for change
notifications.
"""

import functools
from typing import Any

import redis.asyncio as aioredis

from basecore.settings import get_settings


@functools.lru_cache()
def get_redis_url() -> str:
    """Get Redis URL from settings."""
    return get_settings().REDIS_URL


def create_redis_client(url: str | None = None) -> aioredis.Redis:
    """
    Create a new asyncio Redis client.

    Clients are bound to the event loop that first uses them, so callers that
    own a loop (workers, tests) should create and close their own client.
    """
    return aioredis.from_url(url or get_redis_url(), decode_responses=True)


async def ping(client: aioredis.Redis) -> bool:
    """Return True if Redis answers PING."""
    try:
        return bool(await client.ping())
    except (aioredis.ConnectionError, OSError):
        return False


async def publish_to_stream(
    client: aioredis.Redis,
    stream_name: str,
    data: dict[str, Any],
    max_len: int | None = 10000,
) -> str:
    """
    Publish a message to a Redis stream.

    Args:
        client: Redis client
        stream_name: Name of the Redis stream
        data: Dictionary of field-value pairs to publish
        max_len: Maximum stream length (approximate trim)

    Returns:
        Message ID assigned by Redis
    """
    # Convert all values to strings for Redis
    string_data = {k: str(v) if not isinstance(v, str) else v for k, v in data.items()}

    if max_len:
        return await client.xadd(stream_name, string_data, maxlen=max_len, approximate=True)
    return await client.xadd(stream_name, string_data)


async def read_from_stream(
    client: aioredis.Redis,
    stream_name: str,
    last_id: str = "$",
    count: int = 100,
    block_ms: int = 1000,
) -> list[tuple[str, dict[str, str]]]:
    """
    Read messages published after ``last_id`` (no consumer group).

    Args:
        client: Redis client
        stream_name: Name of the Redis stream
        last_id: Read entries strictly after this ID ("$" = only new entries)
        count: Maximum messages to read
        block_ms: Milliseconds to block waiting for messages

    Returns:
        List of (message_id, data) tuples
    """
    result = await client.xread({stream_name: last_id}, count=count, block=block_ms)

    if not result:
        return []

    # Result format: [[stream_name, [(msg_id, data), ...]]]
    messages = []
    for _stream, entries in result:
        for msg_id, data in entries:
            messages.append((msg_id, data))

    return messages


async def get_last_stream_id(client: aioredis.Redis, stream_name: str) -> str:
    """
    Get the ID of the newest entry in a stream, or "0-0" if it is empty.

    Used to pin a reader to "everything after now" without the race of
    passing "$" on every XREAD call.
    """
    entries = await client.xrevrange(stream_name, count=1)
    if not entries:
        return "0-0"
    return entries[0][0]
