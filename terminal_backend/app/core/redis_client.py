"""
Event bus connection.

Tariff domain events are fanned out over Redis pub/sub. The client is a
module attribute, looked up at call time by the publisher and the health
check so it can be replaced (tests, reconnects).
"""

import logging

import redis.asyncio as redis
from terminal_backend.app.core.config import settings

logger = logging.getLogger("terminal_billing.events")

# Connects lazily on the first command
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Report whether the event bus is reachable.

    Returns:
        True if the broker answered, False otherwise
    """
    try:
        return bool(await redis_client.ping())
    except (redis.RedisError, OSError) as exc:
        logger.warning("Event bus unreachable: %s", exc)
        return False


async def close_redis() -> None:
    """Release the broker connection pool on shutdown."""
    await redis_client.aclose()
