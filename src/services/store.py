"""Redis client construction."""
import logging

import redis

logger = logging.getLogger(__name__)


def connect_redis(url: str, **options) -> redis.Redis:
    """
    Create a Redis client that returns str values.

    Args:
        url: Redis connection URL, e.g. "redis://localhost:6379/0"
        options: Extra redis.Redis options (socket_timeout, ...)

    Returns:
        redis.Redis client (connections are opened lazily)
    """
    client = redis.Redis.from_url(url, decode_responses=True, **options)
    logger.info(f"Redis client configured for {_redact(url)}")
    return client


def _redact(url: str) -> str:
    """Hide the password part of a connection URL for logging."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    _, _, host = rest.rpartition("@")
    return f"{scheme}://***@{host}"
