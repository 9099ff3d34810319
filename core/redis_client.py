"""
Redis client factory with connection pooling.

Provides:
- Pooled clients configured from Settings
- A connectivity check at startup
- Health information for diagnostics
"""

from typing import Any, Optional

import redis
from redis.exceptions import ConnectionError, TimeoutError

from core.config import Settings, get_settings
from core.logging import get_logger

logger = get_logger("redis")


def create_redis_client(
    settings: Optional[Settings] = None,
    decode_responses: bool = True,
    max_connections: int = 10,
) -> redis.Redis:
    """
    Build a pooled Redis client from settings.

    Args:
        settings: Settings to read host/port/db/password from (default: cached settings)
        decode_responses: Return str instead of bytes
        max_connections: Pool size

    Returns:
        Redis client. No connection is opened until first use.
    """
    settings = settings or get_settings()
    pool = redis.ConnectionPool(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        max_connections=max_connections,
        socket_timeout=5,
        socket_connect_timeout=5,
        decode_responses=decode_responses,
    )
    return redis.Redis(connection_pool=pool)


def connect_redis(settings: Optional[Settings] = None) -> redis.Redis:
    """
    Create a client and verify the server answers.

    Raises:
        redis.exceptions.ConnectionError: If Redis is unreachable.
    """
    settings = settings or get_settings()
    client = create_redis_client(settings)
    try:
        client.ping()
    except (ConnectionError, TimeoutError) as e:
        logger.error(
            "redis_connection_failed",
            host=settings.redis_host,
            port=settings.redis_port,
            error=str(e),
        )
        raise

    logger.info("redis_connected", host=settings.redis_host, port=settings.redis_port)
    return client


def health_check(client: redis.Redis) -> dict[str, Any]:
    """
    Get Redis health status.

    Returns:
        Dictionary with health information
    """
    status: dict[str, Any] = {}
    try:
        memory_info = client.info("memory")
        clients_info = client.info("clients")

        if isinstance(memory_info, dict):
            status["memory_used"] = memory_info.get("used_memory_human", "unknown")
        else:
            status["memory_used"] = "unknown"

        if isinstance(clients_info, dict):
            status["connected_clients"] = clients_info.get("connected_clients", 0)
        else:
            status["connected_clients"] = 0

        status["status"] = "healthy"
    except (ConnectionError, TimeoutError) as e:
        status["status"] = "unavailable"
        status["error"] = str(e)

    return status


__all__ = ["create_redis_client", "connect_redis", "health_check"]
