import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def create_redis_client(redis_url: str, *, socket_timeout: float | None = None) -> redis.Redis:
    timeout = socket_timeout
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        timeout = 2.0
    return redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )


async def close_redis_client(client: redis.Redis | None) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except Exception:  # noqa: BLE001
        logger.warning("redis_close_failed", exc_info=True)
