from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL

_redis: Redis | None = None
PRIVATE_ID_TTL = 60 * 60  # 1 hour


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def _private_id_key(booking_id: UUID) -> str:
    return f"booking:pk:{booking_id}"


async def get_private_id_cache(booking_id: UUID) -> int | None:
    try:
        data = await get_redis().get(_private_id_key(booking_id))
        return int(data) if data else None
    except Exception:
        logger.opt(exception=True).warning("Redis get failed, skipping private id cache")
        return None


async def set_private_id_cache(booking_id: UUID, private_id: int) -> None:
    try:
        await get_redis().setex(_private_id_key(booking_id), PRIVATE_ID_TTL, private_id)
    except Exception:
        logger.opt(exception=True).warning("Redis set failed, skipping private id cache")


async def invalidate_private_id_cache(booking_id: UUID) -> None:
    try:
        await get_redis().delete(_private_id_key(booking_id))
    except Exception:
        logger.opt(exception=True).warning("Redis invalidate failed for private id cache")
