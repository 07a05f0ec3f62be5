"""
Redis 连接管理
购物车哈希（fm:cart:*）与订单事件流（fm:events:*）共用同一个连接池
"""
from typing import Optional

import redis.asyncio as redis

from fm_core.config import get_settings
from fm_core.utils.logger import get_logger

logger = get_logger(__name__)

_pool: Optional[redis.ConnectionPool] = None
_client: Optional[redis.Redis] = None


def _build_pool() -> redis.ConnectionPool:
    settings = get_settings()
    return redis.ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        decode_responses=True,  # 购物车数量和事件载荷都按字符串读写
    )


async def get_redis() -> redis.Redis:
    """应用级 Redis 客户端（首次调用时创建连接池）"""
    global _pool, _client

    if _client is None:
        _pool = _build_pool()
        _client = redis.Redis(connection_pool=_pool)
        logger.info("Created redis connection pool", max_connections=_pool.max_connections)

    return _client


async def ping_redis(client: Optional[redis.Redis] = None) -> bool:
    """健康检查，连接失败返回 False"""
    try:
        r = client if client is not None else await get_redis()
        return bool(await r.ping())
    except redis.RedisError:
        logger.warning("Redis ping failed", exc_info=True)
        return False


async def close_redis() -> None:
    """关闭应用级客户端；调用方自行注入的客户端不在此关闭"""
    global _pool, _client

    if _client is not None:
        await _client.aclose()
        _client = None

    if _pool is not None:
        await _pool.disconnect()
        _pool = None
        logger.info("Closed redis connection pool")
