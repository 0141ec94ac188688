"""缓存层对外暴露的接口"""
from .redis_client import (
    RedisClient,
    get_redis_client,
    init_redis_client,
    shutdown_redis_client,
)
from .distributed_lock import RedisDistributedLock


__all__ = [
    "RedisClient",
    "RedisDistributedLock",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
