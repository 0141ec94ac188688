"""
Redis 客户端管理：进程级单例连接 + 命名空间化的发布与健康检查
"""
from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    轻量 Redis 客户端包装

    特性:
    - 命名空间隔离（键与频道统一加前缀）
    - JSON 序列化发布
    - 暴露原始 asyncio 客户端供分布式锁等组件使用
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        return f"{self._namespace}:{key}" if self._namespace else key

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def client(self) -> aioredis.Redis:
        """获取原始Redis客户端（谨慎使用）"""
        return self._client

    async def publish(self, channel: str, message: Any) -> int:
        """发布 JSON 消息，返回接收者数量"""
        payload = json.dumps(message, ensure_ascii=False, default=str)
        return await self._client.publish(self._format_key(channel), payload)


# ============= 单例模式管理 =============

_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    # 构建跨平台 keepalive 选项（若可用）
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        return {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    return {}


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """初始化全局 Redis 客户端（幂等）"""
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs,
        )
        await client.ping()

        _redis_client = client
        _cache_instance = RedisClient(client=client, namespace=namespace or settings.redis.namespace)
        logger.info("redis_client_initialized", namespace=_cache_instance.namespace)
        return _cache_instance


async def get_redis_client() -> RedisClient:
    """获取全局Redis客户端实例"""
    if _cache_instance is None:
        return await init_redis_client()
    return _cache_instance


async def shutdown_redis_client() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis_client_closed")
        except RedisError as exc:
            logger.error("redis_client_close_failed", error=str(exc))
        finally:
            _redis_client = None
            _cache_instance = None


__all__ = [
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
