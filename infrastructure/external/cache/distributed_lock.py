"""
Redis 分布式锁

- 获取：SET key token NX PX ttl，单条原子命令
- 释放：Lua 脚本比较 token 后删除，锁过期被他人重新获取后不会被误删
- 续期：Lua 脚本比较 token 后 PEXPIRE
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Awaitable, Callable, Optional, TypeVar, Union

from redis import asyncio as aioredis

from application.ports.lock import IN_PROGRESS, LockHandle, LockState
from core.config import LockSettings
from core.logging_config import get_logger
from domain.common.exceptions import LockBusyException

logger = get_logger(__name__)

T = TypeVar("T")

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class RedisDistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        *,
        namespace: str = "",
        defaults: Optional[LockSettings] = None,
    ) -> None:
        self._client = client
        self._namespace = namespace.strip(":")
        self._defaults = defaults or LockSettings()

    def _lock_key(self, key: str) -> str:
        if self._namespace:
            return f"{self._namespace}:lock:{key}"
        return f"lock:{key}"

    async def acquire(
        self,
        key: str,
        *,
        ttl_ms: Optional[int] = None,
        retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> LockHandle:
        ttl_ms = ttl_ms or self._defaults.ttl_ms
        retries = self._defaults.retry_count if retries is None else retries
        delay = (self._defaults.retry_delay_ms if retry_delay_ms is None else retry_delay_ms) / 1000
        token = uuid.uuid4().hex
        lock_key = self._lock_key(key)

        for attempt in range(retries + 1):
            if await self._client.set(lock_key, token, nx=True, px=ttl_ms):
                logger.debug("lock_acquired", key=key, attempt=attempt)
                return LockHandle(key=key, acquired=True, token=token)
            if attempt < retries:
                await asyncio.sleep(delay)

        logger.info("lock_busy", key=key, retries=retries)
        return LockHandle(key=key, acquired=False)

    async def release(self, key: str, token: str) -> bool:
        released = await self._client.eval(RELEASE_SCRIPT, 1, self._lock_key(key), token)
        if not released:
            # 锁已过期或被他人持有：不删除
            logger.warning("lock_release_skipped", key=key)
        return bool(released)

    async def extend(self, key: str, token: str, ttl_ms: int) -> bool:
        extended = await self._client.eval(EXTEND_SCRIPT, 1, self._lock_key(key), token, ttl_ms)
        return bool(extended)

    async def with_lock(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        *,
        ttl_ms: Optional[int] = None,
        retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> T:
        handle = await self.acquire(key, ttl_ms=ttl_ms, retries=retries, retry_delay_ms=retry_delay_ms)
        if not handle.acquired:
            raise LockBusyException(key)
        try:
            return await fn()
        finally:
            await self.release(key, handle.token)

    async def try_with_lock(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        *,
        ttl_ms: Optional[int] = None,
    ) -> Union[T, LockState]:
        handle = await self.acquire(key, ttl_ms=ttl_ms, retries=0)
        if not handle.acquired:
            return IN_PROGRESS
        try:
            return await fn()
        finally:
            await self.release(key, handle.token)
