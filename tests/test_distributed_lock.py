import asyncio

import pytest

from application.ports.lock import IN_PROGRESS
from core.config import LockSettings
from domain.common.exceptions import LockBusyException
from infrastructure.external.cache import RedisDistributedLock


@pytest.fixture
def lock(fake_redis):
    return RedisDistributedLock(
        fake_redis,
        namespace="test",
        defaults=LockSettings(ttl_ms=1000, retry_count=2, retry_delay_ms=1),
    )


@pytest.mark.asyncio
async def test_acquire_is_exclusive_and_release_frees_key(lock, fake_redis):
    first = await lock.acquire("order:1")
    assert first.acquired
    assert fake_redis.store["test:lock:order:1"] == first.token

    second = await lock.acquire("order:1", retries=0)
    assert not second.acquired

    assert await lock.release("order:1", first.token)
    assert "test:lock:order:1" not in fake_redis.store
    assert (await lock.acquire("order:1", retries=0)).acquired


@pytest.mark.asyncio
async def test_release_with_foreign_token_keeps_lock(lock, fake_redis):
    handle = await lock.acquire("order:2")
    assert not await lock.release("order:2", "someone-else")
    assert fake_redis.store["test:lock:order:2"] == handle.token


@pytest.mark.asyncio
async def test_extend_requires_matching_token(lock):
    handle = await lock.acquire("order:3")
    assert await lock.extend("order:3", handle.token, 5000)
    assert not await lock.extend("order:3", "stale", 5000)


@pytest.mark.asyncio
async def test_with_lock_raises_when_busy(lock):
    await lock.acquire("activity:9")

    async def _work():
        return "done"

    with pytest.raises(LockBusyException) as exc:
        await lock.with_lock("activity:9", _work)
    assert exc.value.details["key"] == "activity:9"


@pytest.mark.asyncio
async def test_with_lock_releases_after_error(lock, fake_redis):
    async def _boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await lock.with_lock("activity:10", _boom)
    assert not fake_redis.store


@pytest.mark.asyncio
async def test_try_with_lock_reports_in_progress(lock):
    started = asyncio.Event()
    finish = asyncio.Event()

    async def _slow():
        started.set()
        await finish.wait()
        return "first"

    async def _fast():
        return "second"

    task = asyncio.create_task(lock.try_with_lock("notify:A", _slow))
    await started.wait()
    assert await lock.try_with_lock("notify:A", _fast) is IN_PROGRESS
    finish.set()
    assert await task == "first"
    assert await lock.try_with_lock("notify:A", _fast) == "second"
