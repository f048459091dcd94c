"""
Tests untuk ManagedLock (fair dan unfair) dan LockFacade.
"""

import asyncio
import time

import pytest
from redis.asyncio.lock import Lock
from redis.exceptions import ConnectionError as RedisConnectionError

from kvlock.exceptions import InvalidLockConfig, LockAcquisitionError
from kvlock.lock.base import LockHandle
from kvlock.lock.facade import LockFacade, locked
from kvlock.lock.fair import FairLock
from kvlock.lock.managed import ManagedLock
from kvlock.utils.config import KVLockConfig


@pytest.mark.asyncio
async def test_managed_lock_basic(redis_client):
    """Test basic managed lock operations"""
    manager = ManagedLock(redis_client)

    handle = await manager.try_lock('resource1', wait=0, lease=10)
    assert handle is not None
    assert handle.variant == 'managed'

    # Lock yang sama tidak bisa di-acquire lagi
    assert await manager.try_lock('resource1', wait=0, lease=10) is None

    assert await manager.unlock(handle) is True
    assert await manager.unlock(handle) is False

    again = await manager.try_lock('resource1', wait=0, lease=10)
    assert again is not None
    assert await manager.unlock(again) is True


@pytest.mark.asyncio
async def test_managed_lease_and_no_expiry(redis_client):
    manager = ManagedLock(redis_client)

    forever = await manager.try_lock('no-expiry', wait=0, lease=None)
    assert await redis_client.ttl('lock:no-expiry') == -1

    leased = await manager.try_lock('leased', wait=0, lease=5)
    assert 0 < await redis_client.pttl('lock:leased') <= 5000

    # Lease renewal
    assert await manager.renew(leased, 100) is True
    assert await redis_client.pttl('lock:leased') > 50_000

    await manager.unlock(forever)
    await manager.unlock(leased)


@pytest.mark.asyncio
async def test_managed_unlock_rejects_unknown_handles(redis_client):
    manager = ManagedLock(redis_client)

    assert await manager.unlock(None) is False
    assert await manager.unlock('lock:resource') is False
    assert await manager.unlock(LockHandle(key='k', owner_token='t', variant='polling')) is False


@pytest.mark.asyncio
async def test_managed_try_lock_wait_bound(redis_client):
    manager = ManagedLock(redis_client)
    holder = await manager.try_lock('busy', wait=0, lease=60)

    start = time.monotonic()
    assert await manager.try_lock('busy', wait=0.5, lease=60) is None
    assert time.monotonic() - start < 1.5

    await manager.unlock(holder)


@pytest.mark.asyncio
async def test_managed_blocking_lock_waits_for_release(redis_client):
    manager = ManagedLock(redis_client)
    holder = await manager.lock('blocking', lease=30)

    async def release_later():
        await asyncio.sleep(0.2)
        await manager.unlock(holder)

    releaser = asyncio.create_task(release_later())
    handle = await asyncio.wait_for(manager.lock('blocking', lease=30), timeout=5)
    await releaser

    assert handle.owner_token != holder.owner_token
    assert await manager.unlock(handle) is True


@pytest.mark.asyncio
async def test_managed_try_lock_interrupted(redis_client):
    manager = ManagedLock(redis_client)
    holder = await manager.try_lock('interrupted', wait=0, lease=30)

    waiter = asyncio.create_task(manager.try_lock('interrupted', wait=10, lease=30))
    await asyncio.sleep(0.2)
    waiter.cancel()

    assert await waiter is None
    await manager.unlock(holder)


@pytest.mark.asyncio
async def test_managed_invalid_timing(redis_client):
    manager = ManagedLock(redis_client)

    with pytest.raises(InvalidLockConfig):
        await manager.try_lock('bad', wait=-1)
    with pytest.raises(InvalidLockConfig):
        await manager.try_lock('bad', wait=0, lease=0)
    with pytest.raises(InvalidLockConfig):
        await manager.lock('bad', lease=-5)
    # Di bawah 1ms akan terpotong jadi 0 di Redis
    with pytest.raises(InvalidLockConfig):
        await manager.try_lock('bad', wait=0, lease=0.0005)


@pytest.mark.asyncio
async def test_managed_lock_retries_after_redis_error(redis_client, monkeypatch):
    """Redis error saat lock() di-log lalu di-retry setelah poll_interval"""
    original = Lock.acquire
    calls = []

    async def flaky_acquire(self, *args, **kwargs):
        calls.append(self.name)
        if len(calls) == 1:
            raise RedisConnectionError("connection reset")
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(Lock, 'acquire', flaky_acquire)
    manager = ManagedLock(redis_client, poll_interval=0.05)

    handle = await asyncio.wait_for(manager.lock('flaky', lease=10), timeout=5)

    assert len(calls) == 2
    assert await manager.unlock(handle) is True


@pytest.mark.asyncio
async def test_managed_cancel_after_acquire_removes_lock(redis_client, monkeypatch):
    """Lock tanpa lease yang sudah di-set sebelum cancel tidak boleh tertinggal"""
    original = Lock.do_acquire

    async def slow_do_acquire(self, token):
        acquired = await original(self, token)
        await asyncio.sleep(1)
        return acquired

    monkeypatch.setattr(Lock, 'do_acquire', slow_do_acquire)
    manager = ManagedLock(redis_client)

    waiter = asyncio.create_task(manager.try_lock('orphan', wait=5, lease=None))
    await asyncio.sleep(0.1)
    assert await redis_client.exists('lock:orphan') == 1

    waiter.cancel()

    assert await waiter is None
    assert await redis_client.exists('lock:orphan') == 0


@pytest.mark.asyncio
async def test_fair_blocking_lock_cancelled_after_acquire(redis_client, monkeypatch):
    original = FairLock._do_acquire

    async def slow_do_acquire(self, token):
        acquired = await original(self, token)
        await asyncio.sleep(1)
        return acquired

    monkeypatch.setattr(FairLock, '_do_acquire', slow_do_acquire)
    manager = ManagedLock(redis_client, fair=True)

    waiter = asyncio.create_task(manager.lock('orphan-fair', lease=None))
    await asyncio.sleep(0.1)
    assert await redis_client.exists('lock:orphan-fair') == 1

    waiter.cancel()

    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert await redis_client.exists('lock:orphan-fair') == 0


@pytest.mark.asyncio
async def test_fair_lock_serves_in_arrival_order(redis_client):
    """Waiters mendapat lock sesuai urutan kedatangan"""
    manager = ManagedLock(redis_client, fair=True)
    holder = await manager.try_lock('fifo', wait=0, lease=30)
    assert isinstance(holder.lock, FairLock)

    order = []

    async def waiter(name: str, delay: float):
        await asyncio.sleep(delay)
        handle = await manager.try_lock('fifo', wait=5, lease=30)
        assert handle is not None
        order.append(name)
        await manager.unlock(handle)

    tasks = [
        asyncio.create_task(waiter('w1', 0.0)),
        asyncio.create_task(waiter('w2', 0.05)),
        asyncio.create_task(waiter('w3', 0.1)),
    ]
    await asyncio.sleep(0.3)
    assert await redis_client.llen('lock:fifo:queue') == 3

    await manager.unlock(holder)
    await asyncio.gather(*tasks)

    assert order == ['w1', 'w2', 'w3']


@pytest.mark.asyncio
async def test_fair_lock_timeout_leaves_queue(redis_client):
    manager = ManagedLock(redis_client, fair=True)
    holder = await manager.try_lock('fair-timeout', wait=0, lease=30)

    assert await manager.try_lock('fair-timeout', wait=0.3, lease=30) is None
    assert await redis_client.llen('lock:fair-timeout:queue') == 0

    assert await manager.unlock(holder) is True
    assert await manager.try_lock('fair-timeout', wait=0, lease=30) is not None


@pytest.mark.asyncio
async def test_fair_lock_skips_crashed_waiter(redis_client):
    """Waiter yang berhenti heartbeat dibuang dari head queue"""
    manager = ManagedLock(redis_client, fair=True)
    holder = await manager.try_lock('crashed', wait=0, lease=30)

    # Satu poll lalu "crash": tidak pernah poll atau cancel lagi
    crashed = FairLock(redis_client, 'lock:crashed', waiter_timeout=0.2)
    assert await crashed._do_acquire('crashed-waiter') is False
    assert await redis_client.lrange('lock:crashed:queue', 0, -1) == ['crashed-waiter']

    assert await manager.unlock(holder) is True
    await asyncio.sleep(0.3)

    handle = await manager.try_lock('crashed', wait=1, lease=30)
    assert handle is not None
    assert await redis_client.exists('lock:crashed:queue') == 0
    assert await manager.unlock(handle) is True


@pytest.mark.asyncio
async def test_fair_lock_override_per_call(redis_client):
    manager = ManagedLock(redis_client, fair=False)

    fair_handle = await manager.try_lock('override', wait=0, lease=5, fair=True)
    assert isinstance(fair_handle.lock, FairLock)
    assert await manager.renew(fair_handle, 60) is True
    assert await manager.unlock(fair_handle) is True


@pytest.mark.asyncio
@pytest.mark.parametrize('variant', ['polling', 'managed'])
async def test_facade_round_trip(redis_client, store, variant):
    config = KVLockConfig(lock_variant=variant, poll_interval=0.05)
    facade = LockFacade.from_config(config, store=store, redis=redis_client)
    assert facade.variant_name == variant

    handle = await facade.acquire('order:42', lease=10)
    assert await facade.try_acquire('order:42', wait=0.2, lease=10) is None

    assert await facade.release(handle) is True
    assert await facade.release(handle) is False
    assert await facade.release(None) is False

    again = await facade.try_acquire('order:42', wait=0, lease=10)
    assert again is not None
    await facade.release(again)


@pytest.mark.asyncio
@pytest.mark.parametrize('variant', ['polling', 'managed'])
async def test_facade_acquire_interrupted_raises(redis_client, store, variant):
    config = KVLockConfig(lock_variant=variant, poll_interval=0.05)
    facade = LockFacade.from_config(config, store=store, redis=redis_client)
    holder = await facade.acquire('busy', lease=30)

    waiter = asyncio.create_task(facade.acquire('busy', lease=30))
    await asyncio.sleep(0.2)
    waiter.cancel()

    with pytest.raises(LockAcquisitionError):
        await waiter

    assert await facade.release(holder) is True


@pytest.mark.asyncio
async def test_facade_rejects_handle_from_other_variant(redis_client, store):
    polling = LockFacade.from_config(KVLockConfig(lock_variant='polling'), store=store)
    managed = LockFacade.from_config(KVLockConfig(lock_variant='managed'), redis=redis_client)

    polling_handle = await polling.try_acquire('mixed', wait=0, lease=10)
    managed_handle = await managed.try_acquire('other', wait=0, lease=10)

    assert await managed.release(polling_handle) is False
    assert await polling.release(managed_handle) is False

    assert await polling.release(polling_handle) is True
    assert await managed.release(managed_handle) is True


@pytest.mark.asyncio
async def test_facade_hold_context_manager(store):
    facade = LockFacade.from_config(KVLockConfig(lock_variant='polling', poll_interval=0.05),
                                    store=store)

    async with facade.hold('ctx', wait=0, lease=10) as handle:
        assert handle.key == 'ctx'
        with pytest.raises(LockAcquisitionError):
            async with facade.hold('ctx', wait=0.1, lease=10):
                pass

    # Sudah di-release setelah keluar dari context
    async with facade.hold('ctx', wait=0, lease=10):
        pass


@pytest.mark.asyncio
async def test_locked_decorator_serializes_calls(store):
    facade = LockFacade.from_config(KVLockConfig(lock_variant='polling', poll_interval=0.02),
                                    store=store)
    state = {'value': 100}

    @locked(facade, 'counter', wait=10, lease=3)
    async def increment():
        current = state['value']
        await asyncio.sleep(0.01)
        state['value'] = current + 1

    await asyncio.gather(*[increment() for _ in range(10)])

    assert state['value'] == 110


@pytest.mark.asyncio
async def test_locked_decorator_key_from_arguments(store, redis_client):
    facade = LockFacade.from_config(KVLockConfig(lock_variant='polling'), store=store)
    seen = []

    @locked(facade, lambda order_id: f"order:{order_id}", wait=0, lease=5)
    async def process(order_id):
        seen.append(await redis_client.exists(f"lock:order:{order_id}"))
        return order_id

    assert await process(7) == 7
    assert seen == [1]
    assert await redis_client.exists('lock:order:7') == 0


@pytest.mark.asyncio
async def test_locked_decorator_requires_async(store):
    facade = LockFacade.from_config(KVLockConfig(lock_variant='polling'), store=store)

    with pytest.raises(TypeError):
        @locked(facade, 'sync')
        def not_async():
            pass


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
