"""
Lock Facade.
Satu kontrak {acquire, try_acquire, release} untuk dua variant:
- PollingVariant: PollingLock (SET NX + polling)
- ManagedVariant: ManagedLock (lock service, optional fair)

Variant dipilih sekali saat startup dari config.
"""

import asyncio
import functools
import inspect
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Optional, Union

import redis.asyncio as aioredis

from .base import LockHandle, LockVariant
from .managed import ManagedLock
from .polling import PollingLock
from ..exceptions import InvalidLockConfig, LockAcquisitionError
from ..store.redis_store import RedisStore

logger = logging.getLogger(__name__)


class PollingVariant:
    """LockVariant di atas PollingLock"""

    name = 'polling'

    def __init__(self, lock: PollingLock, default_lease: float = 30.0):
        self.lock = lock
        self.default_lease = default_lease

    def _lease(self, lease: Optional[float]) -> float:
        # Polling lock selalu butuh TTL supaya holder yang crash tidak lock selamanya
        return self.default_lease if lease is None else lease

    async def acquire(self, key: str, lease: Optional[float] = None) -> Optional[LockHandle]:
        token = uuid.uuid4().hex
        if await self.lock.acquire(key, token, self._lease(lease), wait_seconds=None):
            return LockHandle(key=key, owner_token=token, variant=self.name)
        return None

    async def try_acquire(self, key: str, wait: float,
                          lease: Optional[float] = None) -> Optional[LockHandle]:
        token = uuid.uuid4().hex
        if await self.lock.acquire(key, token, self._lease(lease), wait_seconds=wait):
            return LockHandle(key=key, owner_token=token, variant=self.name)
        return None

    async def release(self, handle: LockHandle) -> bool:
        if not isinstance(handle, LockHandle) or handle.variant != self.name:
            logger.error(f"Release failed, not a polling lock handle: {handle!r}")
            return False
        return await self.lock.release(handle.key, handle.owner_token)


class ManagedVariant:
    """LockVariant di atas ManagedLock"""

    name = 'managed'

    def __init__(self, lock: ManagedLock):
        self.lock = lock

    async def acquire(self, key: str, lease: Optional[float] = None) -> Optional[LockHandle]:
        try:
            return await self.lock.lock(key, lease)
        except asyncio.CancelledError:
            # Sama seperti polling variant: interrupted wait = None
            return None

    async def try_acquire(self, key: str, wait: float,
                          lease: Optional[float] = None) -> Optional[LockHandle]:
        return await self.lock.try_lock(key, wait, lease)

    async def release(self, handle: LockHandle) -> bool:
        return await self.lock.unlock(handle)


class LockFacade:
    """
    Front untuk lock variant yang dipilih.

    Caller yang butuh fairness harus memakai variant 'managed';
    polling lock tidak fair dan tidak reentrant.
    """

    def __init__(self, variant: LockVariant):
        self.variant = variant

    @classmethod
    def from_config(cls, config, store: Optional[RedisStore] = None,
                    redis: Optional[aioredis.Redis] = None) -> 'LockFacade':
        """
        Build facade sesuai config.lock_variant.

        Args:
            config: KVLockConfig
            store: RedisStore untuk polling variant
            redis: Redis client untuk managed variant
        """
        if store is None and redis is None:
            store = RedisStore.from_config(config)
        if config.lock_variant == 'polling':
            store = store or RedisStore(redis)
            return cls(PollingVariant(PollingLock.from_config(config, store),
                                      default_lease=config.default_lease))
        if config.lock_variant == 'managed':
            redis = redis or store.client
            return cls(ManagedVariant(ManagedLock.from_config(config, redis)))
        raise InvalidLockConfig(f"Unknown lock variant: {config.lock_variant!r}")

    @property
    def variant_name(self) -> str:
        return self.variant.name

    async def acquire(self, key: str, lease: Optional[float] = None) -> LockHandle:
        """
        Block sampai lock didapat.

        Raises:
            LockAcquisitionError: jika wait berhenti tanpa lock (misalnya interrupted)
        """
        handle = await self.variant.acquire(key, lease)
        if handle is None:
            raise LockAcquisitionError(key, "Wait for lock interrupted")
        return handle

    async def try_acquire(self, key: str, wait: float,
                          lease: Optional[float] = None) -> Optional[LockHandle]:
        return await self.variant.try_acquire(key, wait, lease)

    async def release(self, handle: LockHandle) -> bool:
        if handle is None:
            return False
        return await self.variant.release(handle)

    @asynccontextmanager
    async def hold(self, key: str, wait: float, lease: Optional[float] = None):
        """
        Context manager: acquire lock, yield handle, lalu release.

        Contoh penggunaan:
            async with facade.hold('order:42', wait=5, lease=30) as handle:
                # exclusive work
                pass
        """
        handle = await self.try_acquire(key, wait, lease)
        if handle is None:
            raise LockAcquisitionError(key, f"Could not acquire lock within {wait}s")
        try:
            yield handle
        finally:
            await self.release(handle)


def locked(facade: LockFacade, key: Union[str, Callable[..., str]],
           wait: float = 10.0, lease: Optional[float] = None):
    """
    Decorator untuk async function yang harus jalan dengan lock.

    Args:
        facade: LockFacade yang dipakai
        key: Lock name, atau callable yang menerima argumen function
             dan return lock name
        wait: Maximum wait (seconds)
        lease: Lease (seconds)

    Contoh:
        @locked(facade, lambda order_id: f"order:{order_id}", wait=10, lease=3)
        async def process(order_id):
            ...
    """
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"@locked requires an async function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            lock_key = key(*args, **kwargs) if callable(key) else key
            async with facade.hold(lock_key, wait, lease):
                return await func(*args, **kwargs)

        return wrapper

    return decorator
