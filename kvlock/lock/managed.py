"""
Managed Lock.
Mutual exclusion yang didelegasikan ke lock service di atas Redis:
- Unfair mode: redis.asyncio.lock.Lock (redis-py)
- Fair mode: FairLock (FIFO queue)
- Blocking dan bounded wait acquire
- Lease dengan auto-expiry, atau None untuk hold sampai unlock
- Lease renewal
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio.lock import Lock
from redis.exceptions import RedisError

from .base import LockHandle
from .fair import FairLock
from .polling import LOCK_PREFIX, validate_timing
from ..exceptions import InvalidLockConfig
from ..store.redis_store import DELETE_IF_EQUALS_LUA
from ..utils.metrics import metrics, measure_time

logger = logging.getLogger(__name__)


class ManagedLock:
    """
    Lock berbasis lock service.

    Fairness dipilih per instance (default dari config) dan bisa
    di-override per call.
    """

    variant = 'managed'

    def __init__(self,
                 redis: aioredis.Redis,
                 fair: bool = False,
                 poll_interval: float = 0.5,
                 sleep: float = 0.1):
        """
        Args:
            redis: Redis client
            fair: Default fairness untuk lock baru
            poll_interval: Jeda retry saat Redis tidak tersedia
            sleep: Jeda antar poll di dalam lock service
        """
        self.redis = redis
        self.fair = fair
        self.poll_interval = poll_interval
        self.sleep = sleep
        self._delete_if_equals = redis.register_script(DELETE_IF_EQUALS_LUA)

    @classmethod
    def from_config(cls, config, redis: aioredis.Redis) -> 'ManagedLock':
        return cls(redis, fair=config.fair, poll_interval=config.poll_interval)

    def _get_lock(self, key: str, lease: Optional[float], fair: Optional[bool]):
        name = LOCK_PREFIX + key
        # Lock service menolak sleep >= lease
        sleep = min(self.sleep, lease / 2) if lease else self.sleep
        if self.fair if fair is None else fair:
            return FairLock(self.redis, name, timeout=lease, sleep=sleep)
        return self.redis.lock(name, timeout=lease, sleep=sleep, thread_local=False)

    @staticmethod
    def _validate(lease: Optional[float], wait: Optional[float] = None):
        validate_timing(lease, wait)
        if lease == 0:
            raise InvalidLockConfig("lease must be positive, or None for no expiry")
        # Lease disimpan dalam milliseconds
        if lease is not None and lease < 0.001:
            raise InvalidLockConfig(f"lease must be at least 1ms, got {lease}")

    async def lock(self, key: str, lease: Optional[float] = None,
                   fair: Optional[bool] = None) -> LockHandle:
        """
        Acquire lock, block sampai didapat.

        Args:
            key: Logical lock name
            lease: Lease dalam seconds, None = hold sampai unlock
            fair: Override fairness, None = pakai default instance
        """
        self._validate(lease)
        token = uuid.uuid4().hex
        lock = self._get_lock(key, lease, fair)

        with measure_time() as timer:
            while True:
                try:
                    acquired = await lock.acquire(blocking=True, blocking_timeout=None, token=token)
                except asyncio.CancelledError:
                    logger.error(f"Wait for managed lock {key} interrupted")
                    await asyncio.shield(self._discard(lock.name, token))
                    raise
                except RedisError as e:
                    metrics.record_store_error('lock')
                    logger.error(f"Error acquiring lock {key}, retrying: {e}")
                    await asyncio.sleep(self.poll_interval)
                    continue
                if acquired:
                    break

        metrics.record_attempt(self.variant, True)
        metrics.record_wait(self.variant, timer.elapsed)
        metrics.lock_held()
        logger.info(f"Acquired managed lock {key} (fair={isinstance(lock, FairLock)})")
        return LockHandle(key=key, owner_token=token, variant=self.variant, lock=lock)

    async def try_lock(self, key: str, wait: float, lease: Optional[float] = None,
                       fair: Optional[bool] = None) -> Optional[LockHandle]:
        """
        Coba acquire lock, tunggu maksimal wait seconds.

        Returns:
            LockHandle jika didapat, None jika timeout / interrupted / Redis error
        """
        self._validate(lease, wait)
        token = uuid.uuid4().hex
        lock = self._get_lock(key, lease, fair)

        with measure_time() as timer:
            try:
                acquired = await lock.acquire(
                    blocking=wait > 0, blocking_timeout=wait, token=token
                )
            except asyncio.CancelledError:
                logger.error(f"Wait for managed lock {key} interrupted")
                await asyncio.shield(self._discard(lock.name, token))
                acquired = False
            except RedisError as e:
                metrics.record_store_error('try_lock')
                logger.error(f"Error trying managed lock {key}: {e}")
                acquired = False

        metrics.record_attempt(self.variant, acquired)
        metrics.record_wait(self.variant, timer.elapsed)
        if not acquired:
            logger.warning(f"Failed to acquire managed lock {key} within {wait}s")
            return None

        metrics.lock_held()
        logger.info(f"Acquired managed lock {key} (fair={isinstance(lock, FairLock)})")
        return LockHandle(key=key, owner_token=token, variant=self.variant, lock=lock)

    async def _discard(self, name: str, token: str):
        """Hapus lock yang mungkin sudah di-set oleh acquire yang di-cancel"""
        try:
            if int(await self._delete_if_equals(keys=[name], args=[token])):
                logger.warning(f"Removed managed lock {name} taken by an interrupted acquire")
        except RedisError as e:
            logger.error(f"Failed to clean up interrupted managed lock {name}: {e}")

    @staticmethod
    def _unwrap(handle: Any):
        lock = handle.lock if isinstance(handle, LockHandle) else handle
        if isinstance(lock, (Lock, FairLock)):
            return lock
        return None

    async def unlock(self, handle: Any) -> bool:
        """
        Release lock jika masih dipegang oleh handle ini.

        Returns:
            True jika released, False jika handle tidak valid atau lock tidak dipegang
        """
        if handle is None:
            return False

        lock = self._unwrap(handle)
        if lock is None:
            logger.error(f"Unlock failed, not a managed lock: {handle!r}")
            return False

        try:
            if await lock.owned():
                await lock.release()
                metrics.lock_released()
                logger.info(f"Released managed lock {lock.name}")
                return True
        except RedisError as e:
            logger.error(f"Error releasing managed lock {lock.name}: {e}")
            return False

        logger.error(f"Unlock failed, lock {lock.name} is not held")
        return False

    async def renew(self, handle: Any, lease: float) -> bool:
        """Reset sisa lease menjadi lease seconds"""
        self._validate(lease)
        lock = self._unwrap(handle)
        if lock is None or lease is None:
            return False
        try:
            return bool(await lock.extend(lease, replace_ttl=True))
        except RedisError as e:
            logger.error(f"Failed to renew managed lock {lock.name}: {e}")
            return False
