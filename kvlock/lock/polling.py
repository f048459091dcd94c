"""
Polling Lock.
Mutual exclusion langsung di atas primitive store:
- SET NX dengan TTL untuk acquire
- Client-side polling sampai wait_seconds habis
- Stale lock detection: jika holder crash tanpa release,
  record diperbaiki supaya TTL berjalan lagi
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..exceptions import InvalidLockConfig, MalformedLockRecord, StoreUnavailable
from ..store.base import KeyValueStore
from ..utils.metrics import metrics, measure_time

logger = logging.getLogger(__name__)

LOCK_PREFIX = 'lock:'
SEPARATOR = '$T$'

# Lease terpanjang adalah 1 hari
MAX_EXPIRE_SECONDS = 24 * 60 * 60

# Selisih jam antar server tidak boleh lebih dari 15 detik
CLOCK_SKEW_SECONDS = 15

POLL_INTERVAL = 0.5


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class LockRecord:
    """Value dari lock key: <acquired_at_millis>$T$<owner_token>"""
    acquired_at: int
    owner_token: str

    def encode(self) -> str:
        return f"{self.acquired_at}{SEPARATOR}{self.owner_token}"

    @classmethod
    def parse(cls, raw: str) -> 'LockRecord':
        head, sep, owner = raw.partition(SEPARATOR)
        if not sep or not head:
            raise MalformedLockRecord(raw)
        try:
            acquired_at = int(head)
        except ValueError:
            raise MalformedLockRecord(raw) from None
        return cls(acquired_at=acquired_at, owner_token=owner)

    def is_stale(self, now_ms: int, lease_seconds: float, skew_seconds: float = CLOCK_SKEW_SECONDS) -> bool:
        """Holder dianggap mati jika lease + skew sudah lewat"""
        return now_ms - self.acquired_at > (lease_seconds + skew_seconds) * 1000


def validate_timing(lease_seconds: Optional[float] = None, wait_seconds: Optional[float] = None):
    """Lease dan wait harus non-negative, dicek sebelum menyentuh store"""
    if lease_seconds is not None and lease_seconds < 0:
        raise InvalidLockConfig(f"lease must be non-negative, got {lease_seconds}")
    if wait_seconds is not None and wait_seconds < 0:
        raise InvalidLockConfig(f"wait must be non-negative, got {wait_seconds}")


class PollingLock:
    """
    Distributed lock berbasis SET NX + polling.

    Tidak fair dan tidak reentrant: siapa pun yang SET NX duluan menang.
    Lock keys selalu disimpan tanpa bucketing, karena dua nama lock yang
    masuk ke bucket yang sama akan saling overwrite.
    """

    variant = 'polling'

    def __init__(self,
                 store: KeyValueStore,
                 poll_interval: float = POLL_INTERVAL,
                 clock_skew: float = CLOCK_SKEW_SECONDS,
                 clock=now_millis):
        """
        Args:
            store: KeyValueStore (akan dipakai versi unpartitioned)
            poll_interval: Jeda antar attempt (seconds)
            clock_skew: Toleransi selisih jam antar process (seconds)
            clock: Callable yang return epoch milliseconds
        """
        self.store = store.unpartitioned()
        self.poll_interval = poll_interval
        self.clock_skew = clock_skew
        self.clock = clock

    @classmethod
    def from_config(cls, config, store: KeyValueStore) -> 'PollingLock':
        return cls(store, poll_interval=config.poll_interval)

    @staticmethod
    def physical_key(key: str) -> str:
        return LOCK_PREFIX + key

    async def acquire(self,
                      key: str,
                      owner_token: str,
                      lease_seconds: float,
                      wait_seconds: Optional[float] = 0) -> bool:
        """
        Acquire lock, retry setiap poll_interval sampai wait_seconds habis.

        Args:
            key: Logical lock name
            owner_token: Identitas pemilik lock
            lease_seconds: TTL lock di Redis (harus > 0)
            wait_seconds: 0 = satu attempt saja, None = tunggu terus

        Returns:
            True jika lock didapat, False jika timeout / interrupted
        """
        validate_timing(lease_seconds, wait_seconds)
        if lease_seconds == 0:
            raise InvalidLockConfig("lease must be positive for a polling lock")

        loop = asyncio.get_running_loop()
        start = loop.time()
        record = None

        with measure_time() as timer:
            try:
                while True:
                    record = LockRecord(acquired_at=self.clock(), owner_token=owner_token)
                    if await self._attempt_safely(key, record, lease_seconds):
                        metrics.record_wait(self.variant, loop.time() - start)
                        return True

                    if wait_seconds == 0:
                        break
                    if wait_seconds is None:
                        await asyncio.sleep(self.poll_interval)
                        continue

                    remaining = wait_seconds - (loop.time() - start)
                    if remaining <= 0:
                        break
                    await asyncio.sleep(min(self.poll_interval, remaining))

            except asyncio.CancelledError:
                logger.warning(f"Wait for lock {key} interrupted")
                if record is not None:
                    # SET NX bisa sudah dijalankan Redis sebelum cancel sampai
                    await asyncio.shield(self._discard(self.physical_key(key), record.encode()))
                return False

        metrics.record_wait(self.variant, timer.elapsed)
        logger.warning(f"Failed to acquire lock {key} for owner {owner_token} "
                       f"(waited {timer.elapsed:.2f}s)")
        return False

    async def _attempt_safely(self, key: str, record: LockRecord, lease_seconds: float) -> bool:
        """Satu attempt; store errors dihitung sebagai attempt gagal"""
        try:
            acquired = await self._attempt(key, record, lease_seconds)
        except StoreUnavailable as e:
            logger.error(f"Lock attempt on {key} failed: {e}")
            acquired = False
        metrics.record_attempt(self.variant, acquired)
        return acquired

    async def _attempt(self, key: str, record: LockRecord, lease_seconds: float) -> bool:
        physical = self.physical_key(key)
        expire = min(lease_seconds, MAX_EXPIRE_SECONDS)
        now = record.acquired_at

        logger.debug(f"Trying lock {physical} for owner {record.owner_token}")

        if await self.store.set_if_absent(physical, record.encode(), ttl=expire):
            metrics.lock_held()
            logger.info(f"Acquired lock {physical} for owner {record.owner_token}")
            return True

        # Lock sudah ada, check apakah holder sudah mati
        raw = await self.store.get(physical)
        if raw is None:
            # Expired di antara SET NX dan GET, attempt berikutnya bisa dapat
            return False

        try:
            current = LockRecord.parse(raw)
        except MalformedLockRecord:
            logger.warning(f"Malformed lock record on {physical}: {raw!r}, leaving untouched")
            return False

        if current.is_stale(now, lease_seconds, self.clock_skew):
            # Overwrite tanpa syarat supaya TTL berjalan lagi; caller ini
            # tetap belum memegang lock
            await self.store.set(physical, record.encode(), ttl=expire)
            metrics.record_stale_reclaim()
            logger.warning(f"Stale lock detected on {physical} (record {raw!r}), "
                           f"re-armed to expire in {expire}s")
        else:
            logger.debug(f"Lock {physical} is held: {raw!r}")

        return False

    async def release(self, key: str, owner_token: Optional[str] = None) -> bool:
        """
        Release lock.

        Jika owner_token diberikan, lock hanya dihapus jika record masih
        milik owner tersebut (compare-and-delete). Tanpa owner_token,
        key dihapus tanpa syarat.

        Returns:
            True jika tepat satu entry terhapus
        """
        physical = self.physical_key(key)
        try:
            if owner_token is None:
                released = await self.store.delete(physical)
            else:
                released = await self._release_owned(physical, owner_token)
        except StoreUnavailable as e:
            logger.error(f"Failed to release lock {physical}: {e}")
            return False

        if released:
            metrics.lock_released()
            logger.info(f"Released lock {physical}")
        else:
            logger.warning(f"Lock {physical} was not released (absent or owned by someone else)")
        return released

    async def _discard(self, physical: str, encoded: str):
        """Hapus record dari attempt yang di-cancel, hanya jika masih persis sama"""
        try:
            if await self.store.delete_if_equals(physical, encoded):
                logger.warning(f"Removed lock {physical} written by an interrupted attempt")
        except StoreUnavailable as e:
            logger.error(f"Failed to clean up interrupted lock {physical}: {e}")

    async def _release_owned(self, physical: str, owner_token: str) -> bool:
        raw = await self.store.get(physical)
        if raw is None:
            return False
        try:
            current = LockRecord.parse(raw)
        except MalformedLockRecord:
            return False
        if current.owner_token != owner_token:
            return False
        return await self.store.delete_if_equals(physical, raw)

    async def inspect(self, key: str) -> Optional[LockRecord]:
        """Return record lock saat ini, None jika tidak ada atau malformed"""
        raw = await self.store.get(self.physical_key(key))
        if raw is None:
            return None
        try:
            return LockRecord.parse(raw)
        except MalformedLockRecord:
            return None
