"""
Redis store accessor.

Semua key di-route lewat KeyPartitioner, jadi jika bucketing enabled,
key "user:1" akan disimpan sebagai bucket id (misalnya "1873").
Redis errors dikonversi ke StoreUnavailable supaya caller (locks)
bisa menanganinya per attempt.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .partitioner import KeyPartitioner
from ..exceptions import StoreUnavailable
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)

# Compare-and-delete, atomic di sisi Redis
DELETE_IF_EQUALS_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def _ttl_millis(ttl: Optional[float]) -> Optional[int]:
    """Convert ttl seconds ke milliseconds, None/<=0 berarti tanpa expiry"""
    if ttl is None or ttl <= 0:
        return None
    return max(1, int(ttl * 1000))


class RedisStore:
    """
    KeyValueStore di atas redis.asyncio.

    Client harus dibuat dengan decode_responses=True supaya
    semua value dikembalikan sebagai str.
    """

    def __init__(self, client: aioredis.Redis, partitioner: Optional[KeyPartitioner] = None):
        """
        Args:
            client: Redis client (decode_responses=True)
            partitioner: KeyPartitioner, default identity mapping
        """
        self.client = client
        self.partitioner = partitioner or KeyPartitioner.disabled()
        self._delete_if_equals = client.register_script(DELETE_IF_EQUALS_LUA)

    @classmethod
    def from_config(cls, config) -> 'RedisStore':
        return cls(config.redis_client(), KeyPartitioner.from_config(config))

    def unpartitioned(self) -> 'RedisStore':
        """Store view dengan client yang sama, tanpa bucketing"""
        if not self.partitioner.enabled:
            return self
        return RedisStore(self.client, KeyPartitioner.disabled())

    def physical_key(self, key: str) -> str:
        return self.partitioner.bucket_of(key)

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except RedisError as e:
            metrics.record_store_error(operation)
            logger.error(f"Redis {operation} failed: {e}")
            raise StoreUnavailable(operation, e) from e

    async def ping(self) -> bool:
        with self._guard('ping'):
            return bool(await self.client.ping())

    # ========================== value ==========================

    async def set_if_absent(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        with self._guard('set_if_absent'):
            result = await self.client.set(
                self.physical_key(key), value, nx=True, px=_ttl_millis(ttl)
            )
            return bool(result)

    async def get(self, key: str) -> Optional[str]:
        with self._guard('get'):
            return await self.client.get(self.physical_key(key))

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        with self._guard('set'):
            return bool(await self.client.set(self.physical_key(key), value, px=_ttl_millis(ttl)))

    async def delete(self, key: str) -> bool:
        with self._guard('delete'):
            return await self.client.delete(self.physical_key(key)) == 1

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        with self._guard('delete_if_equals'):
            removed = await self._delete_if_equals(keys=[self.physical_key(key)], args=[expected])
            return int(removed) == 1

    async def expire(self, key: str, seconds: float) -> bool:
        ttl = _ttl_millis(seconds)
        if ttl is None:
            return False
        with self._guard('expire'):
            return bool(await self.client.pexpire(self.physical_key(key), ttl))

    async def exists(self, key: str) -> bool:
        with self._guard('exists'):
            return await self.client.exists(self.physical_key(key)) == 1

    async def ttl(self, key: str) -> int:
        """Sisa TTL dalam seconds (-1 tanpa expiry, -2 jika key tidak ada)"""
        with self._guard('ttl'):
            return await self.client.ttl(self.physical_key(key))

    # ========================== hash ==========================

    async def hash_get(self, key: str, field: str) -> Optional[str]:
        with self._guard('hash_get'):
            return await self.client.hget(self.physical_key(key), field)

    async def hash_get_all(self, key: str) -> Dict[str, str]:
        with self._guard('hash_get_all'):
            return await self.client.hgetall(self.physical_key(key))

    async def hash_put(self, key: str, field: str, value: str) -> bool:
        with self._guard('hash_put'):
            await self.client.hset(self.physical_key(key), field, value)
            return True

    async def hash_put_all(self, key: str, mapping: Dict[str, str], ttl: Optional[float] = None) -> bool:
        """HSET banyak field sekaligus, plus expiry dalam satu pipeline"""
        if not mapping:
            return False
        physical = self.physical_key(key)
        with self._guard('hash_put_all'):
            async with self.client.pipeline(transaction=False) as pipe:
                pipe.hset(physical, mapping=mapping)
                ttl_ms = _ttl_millis(ttl)
                if ttl_ms is not None:
                    pipe.pexpire(physical, ttl_ms)
                await pipe.execute()
            return True

    async def hash_delete(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        with self._guard('hash_delete'):
            return await self.client.hdel(self.physical_key(key), *fields)

    # ====================== compact storage ======================

    async def put_compact(self, key: str, item: str, value: Any) -> bool:
        """
        Simpan value di bucket(key) dengan field(item).

        Jika dua item menghasilkan field yang sama, value lama
        akan di-overwrite.
        """
        bucket, field = self.partitioner.locate(key, item)
        with self._guard('put_compact'):
            await self.client.hset(bucket, field, json.dumps(value))
            return True

    async def get_compact(self, key: str, item: str) -> Any:
        """Get value yang disimpan dengan put_compact, None jika tidak ada"""
        bucket, field = self.partitioner.locate(key, item)
        with self._guard('get_compact'):
            raw = await self.client.hget(bucket, field)
        if raw is None:
            return None
        return json.loads(raw)

    async def delete_compact(self, key: str, item: str) -> bool:
        bucket, field = self.partitioner.locate(key, item)
        with self._guard('delete_compact'):
            return await self.client.hdel(bucket, field) == 1

    async def close(self):
        """Close Redis connection"""
        await self.client.aclose()
