"""
Fair Lock di atas Redis.

Waiters dilayani sesuai urutan kedatangan (FIFO):
- <name>:queue     list berisi token waiter sesuai urutan
- <name>:timeouts  zset token -> deadline heartbeat waiter (epoch ms)

Setiap poll memperbarui heartbeat waiter. Waiter yang heartbeat-nya lewat
(misalnya process crash saat menunggu) dibuang dari head queue supaya
tidak memblokir waiter lain.

Interface mengikuti redis.asyncio.lock.Lock supaya ManagedLock bisa
memakai keduanya dengan cara yang sama.
"""

import asyncio
import time
import uuid
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import LockError, LockNotOwnedError


class FairLock:
    """FIFO distributed lock. Token disimpan di instance."""

    LUA_ACQUIRE_SCRIPT = """
        local now = tonumber(ARGV[3])
        while true do
            local head = redis.call('lindex', KEYS[2], 0)
            if not head then
                break
            end
            local deadline = redis.call('zscore', KEYS[3], head)
            if deadline == false or tonumber(deadline) < now then
                redis.call('lpop', KEYS[2])
                redis.call('zrem', KEYS[3], head)
            else
                break
            end
        end
        if redis.call('exists', KEYS[1]) == 0 then
            local head = redis.call('lindex', KEYS[2], 0)
            if head == false or head == ARGV[1] then
                if head then
                    redis.call('lpop', KEYS[2])
                    redis.call('zrem', KEYS[3], ARGV[1])
                end
                if tonumber(ARGV[2]) > 0 then
                    redis.call('set', KEYS[1], ARGV[1], 'px', ARGV[2])
                else
                    redis.call('set', KEYS[1], ARGV[1])
                end
                return 1
            end
        end
        if redis.call('zscore', KEYS[3], ARGV[1]) == false then
            redis.call('rpush', KEYS[2], ARGV[1])
        end
        redis.call('zadd', KEYS[3], ARGV[4], ARGV[1])
        redis.call('pexpire', KEYS[2], ARGV[5])
        redis.call('pexpire', KEYS[3], ARGV[5])
        return 0
    """

    LUA_CANCEL_SCRIPT = """
        redis.call('lrem', KEYS[1], 0, ARGV[1])
        redis.call('zrem', KEYS[2], ARGV[1])
        return 1
    """

    LUA_RELEASE_SCRIPT = """
        if redis.call('get', KEYS[1]) ~= ARGV[1] then
            return 0
        end
        redis.call('del', KEYS[1])
        return 1
    """

    LUA_EXTEND_SCRIPT = """
        if redis.call('get', KEYS[1]) ~= ARGV[1] then
            return 0
        end
        local expiration = redis.call('pttl', KEYS[1])
        if expiration < 0 then
            expiration = 0
        end
        if ARGV[3] == '1' then
            redis.call('pexpire', KEYS[1], ARGV[2])
        else
            redis.call('pexpire', KEYS[1], expiration + tonumber(ARGV[2]))
        end
        return 1
    """

    def __init__(self,
                 redis: aioredis.Redis,
                 name: str,
                 timeout: Optional[float] = None,
                 sleep: float = 0.1,
                 waiter_timeout: float = 5.0):
        """
        Args:
            redis: Redis client
            name: Lock key
            timeout: Lease dalam seconds, None = hold sampai release
            sleep: Jeda antar poll saat blocking
            waiter_timeout: Waiter tanpa heartbeat selama ini dibuang dari queue
        """
        if sleep >= waiter_timeout:
            raise LockError("'sleep' must be less than 'waiter_timeout'")
        self.redis = redis
        self.name = name
        self.queue_name = f"{name}:queue"
        self.timeouts_name = f"{name}:timeouts"
        self.timeout = timeout
        self.sleep = sleep
        self.waiter_timeout = waiter_timeout
        self.token: Optional[str] = None

        self.lua_acquire = redis.register_script(self.LUA_ACQUIRE_SCRIPT)
        self.lua_cancel = redis.register_script(self.LUA_CANCEL_SCRIPT)
        self.lua_release = redis.register_script(self.LUA_RELEASE_SCRIPT)
        self.lua_extend = redis.register_script(self.LUA_EXTEND_SCRIPT)

    async def acquire(self,
                      blocking: bool = True,
                      blocking_timeout: Optional[float] = None,
                      token: Optional[str] = None) -> bool:
        """
        Acquire lock sesuai urutan antrian.

        Returns:
            True jika lock didapat, False jika non-blocking / timeout
        """
        token = token or uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        stop_trying_at = None
        if blocking_timeout is not None:
            stop_trying_at = loop.time() + blocking_timeout

        try:
            while True:
                if await self._do_acquire(token):
                    self.token = token
                    return True
                if not blocking:
                    break
                next_try_at = loop.time() + self.sleep
                if stop_trying_at is not None and next_try_at > stop_trying_at:
                    break
                await asyncio.sleep(self.sleep)
        except asyncio.CancelledError:
            await self._cancel(token)
            raise

        await self._cancel(token)
        return False

    async def _do_acquire(self, token: str) -> bool:
        now_ms = int(time.time() * 1000)
        waiter_ms = int(self.waiter_timeout * 1000)
        lease_ms = max(1, int(self.timeout * 1000)) if self.timeout else 0
        result = await self.lua_acquire(
            keys=[self.name, self.queue_name, self.timeouts_name],
            args=[token, lease_ms, now_ms, now_ms + waiter_ms, waiter_ms * 2],
        )
        return int(result) == 1

    async def _cancel(self, token: str):
        # Keluar dari antrian supaya tidak memblokir waiter berikutnya
        await self.lua_cancel(keys=[self.queue_name, self.timeouts_name], args=[token])

    async def locked(self) -> bool:
        """True jika lock dipegang oleh siapa pun"""
        return await self.redis.get(self.name) is not None

    async def owned(self) -> bool:
        """True jika lock dipegang oleh instance ini"""
        if self.token is None:
            return False
        stored = await self.redis.get(self.name)
        if isinstance(stored, bytes):
            stored = stored.decode()
        return stored == self.token

    async def release(self):
        if self.token is None:
            raise LockError("Cannot release an unlocked lock", lock_name=self.name)
        token, self.token = self.token, None
        released = await self.lua_release(keys=[self.name], args=[token])
        if not int(released):
            raise LockNotOwnedError("Cannot release a lock that's no longer owned",
                                    lock_name=self.name)

    async def extend(self, additional_time: float, replace_ttl: bool = False) -> bool:
        """Perpanjang lease. replace_ttl=True mengganti sisa TTL dengan additional_time"""
        if self.token is None:
            raise LockError("Cannot extend an unlocked lock", lock_name=self.name)
        extended = await self.lua_extend(
            keys=[self.name],
            args=[self.token, int(additional_time * 1000), '1' if replace_ttl else '0'],
        )
        if not int(extended):
            raise LockNotOwnedError("Cannot extend a lock that's no longer owned",
                                    lock_name=self.name)
        return True

    def __repr__(self):
        return f"FairLock({self.name}, timeout={self.timeout})"
