"""
Unit tests untuk RedisStore (value, hash, dan compact storage).
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from kvlock.exceptions import StoreUnavailable


@pytest.mark.asyncio
async def test_set_if_absent_with_ttl(store, redis_client):
    assert await store.set_if_absent('k1', 'v1', ttl=10) is True
    assert await store.set_if_absent('k1', 'v2', ttl=10) is False

    assert await store.get('k1') == 'v1'
    assert 0 < await redis_client.ttl('k1') <= 10


@pytest.mark.asyncio
async def test_set_without_ttl_and_expire(store):
    await store.set('k2', 'v')
    assert await store.ttl('k2') == -1

    assert await store.expire('k2', 30) is True
    assert 0 < await store.ttl('k2') <= 30

    # Expire dengan 0 tidak menyentuh key
    assert await store.expire('k2', 0) is False


@pytest.mark.asyncio
async def test_delete_and_delete_if_equals(store):
    await store.set('k3', 'owner-a')

    assert await store.delete_if_equals('k3', 'owner-b') is False
    assert await store.exists('k3') is True

    assert await store.delete_if_equals('k3', 'owner-a') is True
    assert await store.exists('k3') is False

    await store.set('k4', 'x')
    assert await store.delete('k4') is True
    assert await store.delete('k4') is False


@pytest.mark.asyncio
async def test_hash_operations(store, redis_client):
    assert await store.hash_put('h', 'f1', 'v1') is True
    assert await store.hash_get('h', 'f1') == 'v1'

    assert await store.hash_put_all('h', {'f2': 'v2', 'f3': 'v3'}, ttl=60) is True
    assert await store.hash_get_all('h') == {'f1': 'v1', 'f2': 'v2', 'f3': 'v3'}
    assert 0 < await redis_client.ttl('h') <= 60

    assert await store.hash_delete('h', 'f1', 'f2') == 2
    assert await store.hash_get('h', 'f1') is None
    assert await store.hash_put_all('h', {}) is False


@pytest.mark.asyncio
async def test_bucketing_routes_keys_to_bucket(bucketed_store, redis_client):
    """Dengan bucketing, physical key adalah bucket id"""
    await bucketed_store.set('user:1', 'alice')

    bucket = bucketed_store.partitioner.bucket_of('user:1')
    assert bucket in {'0', '1', '2'}
    assert await redis_client.get(bucket) == 'alice'
    assert await redis_client.get('user:1') is None


@pytest.mark.asyncio
async def test_unpartitioned_view_shares_client(bucketed_store, redis_client):
    raw = bucketed_store.unpartitioned()

    assert raw.client is bucketed_store.client
    assert raw.partitioner.enabled is False

    await raw.set('lock:a', 'x')
    assert await redis_client.get('lock:a') == 'x'


@pytest.mark.asyncio
async def test_compact_storage_round_trip(bucketed_store, redis_client):
    await bucketed_store.put_compact('users', 'zs', {'name': 'Zhang San', 'age': 21})

    assert await bucketed_store.get_compact('users', 'zs') == {'name': 'Zhang San', 'age': 21}
    assert await bucketed_store.get_compact('users', 'missing') is None

    bucket, field = bucketed_store.partitioner.locate('users', 'zs')
    assert await redis_client.hexists(bucket, field)

    assert await bucketed_store.delete_compact('users', 'zs') is True
    assert await bucketed_store.get_compact('users', 'zs') is None


@pytest.mark.asyncio
async def test_compact_field_collision_overwrites(bucketed_store):
    """'Aa' dan 'BB' punya field yang sama, value terakhir menang"""
    await bucketed_store.put_compact('users', 'Aa', 1)
    await bucketed_store.put_compact('users', 'BB', 2)

    assert await bucketed_store.get_compact('users', 'Aa') == 2


@pytest.mark.asyncio
async def test_redis_error_becomes_store_unavailable(store, monkeypatch):
    async def broken_get(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(store.client, 'get', broken_get)

    with pytest.raises(StoreUnavailable) as exc_info:
        await store.get('k')

    assert exc_info.value.operation == 'get'


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
