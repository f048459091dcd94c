"""
Shared fixtures: Redis palsu (fakeredis) per test, supaya test
tidak butuh Redis server.
"""

import fakeredis
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from kvlock.store.partitioner import KeyPartitioner
from kvlock.store.redis_store import RedisStore


@pytest_asyncio.fixture
async def redis_client():
    """Fresh FakeAsyncRedis dengan server sendiri untuk setiap test"""
    client = FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def store(redis_client):
    """RedisStore tanpa bucketing"""
    return RedisStore(redis_client)


@pytest_asyncio.fixture
async def bucketed_store(redis_client):
    """RedisStore dengan bucketing, 3 bucket"""
    return RedisStore(redis_client, KeyPartitioner(enabled=True, bucket_count=3))
