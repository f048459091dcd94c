"""Store package: key bucketing dan Redis accessor"""

from .base import KeyValueStore
from .partitioner import KeyPartitioner, recommended_bucket_count
from .redis_store import RedisStore

__all__ = ['KeyValueStore', 'KeyPartitioner', 'recommended_bucket_count', 'RedisStore']
