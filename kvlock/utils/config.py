"""
Configuration manager untuk kvlock.
File ini membaca environment variables dan menyediakan
konfigurasi immutable yang di-pass ke constructor setiap komponen.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

import redis.asyncio as aioredis
from dotenv import load_dotenv

from ..exceptions import InvalidLockConfig

# Load environment variables dari .env file
load_dotenv()

# Minimal jumlah bucket: 10 juta key / 512 field per bucket = 19531, plus headroom
DEFAULT_BUCKET_COUNT = 25000

LOCK_VARIANTS = ('polling', 'managed')


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class KVLockConfig:
    """Semua konfigurasi sistem, di-set sekali saat startup"""

    # Redis Configuration
    redis_host: str = 'localhost'
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    # Bucketing Configuration
    bucketing_enabled: bool = False
    bucket_count: int = DEFAULT_BUCKET_COUNT

    # Lock Configuration
    lock_variant: str = 'polling'
    fair: bool = False
    default_lease: float = 30.0
    poll_interval: float = 0.5

    # Node Configuration
    node_host: str = 'localhost'
    node_port: int = 5000

    # Logging
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    def __post_init__(self):
        if self.bucket_count <= 0:
            raise InvalidLockConfig(f"bucket_count must be positive, got {self.bucket_count}")
        if self.lock_variant not in LOCK_VARIANTS:
            raise InvalidLockConfig(
                f"lock_variant must be one of {LOCK_VARIANTS}, got {self.lock_variant!r}"
            )
        if self.default_lease <= 0:
            raise InvalidLockConfig(f"default_lease must be positive, got {self.default_lease}")
        if self.poll_interval <= 0:
            raise InvalidLockConfig(f"poll_interval must be positive, got {self.poll_interval}")

    @property
    def effective_bucket_count(self) -> int:
        """Bucket count hanya dinaikkan jika value yang diberikan lebih besar dari default"""
        return max(DEFAULT_BUCKET_COUNT, self.bucket_count)

    @classmethod
    def from_env(cls) -> 'KVLockConfig':
        """Build config dari environment variables (dan .env file)"""
        return cls(
            redis_host=os.getenv('REDIS_HOST', 'localhost'),
            redis_port=int(os.getenv('REDIS_PORT', 6379)),
            redis_db=int(os.getenv('REDIS_DB', 0)),
            redis_password=os.getenv('REDIS_PASSWORD') or None,
            bucketing_enabled=_env_bool('KVLOCK_BUCKETING_ENABLED', False),
            bucket_count=int(os.getenv('KVLOCK_BUCKET_COUNT', DEFAULT_BUCKET_COUNT)),
            lock_variant=os.getenv('KVLOCK_LOCK_VARIANT', 'polling').lower(),
            fair=_env_bool('KVLOCK_FAIR', False),
            default_lease=float(os.getenv('KVLOCK_DEFAULT_LEASE', 30)),
            poll_interval=float(os.getenv('KVLOCK_POLL_INTERVAL', 0.5)),
            node_host=os.getenv('NODE_HOST', 'localhost'),
            node_port=int(os.getenv('NODE_PORT', 5000)),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_file=os.getenv('LOG_FILE') or None,
        )

    def with_overrides(self, **changes) -> 'KVLockConfig':
        """Return copy dengan beberapa field diganti"""
        return replace(self, **changes)

    def redis_client(self) -> aioredis.Redis:
        """Create Redis client sesuai konfigurasi"""
        return aioredis.Redis(
            host=self.redis_host,
            port=self.redis_port,
            db=self.redis_db,
            password=self.redis_password,
            decode_responses=True
        )

    def display(self):
        """Print semua konfigurasi untuk debugging"""
        print("=== Configuration ===")
        print(f"Redis: {self.redis_host}:{self.redis_port}/{self.redis_db}")
        print(f"Bucketing: {self.bucketing_enabled} (buckets={self.effective_bucket_count})")
        print(f"Lock variant: {self.lock_variant} (fair={self.fair})")
        print(f"Node Address: {self.node_host}:{self.node_port}")
        print("=" * 30)


# Test configuration saat file dijalankan langsung
if __name__ == "__main__":
    KVLockConfig.from_env().display()
