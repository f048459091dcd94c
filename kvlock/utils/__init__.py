"""
Utils package initialization.
Import semua utilities di sini agar mudah diakses.
"""

from .config import KVLockConfig, DEFAULT_BUCKET_COUNT
from .metrics import metrics, measure_time

__all__ = ['KVLockConfig', 'DEFAULT_BUCKET_COUNT', 'metrics', 'measure_time']
