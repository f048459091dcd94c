"""
kvlock

Redis key bucketing dan distributed locks:
- KeyPartitioner untuk compact storage (CRC32 bucket + BKDR field)
- PollingLock dengan SET NX, polling, dan stale lock recovery
- ManagedLock dengan fair / unfair lock service
- LockFacade untuk memilih variant dari config
"""

__version__ = "1.0.0"
__author__ = "Your Name"
