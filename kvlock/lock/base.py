"""Kontrak bersama untuk semua lock variants."""

import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass
class LockHandle:
    """
    Ownership token yang dikembalikan saat acquire.

    Attributes:
        key: Logical lock name
        owner_token: Token unik pemilik lock
        variant: 'polling' atau 'managed'
        lock: Object lock dari lock service (hanya untuk managed)
        acquired_at: Epoch seconds saat lock didapat
    """
    key: str
    owner_token: str
    variant: str
    lock: Any = None
    acquired_at: float = field(default_factory=time.time)

    def __repr__(self):
        return f"LockHandle({self.key}, {self.variant}, owner={self.owner_token})"


@runtime_checkable
class LockVariant(Protocol):
    """Protocol yang diimplementasikan oleh setiap lock variant."""

    name: str

    async def acquire(self, key: str, lease: Optional[float] = None) -> Optional[LockHandle]:
        """Block sampai lock didapat. None hanya jika wait di-interrupt."""
        ...

    async def try_acquire(self, key: str, wait: float,
                          lease: Optional[float] = None) -> Optional[LockHandle]:
        ...

    async def release(self, handle: LockHandle) -> bool:
        ...
